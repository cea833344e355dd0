# ============================================================================
#  oauth.py - Supplier OAuth Credential Lifecycle
#  Version: 1.0.0
# ============================================================================
import json
import logging
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Optional
from urllib.parse import urlencode

import requests
from pydantic import ValidationError

from errors import AuthExpiredError
from models import CredentialStatus, OAuthCredential
from signer import sign_iop_params

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://api-sg.aliexpress.com/oauth/authorize"
REFRESH_PATH = "/auth/token/refresh"
CREATE_PATH = "/auth/token/create"
EXPIRY_BUFFER_MS = 5 * 60 * 1000
DEFAULT_ACCESS_TTL_MS = 2592000 * 1000
DEFAULT_REFRESH_TTL_MS = 5184000 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


def _expiry(data: Dict, absolute_key: str, relative_key: str, now: int, default_ttl: int) -> int:
    # epoch-ms expiry if sent, else seconds-from-now, else default TTL
    if data.get(absolute_key):
        return int(data[absolute_key])
    if data.get(relative_key):
        return now + int(data[relative_key]) * 1000
    return now + default_ttl


class CredentialStore:
    """JSON token file. Written back only after a successful refresh or exchange."""

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> Optional[OAuthCredential]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return OAuthCredential.model_validate(json.load(f))
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Could not read token file {self.path}: {e}")
            return None

    def save(self, credential: OAuthCredential):
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(credential.model_dump(), f, indent=2)
        logger.info(f"Tokens saved to {self.path}")


class CredentialContext:
    """Process-wide supplier credential with single-flight refresh.

    Collaborators receive this object instead of reading the token file
    themselves. A refresh runs under a lock; callers that were waiting on
    the lock pick up the credential the first caller produced instead of
    refreshing again.
    """

    def __init__(
        self,
        store: CredentialStore,
        app_key: str,
        app_secret: str,
        rest_url: str,
        callback_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], int] = _now_ms,
        timeout: int = 30,
    ):
        self.store = store
        self.app_key = app_key
        self.app_secret = app_secret
        self.rest_url = rest_url.rstrip("/")
        self.callback_url = callback_url
        self.session = session or requests.Session()
        self.clock = clock
        self.timeout = timeout
        self._lock = threading.RLock()
        self._credential: Optional[OAuthCredential] = None
        self._loaded = False

    @property
    def credential(self) -> Optional[OAuthCredential]:
        if not self._loaded:
            with self._lock:
                if not self._loaded:
                    self._credential = self.store.load()
                    self._loaded = True
        return self._credential

    def get_access_token(self) -> str:
        """Returns a usable access token, refreshing first if it is about to expire."""
        credential = self.credential
        if credential is None:
            raise AuthExpiredError("No tokens found. Authorization required.")
        if credential.access_valid(self.clock(), EXPIRY_BUFFER_MS):
            return credential.access_token
        return self.refresh(stale=credential).access_token

    def refresh(self, stale: Optional[OAuthCredential] = None) -> OAuthCredential:
        """Refreshes the credential unless another caller already replaced `stale`."""
        stale = stale or self.credential
        with self._lock:
            current = self.credential
            if current is not None and current is not stale:
                logger.debug("Credential already refreshed by another caller")
                return current
            if current is None:
                raise AuthExpiredError("No tokens found. Authorization required.")
            if not current.refresh_valid(self.clock()):
                raise AuthExpiredError("All tokens expired. Re-authorization required.")

            logger.info("Access token expired, refreshing...")
            data = self._post_token_request(REFRESH_PATH, {"refresh_token": current.refresh_token})
            refreshed = self._credential_from_response(data)
            self.store.save(refreshed)
            self._credential = refreshed
            return refreshed

    def exchange_code(self, code: str) -> OAuthCredential:
        """Trades an authorization code for a fresh credential."""
        with self._lock:
            data = self._post_token_request(CREATE_PATH, {"code": code})
            credential = self._credential_from_response(data)
            self.store.save(credential)
            self._credential = credential
            self._loaded = True
            return credential

    def authorization_url(self, state: Optional[str] = None) -> str:
        params = {
            "response_type": "code",
            "force_auth": "true",
            "client_id": self.app_key,
            "redirect_uri": self.callback_url or "",
        }
        if state:
            params["state"] = state
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    def status(self) -> CredentialStatus:
        credential = self.credential
        if credential is None:
            return CredentialStatus(authorized=False, access_token_valid=False, refresh_token_valid=False)

        now = self.clock()
        access_valid = credential.access_valid(now)
        refresh_valid = credential.refresh_valid(now)
        expires_in = None
        if access_valid:
            mins = (credential.expires_at - now) // 60000
            expires_in = f"{mins // 60}h {mins % 60}m" if mins > 60 else f"{mins}m"
        return CredentialStatus(
            authorized=refresh_valid,
            access_token_valid=access_valid,
            refresh_token_valid=refresh_valid,
            expires_in=expires_in,
        )

    def _post_token_request(self, api_path: str, extra: Dict[str, str]) -> Dict:
        params = {
            "app_key": self.app_key,
            "timestamp": str(self.clock()),
            "sign_method": "sha256",
            **extra,
        }
        params["sign"] = sign_iop_params(params, self.app_secret, api_path)

        try:
            response = self.session.post(
                f"{self.rest_url}{api_path}",
                data=params,
                headers={"Content-Type": "application/x-www-form-urlencoded;charset=utf-8"},
                timeout=self.timeout,
            )
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise AuthExpiredError(f"Token request to {api_path} failed: {e}") from e

        error = data.get("error_response")
        code = data.get("code")
        if error or (code is not None and str(code) != "0"):
            message = data.get("message") or (error or {}).get("msg") or "unknown error"
            raise AuthExpiredError(f"Token request to {api_path} rejected: {message} ({code})")
        return data

    def _credential_from_response(self, data: Dict) -> OAuthCredential:
        now = self.clock()
        try:
            return OAuthCredential(
                access_token=data["access_token"],
                refresh_token=data["refresh_token"],
                expires_at=_expiry(data, "expire_time", "expires_in", now, DEFAULT_ACCESS_TTL_MS),
                refresh_expires_at=_expiry(data, "refresh_token_valid_time", "refresh_expires_in", now, DEFAULT_REFRESH_TTL_MS),
                user_id=data.get("user_id") or data.get("seller_id"),
            )
        except (KeyError, ValidationError) as e:
            raise AuthExpiredError(f"Token response missing fields: {e}") from e
# ============================================================================
# End of oauth.py - Version: 1.0.0
# ============================================================================
