# ============================================================================
#  signer.py - Supplier Request Signing
#  Version: 1.0.0
# ============================================================================
import hashlib
import hmac
from datetime import datetime, timezone
from typing import Mapping, Optional

SIGN_FIELD = "sign"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def _canonical(params: Mapping[str, str]) -> str:
    # Ordinal sort; the sign field itself never takes part.
    return "".join(f"{key}{params[key]}" for key in sorted(params) if key != SIGN_FIELD)


def sign_params(params: Mapping[str, str], secret: str) -> str:
    """MD5 signature for the /sync RPC endpoint: secret + k1v1k2v2... + secret, uppercase hex."""
    message = f"{secret}{_canonical(params)}{secret}"
    return hashlib.md5(message.encode("utf-8")).hexdigest().upper()


def sign_iop_params(params: Mapping[str, str], secret: str, api_path: str) -> str:
    """HMAC-SHA256 signature used by the /rest/auth/* token endpoints."""
    message = f"{api_path}{_canonical(params)}"
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest().upper()


def format_timestamp(moment: Optional[datetime] = None) -> str:
    """Fixed-width UTC timestamp, e.g. '2024-05-01 09:03:07'."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(TIMESTAMP_FORMAT)
# ============================================================================
# End of signer.py - Version: 1.0.0
# ============================================================================
