# ============================================================================
#  supplier_client.py - Supplier (AliExpress Open Platform) API Handler
#  Version: 1.0.0
# ============================================================================
import logging
from typing import Dict, Optional, Tuple

import requests
from pydantic import ValidationError

from errors import AuthExpiredError
from models import (
    AUTH_SUPPLIER_CODES,
    ErrorResponse,
    MethodResponse,
    ProductGetResult,
    ProductLookup,
    SignedRequest,
    SupplierErrorKind,
    SupplierResult,
)
from oauth import CredentialContext

logger = logging.getLogger(__name__)

PRODUCT_GET_METHOD = "aliexpress.ds.product.get"
CATEGORY_METHOD = "aliexpress.ds.category.get"

SYSTEM_PARAMS = {"sign_method": "md5", "v": "2.0", "format": "json"}


class SupplierClient:
    """One signed call against the supplier's /sync RPC endpoint.

    Never retries and never raises for supplier outcomes: every call ends in a
    SupplierResult that is OK, TRANSPORT_ERROR, SUPPLIER_ERROR or AUTH_EXPIRED.
    Retry policy belongs to the caller.
    """

    def __init__(
        self,
        app_key: str,
        app_secret: str,
        api_url: str,
        credentials: CredentialContext,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
    ):
        self.app_key = app_key
        self.app_secret = app_secret
        self.api_url = api_url
        self.credentials = credentials
        self.session = session or requests.Session()
        self.timeout = timeout

    def build_request(self, method: str, params: Dict[str, str], access_token: Optional[str] = None) -> SignedRequest:
        full = {"app_key": self.app_key, **SYSTEM_PARAMS}
        if access_token:
            full["access_token"] = access_token
        full.update({k: str(v) for k, v in params.items()})
        return SignedRequest.build(method, full, self.app_secret)

    def call(self, method: str, params: Dict[str, str], requires_auth: bool = True) -> SupplierResult:
        access_token = None
        if requires_auth:
            try:
                access_token = self.credentials.get_access_token()
            except AuthExpiredError as e:
                return SupplierResult.failure(SupplierErrorKind.AUTH_EXPIRED, str(e), code="AUTH_EXPIRED")

        request = self.build_request(method, params, access_token)
        logger.debug(f"Supplier call {method} {params}")

        try:
            response = self.session.post(
                f"{self.api_url}?{request.query_string}",
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
            if response.status_code >= 500:
                return SupplierResult.failure(
                    SupplierErrorKind.TRANSPORT_ERROR, f"HTTP {response.status_code}", code=response.status_code
                )
            data = response.json()
        except requests.RequestException as e:
            logger.warning(f"Supplier transport error on {method}: {e}")
            return SupplierResult.failure(SupplierErrorKind.TRANSPORT_ERROR, str(e))
        except ValueError as e:
            return SupplierResult.failure(SupplierErrorKind.TRANSPORT_ERROR, f"Invalid JSON response: {e}")

        return self.classify(method, data)

    @staticmethod
    def classify(method: str, data) -> SupplierResult:
        """Folds both error envelopes into one SupplierResult."""
        if not isinstance(data, dict):
            return SupplierResult.failure(SupplierErrorKind.SUPPLIER_ERROR, "Unexpected response shape", code="MALFORMED_RESPONSE")

        if "error_response" in data:
            err = ErrorResponse.model_validate(data["error_response"] or {})
            code = None if err.code is None else str(err.code)
            message = err.msg or "Unknown error"
            if err.sub_msg:
                message = f"{message}: {err.sub_msg}"
            kind = SupplierErrorKind.AUTH_EXPIRED if code in AUTH_SUPPLIER_CODES else SupplierErrorKind.SUPPLIER_ERROR
            return SupplierResult.failure(kind, message, code=code)

        key = method.replace(".", "_") + "_response"
        if key not in data:
            key = next((k for k in data if k.endswith("_response")), None)
            if key is None:
                return SupplierResult.success(data)

        try:
            envelope = MethodResponse.model_validate(data[key] or {})
        except ValidationError as e:
            return SupplierResult.failure(SupplierErrorKind.SUPPLIER_ERROR, str(e), code="MALFORMED_RESPONSE")

        if envelope.rsp_code is not None and envelope.rsp_code != 200:
            return SupplierResult.failure(
                SupplierErrorKind.SUPPLIER_ERROR, envelope.rsp_msg or "Unknown error", code=envelope.rsp_code
            )
        if envelope.result is not None:
            return SupplierResult.success(envelope.result)
        return SupplierResult.success(envelope.model_dump(exclude={"rsp_code", "rsp_msg", "result"}))

    # ------------------------------------------------------------ methods

    def get_product(self, product_id: str, country: str, currency: str = "EUR", language: str = "EN") -> ProductLookup:
        """Product details as served to `country`."""
        result = self.call(PRODUCT_GET_METHOD, {
            "product_id": product_id,
            "ship_to_country": country,
            "target_currency": currency,
            "target_language": language,
        })
        if not result.ok:
            return ProductLookup(error=result.error)
        try:
            product = ProductGetResult.model_validate(result.payload or {})
        except ValidationError as e:
            return ProductLookup.failure(SupplierErrorKind.SUPPLIER_ERROR, str(e), code="MALFORMED_RESPONSE")
        if product.ae_item_base_info_dto is None:
            return ProductLookup.failure(
                SupplierErrorKind.SUPPLIER_ERROR, f"No product data for {country}", code="EMPTY_RESULT"
            )
        return ProductLookup(payload=result.payload, product=product)

    def test_connection(self) -> Tuple[bool, str]:
        result = self.call(CATEGORY_METHOD, {"category_id": "0"}, requires_auth=False)
        if result.ok:
            return True, "API connection successful!"
        return False, f"API connection failed: {result.error.message} (code: {result.error.code})"
# ============================================================================
# End of supplier_client.py - Version: 1.0.0
# ============================================================================
