# ============================================================================
#  models.py - Pydantic Data Models
#  Version: 1.0.0
# ============================================================================
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Union
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field, field_validator

from signer import SIGN_FIELD, format_timestamp, sign_params

# Supplier error codes that hit every request the same way
TERMINAL_SUPPLIER_CODES = {"IncompleteSignature", "InvalidSignature", "InvalidAppKey", "MissingAppKey"}
AUTH_SUPPLIER_CODES = {"IllegalAccessToken", "MissingAccessToken", "IllegalRefreshToken", "InvalidSession"}
RATE_LIMIT_SUPPLIER_CODES = {"ApiCallLimit", "AppCallLimit"}


# ---------------------------------------------------------------- credentials

class OAuthCredential(BaseModel):
    """Supplier OAuth tokens. Expiry values are epoch milliseconds."""
    access_token: str = Field(repr=False)
    refresh_token: str = Field(repr=False)
    expires_at: int
    refresh_expires_at: int
    user_id: Optional[Union[str, int]] = None

    def access_valid(self, now_ms: int, buffer_ms: int = 0) -> bool:
        return self.expires_at > now_ms + buffer_ms

    def refresh_valid(self, now_ms: int) -> bool:
        return self.refresh_expires_at > now_ms


class CredentialStatus(BaseModel):
    authorized: bool
    access_token_valid: bool
    refresh_token_valid: bool
    expires_in: Optional[str] = None


# ------------------------------------------------------------ signed requests

class SignedRequest(BaseModel):
    """One outbound supplier call. Frozen once signed, parameters included."""
    model_config = ConfigDict(frozen=True)

    method: str
    pairs: Tuple[Tuple[str, str], ...] = Field(repr=False)
    timestamp: str
    sign: str

    @classmethod
    def build(cls, method: str, params: Dict[str, str], secret: str, timestamp: Optional[str] = None) -> "SignedRequest":
        timestamp = timestamp or format_timestamp()
        full = {k: str(v) for k, v in params.items() if k != SIGN_FIELD}
        full["method"] = method
        full["timestamp"] = timestamp
        return cls(method=method, pairs=tuple(sorted(full.items())), timestamp=timestamp, sign=sign_params(full, secret))

    @property
    def params(self) -> Mapping[str, str]:
        return MappingProxyType(dict(self.pairs))

    @property
    def query_string(self) -> str:
        return urlencode(self.pairs + ((SIGN_FIELD, self.sign),))


# ------------------------------------------------------ supplier envelopes

class ErrorResponse(BaseModel):
    """Top-level `error_response` object."""
    code: Optional[Union[str, int]] = None
    msg: Optional[str] = None
    sub_code: Optional[str] = None
    sub_msg: Optional[str] = None
    request_id: Optional[str] = None


class MethodResponse(BaseModel):
    """Nested `<method>_response` object; rsp_code is only sent by some methods."""
    model_config = ConfigDict(extra="allow")

    rsp_code: Optional[int] = None
    rsp_msg: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


class ItemBaseInfo(BaseModel):
    product_id: Optional[int] = None
    subject: str = ""
    currency_code: Optional[str] = None
    product_status_type: Optional[str] = None
    detail: Optional[str] = None


class SkuInfo(BaseModel):
    sku_id: Optional[int] = None
    sku_price: Optional[Union[str, float]] = None
    offer_sale_price: Optional[Union[str, float]] = None
    sku_available_stock: Optional[int] = 0
    sku_attr: Optional[str] = None


class SkuInfoList(BaseModel):
    ae_item_sku_info_d_t_o: List[SkuInfo] = Field(default_factory=list)


class MultimediaInfo(BaseModel):
    image_urls: str = ""


class ProductGetResult(BaseModel):
    """`result` of aliexpress.ds.product.get."""
    model_config = ConfigDict(extra="allow")

    ae_item_base_info_dto: Optional[ItemBaseInfo] = None
    ae_item_sku_info_dtos: Optional[SkuInfoList] = None
    ae_multimedia_info_dto: Optional[MultimediaInfo] = None

    @property
    def title(self) -> str:
        return self.ae_item_base_info_dto.subject if self.ae_item_base_info_dto else ""

    @property
    def image_urls(self) -> List[str]:
        if not self.ae_multimedia_info_dto:
            return []
        return [url for url in self.ae_multimedia_info_dto.image_urls.split(";") if url]

    @property
    def skus(self) -> List[SkuInfo]:
        return self.ae_item_sku_info_dtos.ae_item_sku_info_d_t_o if self.ae_item_sku_info_dtos else []

    @property
    def is_on_sale(self) -> bool:
        status = self.ae_item_base_info_dto.product_status_type if self.ae_item_base_info_dto else None
        return status is None or status == "onSelling"

    @property
    def total_stock(self) -> int:
        return sum(sku.sku_available_stock or 0 for sku in self.skus)

    def lowest_prices(self) -> Dict[str, Optional[float]]:
        def _positive(values):
            parsed = []
            for value in values:
                try:
                    number = float(value or 0)
                except (TypeError, ValueError):
                    continue
                if number > 0:
                    parsed.append(number)
            return parsed

        prices = _positive(s.sku_price for s in self.skus)
        sales = _positive(s.offer_sale_price for s in self.skus)
        return {"price": min(prices) if prices else 0.0, "sale_price": min(sales) if sales else None}


# ------------------------------------------------------------ result types

class SupplierErrorKind(str, Enum):
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    SUPPLIER_ERROR = "SUPPLIER_ERROR"
    AUTH_EXPIRED = "AUTH_EXPIRED"


class SupplierError(BaseModel):
    kind: SupplierErrorKind
    code: Optional[str] = None
    message: str = ""

    @field_validator("code", mode="before")
    @classmethod
    def _code_as_str(cls, value):
        return None if value is None else str(value)

    @property
    def is_terminal(self) -> bool:
        return self.kind == SupplierErrorKind.SUPPLIER_ERROR and self.code in TERMINAL_SUPPLIER_CODES

    @property
    def is_rate_limited(self) -> bool:
        text = self.message.lower()
        return self.code in RATE_LIMIT_SUPPLIER_CODES or "frequency" in text or "call limit" in text


class SupplierResult(BaseModel):
    """OK(payload) when `error` is None, otherwise one of the error kinds."""
    payload: Optional[Dict[str, Any]] = None
    error: Optional[SupplierError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, payload: Dict[str, Any]) -> "SupplierResult":
        return cls(payload=payload)

    @classmethod
    def failure(cls, kind: SupplierErrorKind, message: str, code: Optional[Union[str, int]] = None) -> "SupplierResult":
        return cls(error=SupplierError(kind=kind, code=code, message=message))


class ProductLookup(SupplierResult):
    """SupplierResult for aliexpress.ds.product.get with the decoded product."""
    product: Optional[ProductGetResult] = None


# ----------------------------------------------------------- availability

class ProbeOutcome(str, Enum):
    SUCCESS = "success"
    SUPPLIER_ERROR = "supplier_error"
    TRANSPORT_ERROR = "transport_error"


class CountryProbe(BaseModel):
    product_id: str
    country: str
    outcome: ProbeOutcome
    error_code: Optional[str] = None
    message: Optional[str] = None
    title: Optional[str] = None
    image_count: int = 0
    variant_count: int = 0


class Found(BaseModel):
    kind: Literal["found"] = "found"
    product_id: str
    country: str
    title: str
    image_count: int
    variant_count: int
    raw_payload: Dict[str, Any] = Field(repr=False)
    attempts: List[CountryProbe] = Field(default_factory=list)


class Exhausted(BaseModel):
    kind: Literal["exhausted"] = "exhausted"
    product_id: str
    attempts: List[CountryProbe]


# --------------------------------------------------------------- catalog

class PublicationStatus(BaseModel):
    id: str
    name: str
    is_published: bool = False


class SyncTarget(BaseModel):
    """One commerce-platform product under a sync run."""
    id: str
    title: str = ""
    handle: Optional[str] = None
    body_html: Optional[str] = None
    publications: List[PublicationStatus] = Field(default_factory=list)
    supplier_product_id: Optional[str] = None
    ships_from: Optional[str] = None
    inventory_item_id: Optional[str] = None
    inventory_quantity: Optional[int] = None
    unit_cost: Optional[float] = None

    @property
    def short_title(self) -> str:
        return self.title[:50] + ("..." if len(self.title) > 50 else "")

    def is_published_on(self, publication_id: str) -> bool:
        return any(p.id == publication_id and p.is_published for p in self.publications)
# ============================================================================
# End of models.py - Version: 1.0.0
# ============================================================================
