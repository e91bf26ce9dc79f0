"""Shared data models for the PIX popup core.

All Pydantic models used across the checkout core and the conversion relay.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionStatus(str, Enum):
    """Lifecycle of a PIX charge as seen by a popup."""

    IDLE = "idle"
    GENERATING = "generating"
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    EXPIRED = "expired"
    FAILED = "failed"


class Transaction(BaseModel):
    """A PIX charge owned by one TransactionController."""

    id: Optional[str] = Field(default=None, description="Backend transaction id, set once generated")
    amount: Decimal = Field(description="Charge amount in BRL, two fraction digits")
    code: Optional[str] = Field(default=None, description="PIX copy-paste code")
    qr_image_url: Optional[str] = Field(default=None, description="Remote QR image, if the backend sent one")
    status: TransactionStatus = Field(default=TransactionStatus.GENERATING)
    created_at: Optional[datetime] = Field(default=None)
    expires_at: Optional[datetime] = Field(default=None)
    paid_at: Optional[datetime] = Field(default=None)

    @property
    def render_qr_locally(self) -> bool:
        """True when the UI must draw the QR symbol from ``code`` itself."""
        return self.qr_image_url is None


class AttributionContext(BaseModel):
    """Campaign attribution captured for the current session."""

    model_config = ConfigDict(frozen=True)

    utm_params: Dict[str, str] = Field(default_factory=dict, description="utm_* tags, fbclid, referrer, traffic_type")
    click_id: Optional[str] = Field(default=None, description="_fbc cookie value")
    browser_id: Optional[str] = Field(default=None, description="_fbp cookie value")
    pixel_ids: List[str] = Field(default_factory=list)
    landing_url: Optional[str] = Field(default=None)

    @property
    def is_empty(self) -> bool:
        return not (self.utm_params or self.click_id or self.browser_id)

    @property
    def source(self) -> Optional[str]:
        return self.utm_params.get("utm_source")


class CustomerInfo(BaseModel):
    """Optional payer fields collected by some popup variants."""

    name: Optional[str] = None
    email: Optional[str] = None


class UserData(BaseModel):
    """Best-effort identity matching fields attached to conversion events."""

    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    external_id: Optional[str] = None
    click_id: Optional[str] = None
    browser_id: Optional[str] = None
    country: Optional[str] = "br"

    @classmethod
    def build(
        cls,
        customer: Optional[CustomerInfo] = None,
        external_id: Optional[str] = None,
        attribution: Optional[AttributionContext] = None,
    ) -> "UserData":
        """Assemble user data from whatever the popup happens to know."""
        first_name = last_name = None
        if customer and customer.name:
            first_name, _, rest = customer.name.strip().partition(" ")
            last_name = rest.strip() or None
        return cls(
            email=customer.email if customer else None,
            first_name=first_name or None,
            last_name=last_name,
            external_id=external_id,
            click_id=attribution.click_id if attribution else None,
            browser_id=attribution.browser_id if attribution else None,
        )

    @property
    def full_name(self) -> Optional[str]:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or None

    def to_pixel(self) -> Dict[str, str]:
        """Render as the pixel's advanced matching keys."""
        pixel = {
            "em": self.email,
            "fn": self.first_name,
            "ln": self.last_name,
            "external_id": self.external_id,
            "fbc": self.click_id,
            "fbp": self.browser_id,
            "country": self.country,
        }
        return {k: v for k, v in pixel.items() if v}


class ConversionEvent(BaseModel):
    """A named marketing event, shared by the pixel and server deliveries."""

    name: str
    event_id: str = Field(description="Deduplication key shared by both channels")
    params: Dict[str, Any] = Field(default_factory=dict)
    user_data: UserData = Field(default_factory=UserData)
    created_at: datetime = Field(default_factory=utcnow)


class PixelCredential(BaseModel):
    """A pixel destination and, optionally, its Conversions API token."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    pixel_id: str
    access_token: Optional[str] = None


class ServerConversionRequest(BaseModel):
    """Body of the track-conversion relay call (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    pixel_id: str
    access_token: str
    event_name: str = "Purchase"
    event_id: Optional[str] = None
    value: Optional[float] = None
    currency: str = "BRL"
    transaction_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    product_name: Optional[str] = None
    source_url: Optional[str] = None
    fbc: Optional[str] = None
    fbp: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ChargeMetadata(BaseModel):
    """Everything sent alongside the amount when requesting a charge."""

    utm_params: Dict[str, str] = Field(default_factory=dict)
    user_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    fingerprint: Optional[str] = None
    popup_variant: Optional[str] = None
    offer_id: Optional[str] = None


class ChargeAccepted(BaseModel):
    """A successfully generated charge."""

    code: str
    transaction_id: str
    qr_image_url: Optional[str] = None


class PixelDebugStatus(BaseModel):
    """Operational snapshot of the conversion dispatcher."""

    pixel_ids: List[str] = Field(default_factory=list)
    script_injected: bool = False
    script_loaded: bool = False
    script_error: Optional[str] = None
    pending_count: int = 0
    server_deliveries: int = 0
    server_failures: int = 0
    last_server_error: Optional[str] = None
