from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any

from pydantic import AnyHttpUrl, BaseModel, BeforeValidator, ConfigDict, Field

from .statuses import InvoiceStatus, OrderStatus


def _coerce_identifier(value: Any) -> Any:
    # Storefront rows use numeric ids, the API speaks strings.
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return value


def _reject_bool(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("amount must be numeric")
    return value


Identifier = Annotated[str, BeforeValidator(_coerce_identifier)]
Amount = Annotated[Decimal, BeforeValidator(_reject_bool)]


class _IntentBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    order_id: Identifier = Field(..., alias="orderId", min_length=1)
    amount: Amount = Field(..., gt=0, decimal_places=2)


class SingleIntentBody(_IntentBody):
    """Body of ``action=create``."""

    redirect_url: AnyHttpUrl = Field(..., alias="redirectUrl")


class InstallmentIntentBody(_IntentBody):
    """Body of ``action=create-part``."""

    parts_count: int = Field(..., alias="partsCount", ge=2, le=12)
    redirect_url: AnyHttpUrl | None = Field(default=None, alias="redirectUrl")


class CheckoutSignBody(_IntentBody):
    """Body of the hosted-checkout signing endpoint."""

    currency: str = Field(..., min_length=3, max_length=3)
    description: str = Field(..., min_length=1)


class IntentCreateResponse(BaseModel):
    """Response returned when a gateway invoice is created."""

    model_config = ConfigDict(populate_by_name=True)

    invoice_id: str = Field(..., alias="invoiceId")
    page_url: str = Field(..., alias="pageUrl")
    amount: float
    parts_count: int | None = Field(default=None, alias="partsCount")


class CheckoutSignResponse(BaseModel):
    data: str
    signature: str


class WebhookAck(BaseModel):
    """Acknowledgement body; any 2xx stops gateway retries."""

    ok: bool = True
    outcome: str
    invoice_id: str | None = None


class PaymentReturnResponse(BaseModel):
    order_id: str
    invoice_id: str | None = None
    invoice_status: InvoiceStatus | None = None
    order_status: OrderStatus | None = None


class OrderRecord(BaseModel):
    """Order row as delivered by the storefront insert trigger."""

    model_config = ConfigDict(extra="ignore")

    id: Identifier = Field(..., min_length=1)
    total_price: Decimal = Decimal("0")
    status: str | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    customer_email: str | None = None
    delivery_method: str | None = None
    delivery_info: Any = None
    payment_method: str | None = None


class OrderInsertPayload(BaseModel):
    record: OrderRecord


class NotificationResponse(BaseModel):
    ok: bool
    message_id: Any = None
    error: str | None = None


class ReviewItem(BaseModel):
    """Invoice record waiting for manual action."""

    invoice_id: str
    order_id: str
    amount: float
    provider: str
    status: InvoiceStatus
    review_reason: str | None = None
    updated_at: datetime | None = None
