from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .enums import Currency, NotificationEvent, PaymentMode, ProviderName
from .statuses import InvoiceStatus, OrderStatus


MONEY_QUANT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Normalize a monetary value to a two-place Decimal."""
    if isinstance(value, bool):
        raise ValueError("Invalid monetary amount")
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise ValueError("Invalid monetary amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid monetary amount")
    return amount.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def from_minor_units(value: Any) -> Decimal:
    return to_money(Decimal(int(value)) / Decimal(100))


def to_minor_units(amount: Decimal) -> int:
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


@dataclass
class OrderItem:
    """Order line joined with the product display name at read time."""

    quantity: int
    unit_price: Decimal
    product_id: str | None = None
    product_name: str | None = None
    # Name captured when the order was placed; survives product removal.
    snapshot_name: str | None = None

    @property
    def display_name(self) -> str:
        if self.product_name:
            return self.product_name
        if self.snapshot_name:
            return self.snapshot_name
        return f"Товар #{self.product_id or '?'}"

    @property
    def line_total(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)


@dataclass
class Order:
    """Storefront order; the payment core only touches status and invoice_id."""

    id: str
    total: Decimal
    status: OrderStatus = OrderStatus.NEW
    customer_name: str | None = None
    customer_phone: str | None = None
    customer_email: str | None = None
    delivery_method: str | None = None
    delivery_info: Any = None
    payment_method: str | None = None
    invoice_id: str | None = None
    created_at: datetime | None = None
    items: list[OrderItem] = field(default_factory=list)


@dataclass(frozen=True)
class PaymentIntent:
    """Validated, immutable input to the gateway client."""

    order_id: str
    amount: Decimal
    mode: PaymentMode
    webhook_url: str
    redirect_url: str | None = None
    parts_count: int | None = None
    currency: Currency = Currency.UAH


@dataclass(frozen=True)
class CheckoutRequest:
    """Input of the hosted-checkout signing endpoint."""

    order_id: str
    amount: Decimal
    currency: str
    description: str


@dataclass
class InvoiceRecord:
    """Mapping order <-> gateway invoice for one payment attempt."""

    invoice_id: str
    order_id: str
    amount: Decimal
    provider: ProviderName
    mode: PaymentMode = PaymentMode.SINGLE
    status: InvoiceStatus = InvoiceStatus.CREATED
    currency: Currency = Currency.UAH
    payload: dict[str, Any] = field(default_factory=dict)
    review_required: bool = False
    review_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class WebhookEvent:
    """Verified, normalized gateway callback."""

    provider: ProviderName
    invoice_id: str
    gateway_status: str
    status: InvoiceStatus | None
    amount: Decimal | None
    payload: dict[str, Any]
    source: str = "webhook"


@dataclass
class NotificationResult:
    """Outcome of a best-effort outbound notification."""

    ok: bool
    channel: str
    event: NotificationEvent | None = None
    status_code: int | None = None
    error: str | None = None
    message_id: Any = None
