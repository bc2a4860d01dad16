from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

from storefront_payments.domain.enums import Currency, PaymentMode, ProviderName
from storefront_payments.domain.models import InvoiceRecord, Order, OrderItem
from storefront_payments.domain.statuses import InvoiceStatus, OrderStatus


# Order states from which a new payment attempt may start.
PAYABLE_ORDER_STATUSES = frozenset({OrderStatus.NEW, OrderStatus.AWAITING_PAYMENT, OrderStatus.FAILED})

# Order states a late confirmation must not overwrite.
SETTLED_ORDER_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.CANCELLED})


def settled_order_reason(order_id: str, status: OrderStatus) -> str:
    return f"Payment received for order {order_id} that is already {status.value}"


class PaymentStore(ABC):
    """Invoice records plus the slice of the order store the payment core touches.

    Both live behind one repository so that confirming an invoice and marking
    its order paid happen in the same transaction.
    """

    @abstractmethod
    def get_order(self, order_id: str) -> Order | None:
        """Return the order or ``None``."""

    @abstractmethod
    def list_items(self, order_id: str) -> list[OrderItem]:
        """Return order lines joined with current product names."""

    @abstractmethod
    def put(
        self,
        order_id: str,
        invoice_id: str,
        status: InvoiceStatus = InvoiceStatus.CREATED,
        *,
        amount: Decimal,
        provider: ProviderName,
        mode: PaymentMode = PaymentMode.SINGLE,
        currency: Currency = Currency.UAH,
        payload: dict[str, Any] | None = None,
    ) -> InvoiceRecord:
        """Create or overwrite the active record of an order.

        Older records of the order stay addressable by invoice id. The order
        gets the invoice id and moves to ``awaiting_payment``.
        """

    @abstractmethod
    def get(self, order_id: str) -> InvoiceRecord | None:
        """Return the active record of an order."""

    @abstractmethod
    def get_by_invoice(self, invoice_id: str) -> InvoiceRecord | None:
        """Return any record, active or superseded."""

    @abstractmethod
    def mark_confirmed(
        self, invoice_id: str, observed_amount: Decimal | None, payload: dict[str, Any] | None = None
    ) -> bool:
        """Apply ``created -> confirmed`` and mark the order paid, atomically.

        Returns ``True`` when this call performed the transition and ``False``
        when the record was already terminal. When the order is already
        ``paid`` or ``cancelled`` the record is confirmed and flagged for
        review, the order is left alone, and ``False`` is returned. Raises
        ``AmountMismatchError``
        (nothing changed) when the observed amount differs from the recorded
        one or the recorded amount differs from the order total, and
        ``UnknownInvoiceError`` for a missing record.
        """

    @abstractmethod
    def mark_terminal(
        self,
        invoice_id: str,
        status: InvoiceStatus,
        payload: dict[str, Any] | None = None,
        review_reason: str | None = None,
    ) -> bool:
        """Apply ``created -> failed|expired``.

        With ``review_reason`` the record is flagged for manual review and the
        order is left untouched; otherwise an order still awaiting this
        invoice moves to ``failed``.
        """

    @abstractmethod
    def touch(self, invoice_id: str, payload: dict[str, Any]) -> None:
        """Store the last-seen payload of a record still in ``created``."""

    @abstractmethod
    def record_webhook(
        self,
        *,
        provider: ProviderName,
        invoice_id: str,
        gateway_status: str,
        verification_status: str,
        payload: dict[str, Any],
    ) -> bool:
        """Durably record a received callback; ``False`` when already seen."""

    @abstractmethod
    def list_for_review(self) -> list[InvoiceRecord]:
        """Records flagged for manual review."""
