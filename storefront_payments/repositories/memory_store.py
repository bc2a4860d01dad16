from __future__ import annotations

import copy
import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from storefront_payments.domain.enums import Currency, PaymentMode, ProviderName
from storefront_payments.domain.errors import AmountMismatchError, UnknownInvoiceError
from storefront_payments.domain.models import InvoiceRecord, Order, OrderItem, to_money
from storefront_payments.domain.statuses import InvoiceStatus, OrderStatus

from .base import (
    PAYABLE_ORDER_STATUSES,
    SETTLED_ORDER_STATUSES,
    PaymentStore,
    settled_order_reason,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryPaymentStore(PaymentStore):
    """Process-local store for development and tests.

    A single lock serializes every mutation, which gives the same
    at-most-one-winner guarantee the database store gets from row locks.
    """

    def __init__(self) -> None:
        self.orders: Dict[str, Order] = {}
        self.by_invoice: Dict[str, InvoiceRecord] = {}
        self.active_by_order: Dict[str, str] = {}
        self.webhooks: list[Dict[str, Any]] = []
        self._seen_webhooks: set[tuple[str, str, str]] = set()
        self._lock = threading.Lock()

    def save_order(self, order: Order) -> None:
        with self._lock:
            self.orders[order.id] = order

    def get_order(self, order_id: str) -> Optional[Order]:
        order = self.orders.get(order_id)
        return copy.deepcopy(order) if order else None

    def list_items(self, order_id: str) -> list[OrderItem]:
        order = self.orders.get(order_id)
        return [copy.copy(item) for item in order.items] if order else []

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
        now = _now()
        record = InvoiceRecord(
            invoice_id=invoice_id,
            order_id=order_id,
            amount=to_money(amount),
            provider=provider,
            mode=mode,
            status=status,
            currency=currency,
            payload=dict(payload or {}),
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self.by_invoice[invoice_id] = record
            self.active_by_order[order_id] = invoice_id
            order = self.orders.get(order_id)
            if order is not None:
                order.invoice_id = invoice_id
                if order.status in PAYABLE_ORDER_STATUSES:
                    order.status = OrderStatus.AWAITING_PAYMENT
        return copy.deepcopy(record)

    def get(self, order_id: str) -> Optional[InvoiceRecord]:
        invoice_id = self.active_by_order.get(order_id)
        if invoice_id:
            return self.get_by_invoice(invoice_id)
        return None

    def get_by_invoice(self, invoice_id: str) -> Optional[InvoiceRecord]:
        record = self.by_invoice.get(invoice_id)
        return copy.deepcopy(record) if record else None

    def mark_confirmed(
        self, invoice_id: str, observed_amount: Decimal | None, payload: dict[str, Any] | None = None
    ) -> bool:
        with self._lock:
            record = self.by_invoice.get(invoice_id)
            if record is None:
                raise UnknownInvoiceError(f"Unknown invoice {invoice_id}")
            if record.status.is_terminal:
                return False
            observed = to_money(observed_amount) if observed_amount is not None else None
            if observed != record.amount:
                raise AmountMismatchError(invoice_id, record.amount, observed)
            order = self.orders.get(record.order_id)
            if order is not None and to_money(order.total) != record.amount:
                raise AmountMismatchError(invoice_id, to_money(order.total), record.amount)
            record.status = InvoiceStatus.CONFIRMED
            if payload is not None:
                record.payload = dict(payload)
            record.updated_at = _now()
            if order is not None and order.status in SETTLED_ORDER_STATUSES:
                record.review_required = True
                record.review_reason = settled_order_reason(order.id, order.status)
                return False
            if order is not None:
                order.status = OrderStatus.PAID
            return True

    def mark_terminal(
        self,
        invoice_id: str,
        status: InvoiceStatus,
        payload: dict[str, Any] | None = None,
        review_reason: str | None = None,
    ) -> bool:
        if status not in (InvoiceStatus.FAILED, InvoiceStatus.EXPIRED):
            raise ValueError(f"Not a failure status: {status}")
        with self._lock:
            record = self.by_invoice.get(invoice_id)
            if record is None:
                raise UnknownInvoiceError(f"Unknown invoice {invoice_id}")
            if record.status.is_terminal:
                return False
            record.status = status
            if payload is not None:
                record.payload = dict(payload)
            record.updated_at = _now()
            if review_reason:
                record.review_required = True
                record.review_reason = review_reason
                return True
            order = self.orders.get(record.order_id)
            if (
                order is not None
                and order.status is OrderStatus.AWAITING_PAYMENT
                and self.active_by_order.get(record.order_id) == invoice_id
            ):
                order.status = OrderStatus.FAILED
            return True

    def touch(self, invoice_id: str, payload: dict[str, Any]) -> None:
        with self._lock:
            record = self.by_invoice.get(invoice_id)
            if record is None or record.status.is_terminal:
                return
            record.payload = dict(payload)
            record.updated_at = _now()

    def record_webhook(
        self,
        *,
        provider: ProviderName,
        invoice_id: str,
        gateway_status: str,
        verification_status: str,
        payload: dict[str, Any],
    ) -> bool:
        key = (provider.value, invoice_id, gateway_status)
        with self._lock:
            if key in self._seen_webhooks:
                return False
            self._seen_webhooks.add(key)
            self.webhooks.append(
                {
                    "provider": provider.value,
                    "invoice_id": invoice_id,
                    "gateway_status": gateway_status,
                    "verification_status": verification_status,
                    "payload": dict(payload),
                    "received_at": _now(),
                }
            )
            return True

    def list_for_review(self) -> list[InvoiceRecord]:
        return [copy.deepcopy(r) for r in self.by_invoice.values() if r.review_required]
