from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

from psycopg2.extras import Json

from storefront_payments.db.client import get_conn
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

logger = logging.getLogger(__name__)

_INVOICE_COLUMNS = """
    invoice_id, order_id, provider, mode, amount, currency, status, payload,
    review_required, review_reason, created_at, updated_at
"""


def _order_status(value: Any) -> OrderStatus:
    try:
        return OrderStatus(str(value))
    except ValueError:
        # Storefront rows written before the payment core existed
        logger.info("unknown order status treated as new", extra={"status": str(value)})
        return OrderStatus.NEW


class PgPaymentStore(PaymentStore):
    """PostgreSQL-backed store using raw psycopg2.

    Row locks (``SELECT ... FOR UPDATE``) plus conditional updates on
    ``status = 'created'`` make concurrent webhook deliveries for the same
    invoice resolve to exactly one transition.
    """

    @staticmethod
    def _hydrate_invoice(row: tuple) -> InvoiceRecord:
        payload = row[7]
        return InvoiceRecord(
            invoice_id=str(row[0]),
            order_id=str(row[1]),
            provider=ProviderName(str(row[2])),
            mode=PaymentMode(str(row[3])),
            amount=to_money(row[4]),
            currency=Currency(str(row[5])),
            status=InvoiceStatus(str(row[6])),
            payload=dict(payload) if isinstance(payload, dict) else {},
            review_required=bool(row[8]),
            review_reason=row[9],
            created_at=row[10],
            updated_at=row[11],
        )

    def get_order(self, order_id: str) -> Optional[Order]:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, total_price, status, customer_name, customer_phone,
                           customer_email, delivery_method, delivery_info,
                           payment_method, invoice_id, created_at
                      FROM orders
                     WHERE id::text = %s
                     LIMIT 1
                    """,
                    (order_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return Order(
            id=str(row[0]),
            total=to_money(row[1] if row[1] is not None else 0),
            status=_order_status(row[2]),
            customer_name=row[3],
            customer_phone=row[4],
            customer_email=row[5],
            delivery_method=row[6],
            delivery_info=row[7],
            payment_method=row[8],
            invoice_id=row[9],
            created_at=row[10],
        )

    def list_items(self, order_id: str) -> list[OrderItem]:
        items: list[OrderItem] = []
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT oi.product_id, oi.quantity, oi.price_at_purchase,
                           p.name, oi.product_name
                      FROM order_items oi
                      LEFT JOIN products p ON p.id = oi.product_id
                     WHERE oi.order_id::text = %s
                     ORDER BY oi.id ASC
                    """,
                    (order_id,),
                )
                for row in cur.fetchall() or []:
                    items.append(
                        OrderItem(
                            product_id=str(row[0]) if row[0] is not None else None,
                            quantity=int(row[1] or 1),
                            unit_price=to_money(row[2] if row[2] is not None else 0),
                            product_name=row[3],
                            snapshot_name=row[4],
                        )
                    )
        return items

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
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE payment_invoice
                       SET is_active = FALSE, updated_at = NOW()
                     WHERE order_id = %s AND is_active AND invoice_id <> %s
                    """,
                    (order_id, invoice_id),
                )
                cur.execute(
                    f"""
                    INSERT INTO payment_invoice (
                        invoice_id, order_id, provider, mode, amount, currency,
                        status, payload, is_active, created_at, updated_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, TRUE, NOW(), NOW())
                    ON CONFLICT (invoice_id) DO UPDATE
                        SET order_id = EXCLUDED.order_id,
                            provider = EXCLUDED.provider,
                            mode = EXCLUDED.mode,
                            amount = EXCLUDED.amount,
                            currency = EXCLUDED.currency,
                            status = EXCLUDED.status,
                            payload = EXCLUDED.payload,
                            is_active = TRUE,
                            updated_at = NOW()
                    RETURNING {_INVOICE_COLUMNS}
                    """,
                    (
                        invoice_id,
                        order_id,
                        provider.value,
                        mode.value,
                        to_money(amount),
                        currency.value,
                        status.value,
                        Json(payload or {}),
                    ),
                )
                row = cur.fetchone()
                cur.execute(
                    """
                    UPDATE orders
                       SET invoice_id = %s,
                           status = CASE WHEN status = ANY(%s) THEN %s ELSE status END
                     WHERE id::text = %s
                    """,
                    (
                        invoice_id,
                        [s.value for s in PAYABLE_ORDER_STATUSES],
                        OrderStatus.AWAITING_PAYMENT.value,
                        order_id,
                    ),
                )
        return self._hydrate_invoice(row)

    def get(self, order_id: str) -> Optional[InvoiceRecord]:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {_INVOICE_COLUMNS} FROM payment_invoice WHERE order_id = %s AND is_active LIMIT 1",
                    (order_id,),
                )
                row = cur.fetchone()
        return self._hydrate_invoice(row) if row else None

    def get_by_invoice(self, invoice_id: str) -> Optional[InvoiceRecord]:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {_INVOICE_COLUMNS} FROM payment_invoice WHERE invoice_id = %s LIMIT 1",
                    (invoice_id,),
                )
                row = cur.fetchone()
        return self._hydrate_invoice(row) if row else None

    def mark_confirmed(
        self, invoice_id: str, observed_amount: Decimal | None, payload: dict[str, Any] | None = None
    ) -> bool:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT status, amount, order_id FROM payment_invoice WHERE invoice_id = %s FOR UPDATE",
                    (invoice_id,),
                )
                row = cur.fetchone()
                if not row:
                    raise UnknownInvoiceError(f"Unknown invoice {invoice_id}")
                if InvoiceStatus(str(row[0])).is_terminal:
                    return False
                expected = to_money(row[1])
                order_id = str(row[2])
                observed = to_money(observed_amount) if observed_amount is not None else None
                if observed != expected:
                    raise AmountMismatchError(invoice_id, expected, observed)
                cur.execute(
                    "SELECT total_price, status FROM orders WHERE id::text = %s FOR UPDATE",
                    (order_id,),
                )
                order_row = cur.fetchone()
                if order_row and to_money(order_row[0]) != expected:
                    raise AmountMismatchError(invoice_id, to_money(order_row[0]), expected)
                order_status = _order_status(order_row[1]) if order_row else None
                review_reason = (
                    settled_order_reason(order_id, order_status)
                    if order_status in SETTLED_ORDER_STATUSES
                    else None
                )
                cur.execute(
                    """
                    UPDATE payment_invoice
                       SET status = %s,
                           payload = COALESCE(%s, payload),
                           review_required = review_required OR %s,
                           review_reason = COALESCE(%s, review_reason),
                           updated_at = NOW()
                     WHERE invoice_id = %s AND status = %s
                    """,
                    (
                        InvoiceStatus.CONFIRMED.value,
                        Json(payload) if payload is not None else None,
                        bool(review_reason),
                        review_reason,
                        invoice_id,
                        InvoiceStatus.CREATED.value,
                    ),
                )
                if cur.rowcount != 1 or review_reason:
                    return False
                cur.execute(
                    "UPDATE orders SET status = %s WHERE id::text = %s",
                    (OrderStatus.PAID.value, order_id),
                )
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
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE payment_invoice
                       SET status = %s,
                           payload = COALESCE(%s, payload),
                           review_required = review_required OR %s,
                           review_reason = COALESCE(%s, review_reason),
                           updated_at = NOW()
                     WHERE invoice_id = %s AND status = %s
                     RETURNING order_id, is_active
                    """,
                    (
                        status.value,
                        Json(payload) if payload is not None else None,
                        bool(review_reason),
                        review_reason,
                        invoice_id,
                        InvoiceStatus.CREATED.value,
                    ),
                )
                row = cur.fetchone()
                if not row:
                    cur.execute("SELECT 1 FROM payment_invoice WHERE invoice_id = %s", (invoice_id,))
                    if cur.fetchone() is None:
                        raise UnknownInvoiceError(f"Unknown invoice {invoice_id}")
                    return False
                order_id, is_active = str(row[0]), bool(row[1])
                if not review_reason and is_active:
                    cur.execute(
                        "UPDATE orders SET status = %s WHERE id::text = %s AND status = %s",
                        (OrderStatus.FAILED.value, order_id, OrderStatus.AWAITING_PAYMENT.value),
                    )
                return True

    def touch(self, invoice_id: str, payload: dict[str, Any]) -> None:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE payment_invoice
                       SET payload = %s, updated_at = NOW()
                     WHERE invoice_id = %s AND status = %s
                    """,
                    (Json(payload), invoice_id, InvoiceStatus.CREATED.value),
                )

    def record_webhook(
        self,
        *,
        provider: ProviderName,
        invoice_id: str,
        gateway_status: str,
        verification_status: str,
        payload: dict[str, Any],
    ) -> bool:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO webhook_inbox (
                        provider, invoice_id, gateway_status, verification_status, payload, received_at
                    ) VALUES (%s, %s, %s, %s, %s, NOW())
                    ON CONFLICT (provider, invoice_id, gateway_status) DO NOTHING
                    RETURNING id
                    """,
                    (provider.value, invoice_id, gateway_status, verification_status, Json(payload)),
                )
                return cur.fetchone() is not None

    def list_for_review(self) -> list[InvoiceRecord]:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {_INVOICE_COLUMNS}
                      FROM payment_invoice
                     WHERE review_required
                     ORDER BY updated_at DESC
                    """,
                )
                return [self._hydrate_invoice(row) for row in cur.fetchall() or []]
