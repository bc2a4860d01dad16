from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum
from typing import Mapping

from storefront_payments.domain.enums import NotificationEvent, PaymentMode, ProviderName
from storefront_payments.domain.errors import (
    AmountMismatchError,
    GatewayError,
    GatewayUnavailableError,
    UnknownInvoiceError,
)
from storefront_payments.domain.models import InvoiceRecord, WebhookEvent
from storefront_payments.domain.statuses import InvoiceStatus
from storefront_payments.providers.base import PaymentGateway
from storefront_payments.repositories.base import PaymentStore

from .conversions import ConversionsClient
from .notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

# Gateways that can answer a read-only status lookup for their invoices.
_LOOKUP_MODES = {
    ProviderName.MONOBANK: PaymentMode.SINGLE,
    ProviderName.MONOBANK_PARTS: PaymentMode.INSTALLMENT,
}


class ReconcileOutcome(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"
    PENDING = "pending"
    DUPLICATE = "duplicate"
    REVIEW = "review"
    UNKNOWN = "unknown"


_TERMINAL_OUTCOMES = {
    InvoiceStatus.FAILED: ReconcileOutcome.FAILED,
    InvoiceStatus.EXPIRED: ReconcileOutcome.EXPIRED,
}


class WebhookReconciler:
    """Apply verified gateway events to invoice records and orders.

    Every event moves a record at most once out of ``created``; repeated or
    late events against a terminal record are acknowledged as duplicates.
    Notifications fire only for the call that performed the confirmation.
    """

    def __init__(
        self,
        store: PaymentStore,
        notifier: NotificationDispatcher,
        conversions: ConversionsClient | None = None,
        gateways: Mapping[PaymentMode, PaymentGateway] | None = None,
    ):
        self.store = store
        self.notifier = notifier
        self.conversions = conversions
        self.gateways = dict(gateways or {})

    async def handle(self, event: WebhookEvent) -> ReconcileOutcome:
        first_seen = self.store.record_webhook(
            provider=event.provider,
            invoice_id=event.invoice_id,
            gateway_status=event.gateway_status,
            verification_status="verified" if event.source == "webhook" else event.source,
            payload=event.payload,
        )
        record = self.store.get_by_invoice(event.invoice_id)
        if record is None:
            logger.warning(
                "event for unknown invoice",
                extra={"provider": event.provider, "invoice_id": event.invoice_id, "event": event.source},
            )
            raise UnknownInvoiceError(f"Unknown invoice {event.invoice_id}")
        if record.status.is_terminal:
            return self._log(event, record, ReconcileOutcome.DUPLICATE, first_seen=first_seen)
        if event.status is None:
            self.store.touch(event.invoice_id, event.payload)
            return self._log(event, record, ReconcileOutcome.PENDING)
        if event.status is InvoiceStatus.CONFIRMED:
            return await self._confirm(event, record)

        applied = self.store.mark_terminal(event.invoice_id, event.status, event.payload)
        outcome = _TERMINAL_OUTCOMES[event.status] if applied else ReconcileOutcome.DUPLICATE
        return self._log(event, record, outcome)

    async def _confirm(self, event: WebhookEvent, record: InvoiceRecord) -> ReconcileOutcome:
        observed = event.amount
        if observed is None:
            observed = await self._lookup_amount(record)
        try:
            applied = self.store.mark_confirmed(event.invoice_id, observed, event.payload)
        except AmountMismatchError as exc:
            self.store.mark_terminal(
                event.invoice_id,
                InvoiceStatus.FAILED,
                event.payload,
                review_reason=str(exc),
            )
            logger.error(
                "amount mismatch; invoice flagged for review",
                extra={
                    "provider": event.provider,
                    "invoice_id": event.invoice_id,
                    "order_id": record.order_id,
                    "amount": exc.expected,
                    "observed_amount": exc.observed,
                    "review": True,
                },
            )
            return ReconcileOutcome.REVIEW
        if not applied:
            current = self.store.get_by_invoice(event.invoice_id)
            if current is not None and current.review_required:
                logger.error(
                    "payment for a settled order; invoice flagged for review",
                    extra={
                        "provider": event.provider,
                        "invoice_id": event.invoice_id,
                        "order_id": record.order_id,
                        "review": True,
                    },
                )
                return ReconcileOutcome.REVIEW
            return self._log(event, record, ReconcileOutcome.DUPLICATE)

        self._log(event, record, ReconcileOutcome.CONFIRMED)
        await self._announce_paid(record.order_id)
        return ReconcileOutcome.CONFIRMED

    async def _lookup_amount(self, record: InvoiceRecord) -> Decimal | None:
        mode = _LOOKUP_MODES.get(record.provider)
        gateway = self.gateways.get(mode) if mode else None
        if gateway is None:
            return None
        try:
            status = await gateway.get_invoice_status(record.invoice_id)
        except GatewayError as exc:
            logger.warning(
                "status lookup failed; confirmation left open",
                extra={"provider": record.provider, "invoice_id": record.invoice_id, "event": str(exc)},
            )
            # Nothing written; the record stays in created.
            raise GatewayUnavailableError(
                f"Amount of invoice {record.invoice_id} could not be verified",
                status_code=exc.status_code,
            ) from exc
        return status.amount

    async def _announce_paid(self, order_id: str) -> None:
        order = self.store.get_order(order_id)
        if order is None:
            return
        items = self.store.list_items(order_id)
        await self.notifier.dispatch(order, items, NotificationEvent.ORDER_PAID)
        if self.conversions is not None:
            await self.conversions.send_purchase(order, items)

    def _log(
        self,
        event: WebhookEvent,
        record: InvoiceRecord,
        outcome: ReconcileOutcome,
        *,
        first_seen: bool = True,
    ) -> ReconcileOutcome:
        logger.info(
            "event reconciled",
            extra={
                "provider": event.provider,
                "invoice_id": event.invoice_id,
                "order_id": record.order_id,
                "gateway_status": event.gateway_status,
                "status": record.status,
                "outcome": outcome,
                "event": event.source if first_seen else f"{event.source} (repeat)",
            },
        )
        return outcome
