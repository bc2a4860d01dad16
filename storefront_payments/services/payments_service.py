from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Any, Mapping

from storefront_payments.config import Settings, settings
from storefront_payments.domain.dtos import (
    CheckoutSignResponse,
    IntentCreateResponse,
    NotificationResponse,
    OrderInsertPayload,
    PaymentReturnResponse,
)
from storefront_payments.domain.enums import Currency, NotificationEvent, PaymentMode, ProviderName
from storefront_payments.domain.errors import (
    GatewayError,
    NotificationError,
    PaymentError,
    UnknownInvoiceError,
    ValidationError,
)
from storefront_payments.domain.models import CheckoutRequest, Order, WebhookEvent, to_money
from storefront_payments.domain.statuses import OrderStatus
from storefront_payments.providers.base import PaymentGateway
from storefront_payments.providers.factory import get_gateways
from storefront_payments.providers.liqpay import LiqPayCheckout
from storefront_payments.repositories.base import PAYABLE_ORDER_STATUSES, PaymentStore

from .conversions import ConversionsClient
from .intent_builder import PaymentIntentBuilder
from .notifications import NotificationDispatcher
from .reconciler import ReconcileOutcome, WebhookReconciler
from .webhooks import WebhookVerifier

logger = logging.getLogger(__name__)

_GATEWAY_PROVIDERS = {
    ProviderName.MONOBANK: PaymentMode.SINGLE,
    ProviderName.MONOBANK_PARTS: PaymentMode.INSTALLMENT,
}


def _order_status(value: str | None) -> OrderStatus:
    try:
        return OrderStatus(value or OrderStatus.NEW.value)
    except ValueError:
        return OrderStatus.NEW


class PaymentsService:
    """Orchestrates payment attempts for storefront orders."""

    def __init__(
        self,
        store: PaymentStore,
        gateways: Mapping[PaymentMode, PaymentGateway] | None = None,
        builder: PaymentIntentBuilder | None = None,
        liqpay: LiqPayCheckout | None = None,
        reconciler: WebhookReconciler | None = None,
        verifier: WebhookVerifier | None = None,
        notifier: NotificationDispatcher | None = None,
        cfg: Settings = settings,
    ):
        self.store = store
        self.settings = cfg
        self.gateways = dict(gateways) if gateways is not None else get_gateways(cfg)
        self.builder = builder or PaymentIntentBuilder(cfg)
        self.liqpay = liqpay or LiqPayCheckout(cfg)
        self.notifier = notifier or NotificationDispatcher(cfg)
        self.reconciler = reconciler or WebhookReconciler(
            store,
            self.notifier,
            conversions=ConversionsClient(cfg),
            gateways=self.gateways,
        )
        self.verifier = verifier or WebhookVerifier(cfg, self.liqpay)

    def _payable_order(self, order_id: str, amount) -> Order:
        order = self.store.get_order(order_id)
        if order is None:
            raise ValidationError(f"Unknown order {order_id}")
        if order.status not in PAYABLE_ORDER_STATUSES:
            raise ValidationError(f"Order {order_id} is {order.status.value} and cannot be paid")
        if to_money(order.total) != to_money(amount):
            raise ValidationError(f"Amount {amount} does not match order total {to_money(order.total)}")
        return order

    async def create_intent(self, action: str | None, body: Any) -> IntentCreateResponse:
        intent = self.builder.build(action, body)
        self._payable_order(intent.order_id, intent.amount)
        items = self.store.list_items(intent.order_id)
        gateway = self.gateways[intent.mode]
        invoice = await gateway.create_invoice(intent, items)
        self.store.put(
            intent.order_id,
            invoice.invoice_id,
            amount=intent.amount,
            provider=ProviderName(gateway.provider),
            mode=intent.mode,
            currency=intent.currency,
            payload=invoice.payload,
        )
        logger.info(
            "invoice created",
            extra={
                "order_id": intent.order_id,
                "invoice_id": invoice.invoice_id,
                "provider": gateway.provider,
                "mode": intent.mode,
                "amount": intent.amount,
                "parts_count": intent.parts_count,
            },
        )
        return IntentCreateResponse(
            invoice_id=invoice.invoice_id,
            page_url=invoice.page_url,
            amount=float(intent.amount),
            parts_count=intent.parts_count,
        )

    def sign_checkout(self, body: Any) -> CheckoutSignResponse:
        return self.sign_request(self.builder.build_checkout(body))

    def sign_request(self, request: CheckoutRequest) -> CheckoutSignResponse:
        """Sign a LiqPay checkout and record it as the order's active attempt."""
        if request.currency != Currency.UAH.value:
            raise ValidationError(f"Unsupported currency {request.currency}")
        self._payable_order(request.order_id, request.amount)
        attempt_id = f"lp-{request.order_id}-{uuid.uuid4().hex[:12]}"
        params = self.liqpay.build_params(request, attempt_id)
        data, signature = self.liqpay.sign(params)
        self.store.put(
            request.order_id,
            attempt_id,
            amount=request.amount,
            provider=ProviderName.LIQPAY,
            mode=PaymentMode.SINGLE,
            payload={"description": request.description},
        )
        logger.info(
            "checkout signed",
            extra={
                "order_id": request.order_id,
                "invoice_id": attempt_id,
                "provider": ProviderName.LIQPAY,
                "amount": request.amount,
            },
        )
        return CheckoutSignResponse(data=data, signature=signature)

    async def handle_event(self, event: WebhookEvent) -> ReconcileOutcome:
        try:
            return await self.reconciler.handle(event)
        except UnknownInvoiceError:
            return ReconcileOutcome.UNKNOWN

    async def handle_return(
        self,
        order_id: str,
        data: str | None = None,
        signature: str | None = None,
    ) -> PaymentReturnResponse:
        """Refresh the order's active attempt when the browser comes back."""
        record = self.store.get(order_id)
        if record is None:
            order = self.store.get_order(order_id)
            if order is None:
                raise ValidationError(f"Unknown order {order_id}")
            return PaymentReturnResponse(order_id=order_id, order_status=order.status)

        if not record.status.is_terminal:
            event = await self._return_event(record.provider, record.invoice_id, data, signature)
            if event is not None and event.status is not None:
                try:
                    await self.handle_event(event)
                except GatewayError as exc:
                    logger.warning(
                        "return left invoice open",
                        extra={"provider": record.provider, "invoice_id": record.invoice_id, "event": exc.code},
                    )
            record = self.store.get_by_invoice(record.invoice_id) or record

        order = self.store.get_order(order_id)
        return PaymentReturnResponse(
            order_id=order_id,
            invoice_id=record.invoice_id,
            invoice_status=record.status,
            order_status=order.status if order else None,
        )

    async def _return_event(
        self,
        provider: ProviderName,
        invoice_id: str,
        data: str | None,
        signature: str | None,
    ) -> WebhookEvent | None:
        if provider is ProviderName.LIQPAY:
            if not data:
                return None
            try:
                event = self.verifier.liqpay_callback(data, signature)
            except PaymentError as exc:
                logger.warning(
                    "return payload rejected",
                    extra={"provider": provider, "invoice_id": invoice_id, "event": exc.code},
                )
                return None
            return replace(event, source="return")

        gateway = self.gateways.get(_GATEWAY_PROVIDERS[provider])
        if gateway is None:
            return None
        try:
            status = await gateway.get_invoice_status(invoice_id)
        except GatewayError as exc:
            logger.warning(
                "status lookup failed",
                extra={"provider": provider, "invoice_id": invoice_id, "event": str(exc)},
            )
            return None
        return WebhookEvent(
            provider=provider,
            invoice_id=status.invoice_id or invoice_id,
            gateway_status=status.gateway_status,
            status=status.status,
            amount=status.amount,
            payload=status.payload,
            source="return",
        )

    async def notify_order_created(self, payload: OrderInsertPayload) -> NotificationResponse:
        row = payload.record
        order = Order(
            id=row.id,
            total=to_money(row.total_price),
            status=_order_status(row.status),
            customer_name=row.customer_name,
            customer_phone=row.customer_phone,
            customer_email=row.customer_email,
            delivery_method=row.delivery_method,
            delivery_info=row.delivery_info,
            payment_method=row.payment_method,
        )
        items = self.store.list_items(order.id)
        result = await self.notifier.dispatch(order, items, NotificationEvent.ORDER_CREATED)
        if not result.ok:
            raise NotificationError(result.error or "Notification failed")
        return NotificationResponse(ok=True, message_id=result.message_id)
