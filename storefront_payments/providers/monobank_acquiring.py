from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable

from storefront_payments.domain.errors import GatewayDeclinedError, GatewayError
from storefront_payments.domain.models import (
    OrderItem,
    PaymentIntent,
    from_minor_units,
    to_minor_units,
)
from storefront_payments.domain.statuses import MONOBANK_STATUS_MAP

from .base import GatewayInvoice, GatewayInvoiceStatus, PaymentGateway

logger = logging.getLogger(__name__)


class MonobankAcquiringGateway(PaymentGateway):
    """Monobank acquiring: single card charge through a hosted invoice page.

    Amounts travel in minor units (kopiykas), currency as ISO 4217 numeric.
    """

    provider = "monobank"
    secret_headers = frozenset({"x-token"})

    def _headers(self) -> Dict[str, str]:
        return {
            "X-Token": self.settings.monopay_token,
            "Content-Type": "application/json",
        }

    def _basket(self, items: Iterable[OrderItem]) -> list[Dict[str, Any]]:
        basket = []
        for item in items:
            quantity = item.quantity or 1
            basket.append(
                {
                    "name": item.display_name,
                    "qty": quantity,
                    "sum": to_minor_units(item.unit_price),
                    "code": str(item.product_id or ""),
                }
            )
        return basket

    async def create_invoice(self, intent: PaymentIntent, items: Iterable[OrderItem]) -> GatewayInvoice:
        url = f"{self.settings.monopay_api_base}/api/merchant/invoice/create"
        payload: Dict[str, Any] = {
            "amount": to_minor_units(intent.amount),
            "ccy": self.settings.monopay_currency_code,
            "redirectUrl": intent.redirect_url,
            "webHookUrl": intent.webhook_url,
            "validity": self.settings.invoice_validity_seconds,
            "merchantPaymentInfo": {
                "reference": intent.order_id,
                "destination": f"Оплата замовлення #{intent.order_id}",
                "basketOrder": self._basket(items),
            },
        }
        data = await self._send(
            "POST",
            url,
            operation="CREATE",
            headers=self._headers(),
            content=json.dumps(payload).encode("utf-8"),
        )
        if data.get("errCode"):
            raise GatewayDeclinedError(
                str(data.get("errText") or data.get("errCode")),
                raw_body=json.dumps(data),
            )
        invoice_id = data.get("invoiceId")
        page_url = data.get("pageUrl")
        if not invoice_id or not page_url:
            raise GatewayError("monobank create returned no invoice", raw_body=json.dumps(data))
        logger.info(
            "invoice created",
            extra={"provider": self.provider, "order_id": intent.order_id, "invoice_id": invoice_id},
        )
        return GatewayInvoice(
            invoice_id=str(invoice_id),
            page_url=str(page_url),
            amount=intent.amount,
            payload=data,
        )

    async def get_invoice_status(self, invoice_id: str) -> GatewayInvoiceStatus:
        url = f"{self.settings.monopay_api_base}/api/merchant/invoice/status"
        data = await self._send(
            "GET",
            url,
            operation="STATUS",
            headers=self._headers(),
            params={"invoiceId": invoice_id},
        )
        gateway_status = str(data.get("status") or "")
        amount = None
        if data.get("amount") is not None:
            try:
                amount = from_minor_units(data["amount"])
            except (TypeError, ValueError):
                amount = None
        return GatewayInvoiceStatus(
            invoice_id=invoice_id,
            gateway_status=gateway_status,
            status=MONOBANK_STATUS_MAP.get(gateway_status),
            amount=amount,
            payload=data,
        )
