from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable

from storefront_payments.domain.errors import GatewayDeclinedError, GatewayError
from storefront_payments.domain.models import OrderItem, PaymentIntent, to_money
from storefront_payments.domain.statuses import PARTS_STATUS_MAP
from storefront_payments.utils.signatures import hmac_sha256_b64

from .base import GatewayInvoice, GatewayInvoiceStatus, PaymentGateway

logger = logging.getLogger(__name__)


class MonobankPartsGateway(PaymentGateway):
    """Monobank "purchase by parts" (installments, 2..12 parts).

    Requests are signed with base64(HMAC-SHA256(store secret, raw body)); the
    customer confirms the application inside the bank app, so the page we
    hand back is the storefront's own payment page.
    """

    provider = "monobank_parts"

    def _headers(self, body: bytes) -> Dict[str, str]:
        return {
            "store-id": self.settings.parts_store_id,
            "signature": hmac_sha256_b64(self.settings.parts_secret, body),
            "Content-Type": "application/json",
        }

    async def create_invoice(self, intent: PaymentIntent, items: Iterable[OrderItem]) -> GatewayInvoice:
        if not intent.parts_count:
            raise ValueError("installment intent requires parts_count")
        url = f"{self.settings.parts_api_base}/api/order/create"
        payload: Dict[str, Any] = {
            "store_order_id": intent.order_id,
            "total_sum": float(intent.amount),
            "invoice": {
                "date": datetime.now(timezone.utc).date().isoformat(),
                "number": intent.order_id,
                "source": "INTERNET",
            },
            "available_programs": [
                {"available_parts_count": [intent.parts_count], "type": "payment_installments"}
            ],
            "products": [
                {
                    "name": item.display_name,
                    "count": item.quantity or 1,
                    "sum": float(to_money(item.unit_price)),
                }
                for item in items
            ],
            "result_callback": intent.webhook_url,
        }
        body = json.dumps(payload).encode("utf-8")
        data = await self._send("POST", url, operation="CREATE", headers=self._headers(body), content=body)
        if str(data.get("state") or "").upper() == "FAIL":
            raise GatewayDeclinedError(
                str(data.get("order_sub_state") or "installment application rejected"),
                raw_body=json.dumps(data),
            )
        order_ref = data.get("order_id")
        if not order_ref:
            raise GatewayError("parts create returned no order_id", raw_body=json.dumps(data))
        logger.info(
            "installment order created",
            extra={
                "provider": self.provider,
                "order_id": intent.order_id,
                "invoice_id": order_ref,
                "parts_count": intent.parts_count,
            },
        )
        return GatewayInvoice(
            invoice_id=str(order_ref),
            page_url=str(intent.redirect_url or ""),
            amount=intent.amount,
            payload=data,
        )

    async def get_invoice_status(self, invoice_id: str) -> GatewayInvoiceStatus:
        url = f"{self.settings.parts_api_base}/api/order/state"
        body = json.dumps({"order_id": invoice_id}).encode("utf-8")
        data = await self._send("POST", url, operation="STATUS", headers=self._headers(body), content=body)
        gateway_status = str(data.get("state") or "").upper()
        amount = None
        if data.get("total_sum") is not None:
            try:
                amount = to_money(data["total_sum"])
            except ValueError:
                amount = None
        return GatewayInvoiceStatus(
            invoice_id=invoice_id,
            gateway_status=gateway_status,
            status=PARTS_STATUS_MAP.get(gateway_status),
            amount=amount,
            payload=data,
        )
