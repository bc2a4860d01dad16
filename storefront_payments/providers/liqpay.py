from __future__ import annotations

import base64
import binascii
import hmac
import json
from typing import Any, Dict, Tuple
from urllib.parse import urlencode

from storefront_payments.config import Settings
from storefront_payments.domain.models import CheckoutRequest
from storefront_payments.utils.signatures import sha1_b64


class LiqPayCheckout:
    """LiqPay hosted checkout (API v3).

    ``data`` is base64(JSON params); ``signature`` is
    base64(sha1(private_key + data + private_key)). The private key never
    leaves this object.
    """

    provider = "liqpay"
    version = "3"

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def checkout_url(self) -> str:
        return self.settings.liqpay_checkout_url

    def _signature(self, data: str) -> str:
        key = self.settings.liqpay_private_key
        return sha1_b64(key + data + key)

    def build_params(self, request: CheckoutRequest, attempt_id: str) -> Dict[str, Any]:
        base = self.settings.public_base_url.rstrip("/")
        return {
            "public_key": self.settings.liqpay_public_key,
            "version": self.version,
            "action": "pay",
            "amount": format(request.amount, "f"),
            "currency": request.currency,
            "description": request.description,
            # One LiqPay order per payment attempt; the storefront order id
            # travels in ``info``.
            "order_id": attempt_id,
            "info": request.order_id,
            "server_url": f"{base}/api/payments/liqpay/webhook",
            "result_url": f"{base}/api/payments/return?{urlencode({'orderId': request.order_id})}",
            "sandbox": "1" if self.settings.liqpay_sandbox else "0",
        }

    def sign(self, params: Dict[str, Any]) -> Tuple[str, str]:
        data = base64.b64encode(json.dumps(params, ensure_ascii=False).encode("utf-8")).decode("ascii")
        return data, self._signature(data)

    def verify(self, data: str, signature: str | None) -> bool:
        if not data or not signature:
            return False
        return hmac.compare_digest(self._signature(data), signature.strip())

    @staticmethod
    def decode(data: str) -> Dict[str, Any] | None:
        try:
            decoded = json.loads(base64.b64decode(data).decode("utf-8"))
        except (binascii.Error, ValueError, UnicodeDecodeError):
            return None
        if not isinstance(decoded, dict):
            return None
        return decoded
