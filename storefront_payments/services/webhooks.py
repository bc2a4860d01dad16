from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any, Callable, Dict

from cryptography.hazmat.primitives.asymmetric import ec

from storefront_payments.config import Settings, settings
from storefront_payments.domain.enums import ProviderName
from storefront_payments.domain.errors import (
    ConfigurationError,
    InvalidSignatureError,
    MalformedWebhookError,
)
from storefront_payments.domain.models import WebhookEvent, from_minor_units, to_money
from storefront_payments.domain.statuses import (
    LIQPAY_STATUS_MAP,
    MONOBANK_STATUS_MAP,
    PARTS_STATUS_MAP,
    InvoiceStatus,
)
from storefront_payments.providers.liqpay import LiqPayCheckout
from storefront_payments.utils.signatures import (
    load_ec_public_key,
    verify_ecdsa_sha256,
    verify_hmac_sha256_b64,
)

logger = logging.getLogger(__name__)


def _json_object(body: bytes) -> Dict[str, Any]:
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedWebhookError("Webhook body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise MalformedWebhookError("Webhook body must be a JSON object")
    return payload


def _required(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MalformedWebhookError(f"Missing required field: {key}")
    return str(value).strip()


def _status(raw: str, mapping: Dict[str, InvoiceStatus | None]) -> InvoiceStatus | None:
    if raw not in mapping:
        # Gateways add intermediate states over time; treat them as in-flight.
        logger.warning("unrecognized gateway status", extra={"gateway_status": raw})
        return None
    return mapping[raw]


def _amount(payload: Dict[str, Any], key: str, convert: Callable[[Any], Decimal]) -> Decimal | None:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise MalformedWebhookError(f"Invalid amount in field {key}")
    try:
        return convert(value)
    except (TypeError, ValueError, ArithmeticError) as exc:
        raise MalformedWebhookError(f"Invalid amount in field {key}") from exc


class WebhookVerifier:
    """Authenticate inbound gateway callbacks and normalize their shape.

    Signatures are checked over the raw body before any field is trusted.
    Nothing here touches storage.
    """

    def __init__(self, cfg: Settings = settings, liqpay: LiqPayCheckout | None = None):
        self.settings = cfg
        self.liqpay = liqpay or LiqPayCheckout(cfg)
        self._monobank_key: ec.EllipticCurvePublicKey | None = None

    def _monobank_public_key(self) -> ec.EllipticCurvePublicKey:
        if self._monobank_key is None:
            try:
                self._monobank_key = load_ec_public_key(self.settings.monopay_pubkey)
            except ValueError as exc:
                raise ConfigurationError(f"MONOPAY_PUBKEY is unusable: {exc}") from exc
        return self._monobank_key

    def monobank(self, body: bytes, x_sign: str | None) -> WebhookEvent:
        """Monobank acquiring webhook, signed with ECDSA-SHA256 in ``X-Sign``."""
        if not verify_ecdsa_sha256(self._monobank_public_key(), body, x_sign):
            raise InvalidSignatureError("Invalid X-Sign")
        payload = _json_object(body)
        gateway_status = _required(payload, "status").lower()
        return WebhookEvent(
            provider=ProviderName.MONOBANK,
            invoice_id=_required(payload, "invoiceId"),
            gateway_status=gateway_status,
            status=_status(gateway_status, MONOBANK_STATUS_MAP),
            amount=_amount(payload, "amount", from_minor_units),
            payload=payload,
        )

    def parts(self, body: bytes, signature: str | None) -> WebhookEvent:
        """Installment state callback, signed with the store HMAC secret."""
        if not verify_hmac_sha256_b64(self.settings.parts_secret, body, signature):
            raise InvalidSignatureError("Invalid signature")
        payload = _json_object(body)
        gateway_status = _required(payload, "state").upper()
        return WebhookEvent(
            provider=ProviderName.MONOBANK_PARTS,
            invoice_id=_required(payload, "order_id"),
            gateway_status=gateway_status,
            status=_status(gateway_status, PARTS_STATUS_MAP),
            amount=_amount(payload, "total_sum", to_money),
            payload=payload,
        )

    def liqpay_callback(self, data: str | None, signature: str | None) -> WebhookEvent:
        """LiqPay server callback: base64 ``data`` plus SHA1 ``signature``."""
        if not data:
            raise MalformedWebhookError("Missing required field: data")
        if not self.liqpay.verify(data, signature):
            raise InvalidSignatureError("Invalid signature")
        payload = self.liqpay.decode(data)
        if payload is None:
            raise MalformedWebhookError("Failed to decode payment data")
        gateway_status = _required(payload, "status").lower()
        return WebhookEvent(
            provider=ProviderName.LIQPAY,
            invoice_id=_required(payload, "order_id"),
            gateway_status=gateway_status,
            status=_status(gateway_status, LIQPAY_STATUS_MAP),
            amount=_amount(payload, "amount", to_money),
            payload=payload,
        )
