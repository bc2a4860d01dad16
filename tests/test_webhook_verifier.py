from __future__ import annotations

import base64
import json
from decimal import Decimal

import pytest

from storefront_payments.config import Settings, settings
from storefront_payments.domain.enums import ProviderName
from storefront_payments.domain.errors import ConfigurationError, InvalidSignatureError, MalformedWebhookError
from storefront_payments.domain.statuses import InvoiceStatus
from storefront_payments.services.webhooks import WebhookVerifier


@pytest.fixture()
def verifier() -> WebhookVerifier:
    return WebhookVerifier(settings)


def test_monobank_valid(verifier, monobank_body, sign_monobank) -> None:
    body = monobank_body()
    event = verifier.monobank(body, sign_monobank(body))
    assert event.provider is ProviderName.MONOBANK
    assert event.invoice_id == "inv-1"
    assert event.status is InvoiceStatus.CONFIRMED
    assert event.amount == Decimal("100.50")


def test_monobank_forged_signature(verifier, monobank_body, sign_monobank) -> None:
    signature = sign_monobank(monobank_body(amount=100))
    with pytest.raises(InvalidSignatureError):
        verifier.monobank(monobank_body(), signature)
    with pytest.raises(InvalidSignatureError):
        verifier.monobank(monobank_body(), None)
    with pytest.raises(InvalidSignatureError):
        verifier.monobank(monobank_body(), "not-base64!!")


def test_monobank_in_flight_status(verifier, monobank_body, sign_monobank) -> None:
    body = monobank_body(status="processing")
    assert verifier.monobank(body, sign_monobank(body)).status is None


def test_unrecognized_status_is_in_flight(verifier, monobank_body, sign_monobank) -> None:
    body = monobank_body(status="weird")
    event = verifier.monobank(body, sign_monobank(body))
    assert event.status is None
    assert event.gateway_status == "weird"


def test_liqpay_refund_is_failure(verifier) -> None:
    data, signature = verifier.liqpay.sign({"order_id": "lp-o1-abc", "status": "refund", "amount": 100.5})
    assert verifier.liqpay_callback(data, signature).status is InvoiceStatus.FAILED


@pytest.mark.parametrize(
    "payload",
    [b"not json", b"[]", b'{"status": "success"}', b'{"invoiceId": "inv-1"}',
     b'{"invoiceId": "inv-1", "status": "success", "amount": "lots"}'],
)
def test_monobank_malformed(verifier, sign_monobank, payload: bytes) -> None:
    with pytest.raises(MalformedWebhookError):
        verifier.monobank(payload, sign_monobank(payload))


def test_monobank_unusable_key(monobank_body) -> None:
    broken = WebhookVerifier(Settings(monopay_pubkey="bm90IGEga2V5"))
    with pytest.raises(ConfigurationError):
        broken.monobank(monobank_body(), "c2ln")


def test_parts_valid(verifier, sign_parts) -> None:
    body = json.dumps({"order_id": "parts-9", "state": "SUCCESS", "total_sum": 200.75}).encode()
    event = verifier.parts(body, sign_parts(body))
    assert event.provider is ProviderName.MONOBANK_PARTS
    assert event.status is InvoiceStatus.CONFIRMED
    assert event.amount == Decimal("200.75")


def test_parts_forged(verifier, sign_parts) -> None:
    body = json.dumps({"order_id": "parts-9", "state": "SUCCESS"}).encode()
    with pytest.raises(InvalidSignatureError):
        verifier.parts(body, sign_parts(body + b" "))


def test_liqpay_callback(verifier) -> None:
    data, signature = verifier.liqpay.sign({"order_id": "lp-o1-abc", "status": "success", "amount": 100.5})
    event = verifier.liqpay_callback(data, signature)
    assert event.provider is ProviderName.LIQPAY
    assert event.invoice_id == "lp-o1-abc"
    assert event.amount == Decimal("100.50")
    assert event.status is InvoiceStatus.CONFIRMED


def test_liqpay_callback_rejections(verifier) -> None:
    data, signature = verifier.liqpay.sign({"order_id": "lp-o1-abc", "status": "success"})
    with pytest.raises(MalformedWebhookError):
        verifier.liqpay_callback(None, signature)
    with pytest.raises(InvalidSignatureError):
        verifier.liqpay_callback(data, "forged")
    garbage = base64.b64encode(b"not json").decode()
    with pytest.raises(MalformedWebhookError):
        verifier.liqpay_callback(garbage, verifier.liqpay._signature(garbage))
