from __future__ import annotations

import asyncio
from decimal import Decimal

import httpx

from storefront_payments.domain.errors import SigningError
from storefront_payments.domain.models import CheckoutRequest
from storefront_payments.services.redirect_session import (
    MANUAL_SUBMIT_LABEL,
    SIGNING_FAILED_MESSAGE,
    HttpCheckoutSigner,
    RedirectSession,
    render_checkout_page,
)

REQUEST = CheckoutRequest(order_id="o1", amount=Decimal("100.50"), currency="UAH", description="Замовлення o1")
CHECKOUT_URL = "https://www.liqpay.ua/api/3/checkout"


class CountingSigner:
    def __init__(self, result=("DATA", "SIG"), error: Exception | None = None, delay: float = 0) -> None:
        self.calls = 0
        self.result = result
        self.error = error
        self.delay = delay

    async def sign(self, request: CheckoutRequest):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


def test_successful_signing_auto_submits() -> None:
    signer = CountingSigner()
    session = RedirectSession(signer, REQUEST, CHECKOUT_URL)
    form = asyncio.run(session.start())
    assert form.auto_submit
    assert form.fields == {"data": "DATA", "signature": "SIG"}
    assert form.error is None


def test_failure_offers_manual_button_without_retry() -> None:
    signer = CountingSigner(error=SigningError("boom"))
    session = RedirectSession(signer, REQUEST, CHECKOUT_URL)

    async def scenario():
        first = await session.start()
        second = await session.start()
        return first, second

    first, second = asyncio.run(scenario())
    assert not first.auto_submit
    assert first.error == SIGNING_FAILED_MESSAGE
    assert second is first
    assert signer.calls == 1
    page = render_checkout_page(first)
    assert MANUAL_SUBMIT_LABEL in page
    assert ".submit()" not in page


def test_close_abandons_in_flight_signing() -> None:
    signer = CountingSigner(delay=1)
    session = RedirectSession(signer, REQUEST, CHECKOUT_URL)

    async def scenario():
        pending = asyncio.ensure_future(session.start())
        await asyncio.sleep(0)
        session.close()
        return await pending

    assert asyncio.run(scenario()) is None
    assert session.closed
    assert asyncio.run(session.start()) is None


def test_rendered_page_escapes_values() -> None:
    session = RedirectSession(CountingSigner(result=('a"b', "<sig>")), REQUEST, CHECKOUT_URL)
    page = render_checkout_page(asyncio.run(session.start()))
    assert 'value="a&quot;b"' in page
    assert "&lt;sig&gt;" in page
    assert "document.getElementById('checkout-form').submit();" in page
    assert f'action="{CHECKOUT_URL}"' in page


def test_http_signer_failures(fake_http) -> None:
    signer = HttpCheckoutSigner("https://api.shop.example/api/payments/liqpay/sign", timeout=1)
    fake_http.add("/liqpay/sign", status=500, json={"detail": "down"})
    form = asyncio.run(RedirectSession(signer, REQUEST, CHECKOUT_URL).start())
    assert form.error == SIGNING_FAILED_MESSAGE

    fake_http.add("/liqpay/sign", json={"data": "only-data"})
    form = asyncio.run(RedirectSession(signer, REQUEST, CHECKOUT_URL).start())
    assert not form.auto_submit

    fake_http.add("/liqpay/sign", exc=httpx.ReadTimeout("slow"))
    form = asyncio.run(RedirectSession(signer, REQUEST, CHECKOUT_URL).start())
    assert not form.auto_submit
    assert len(fake_http.calls_to("/liqpay/sign")) == 3


def test_http_signer_success(fake_http) -> None:
    fake_http.add("/liqpay/sign", json={"data": "D", "signature": "S"})
    signer = HttpCheckoutSigner("https://api.shop.example/api/payments/liqpay/sign")
    form = asyncio.run(RedirectSession(signer, REQUEST, CHECKOUT_URL).start())
    assert form.fields == {"data": "D", "signature": "S"}
    (call,) = fake_http.calls_to("/liqpay/sign")
    assert call["json"]["orderId"] == "o1"
    assert call["json"]["amount"] == "100.50"
