from __future__ import annotations

import asyncio
import html
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Protocol, Tuple

import httpx

from storefront_payments.domain.errors import PaymentError, SigningError
from storefront_payments.domain.models import CheckoutRequest

logger = logging.getLogger(__name__)

SIGNING_FAILED_MESSAGE = "Виникла помилка при ініціалізації оплати. Спробуйте ще раз."
MANUAL_SUBMIT_LABEL = "Оплатити зараз"


class CheckoutSigner(Protocol):
    async def sign(self, request: CheckoutRequest) -> Tuple[str, str]:
        ...


@dataclass
class CheckoutForm:
    """What the browser needs to post to the hosted checkout page."""

    action: str
    fields: Dict[str, str] = field(default_factory=dict)
    auto_submit: bool = False
    error: str | None = None


class HttpCheckoutSigner:
    """Ask the signing endpoint for ``{data, signature}`` over HTTP."""

    def __init__(self, endpoint: str, timeout: float = 10.0):
        self.endpoint = endpoint
        self.timeout = timeout

    async def sign(self, request: CheckoutRequest) -> Tuple[str, str]:
        body = {
            "orderId": request.order_id,
            "amount": format(request.amount, "f"),
            "currency": request.currency,
            "description": request.description,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.endpoint, json=body)
        except httpx.HTTPError as exc:
            raise SigningError(f"Signing request failed: {type(exc).__name__}") from exc
        if resp.is_error:
            raise SigningError(f"Signing endpoint returned HTTP {resp.status_code}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise SigningError("Signing endpoint returned a non-JSON body") from exc
        if not isinstance(payload, dict) or not payload.get("data") or not payload.get("signature"):
            raise SigningError("Signing response lacks data or signature")
        return str(payload["data"]), str(payload["signature"])


class LocalCheckoutSigner:
    """Sign in-process; typed payment failures surface as ``SigningError``."""

    def __init__(self, sign: Callable[[CheckoutRequest], Tuple[str, str]]):
        self._sign = sign

    async def sign(self, request: CheckoutRequest) -> Tuple[str, str]:
        try:
            return self._sign(request)
        except SigningError:
            raise
        except PaymentError as exc:
            raise SigningError(str(exc)) from exc


class RedirectSession:
    """One attempt to hand the browser over to the hosted checkout.

    ``start`` signs at most once and never retries; a failure produces a
    form with a manual submit button instead. ``close`` abandons a signing
    request still in flight and its result is dropped.
    """

    def __init__(self, signer: CheckoutSigner, request: CheckoutRequest, checkout_url: str):
        self.signer = signer
        self.request = request
        self.checkout_url = checkout_url
        self._task: asyncio.Task | None = None
        self._outcome: CheckoutForm | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> CheckoutForm | None:
        if self._closed:
            return None
        if self._task is not None:
            return self._outcome
        self._task = asyncio.ensure_future(self.signer.sign(self.request))
        try:
            data, signature = await self._task
        except asyncio.CancelledError:
            if self._closed:
                return None
            raise
        except SigningError as exc:
            logger.warning(
                "checkout signing failed",
                extra={"order_id": self.request.order_id, "provider": "liqpay", "event": str(exc)},
            )
            outcome = CheckoutForm(action=self.checkout_url, error=SIGNING_FAILED_MESSAGE)
        else:
            outcome = CheckoutForm(
                action=self.checkout_url,
                fields={"data": data, "signature": signature},
                auto_submit=True,
            )
        if self._closed:
            return None
        self._outcome = outcome
        return outcome

    def close(self) -> None:
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()


def render_checkout_page(form: CheckoutForm) -> str:
    hidden = "\n".join(
        f'    <input type="hidden" name="{html.escape(name)}" value="{html.escape(value)}">'
        for name, value in form.fields.items()
    )
    error = f'  <p class="error" role="alert">{html.escape(form.error)}</p>\n' if form.error else ""
    script = (
        "  <script>document.getElementById('checkout-form').submit();</script>\n" if form.auto_submit else ""
    )
    # The manual button stays visible so a blocked script still leaves a way forward.
    return (
        "<!DOCTYPE html>\n"
        '<html lang="uk">\n'
        "<head>\n"
        '  <meta charset="utf-8">\n'
        "  <title>Оплата замовлення</title>\n"
        "</head>\n"
        "<body>\n"
        f"{error}"
        f'  <form id="checkout-form" method="POST" action="{html.escape(form.action)}" accept-charset="utf-8">\n'
        f"{hidden}\n"
        f'    <button type="submit">{MANUAL_SUBMIT_LABEL}</button>\n'
        "  </form>\n"
        f"{script}"
        "</body>\n"
        "</html>\n"
    )
