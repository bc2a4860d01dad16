from __future__ import annotations

import base64
import json
import os
import pathlib
import sys
from decimal import Decimal
from typing import Any, Callable

import httpx
import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

MONOBANK_KEY = ec.generate_private_key(ec.SECP256R1())
_MONOBANK_PUBKEY_PEM = MONOBANK_KEY.public_key().public_bytes(
    serialization.Encoding.PEM,
    serialization.PublicFormat.SubjectPublicKeyInfo,
)

os.environ.update(
    {
        "API_BEARER_TOKEN": "test-bearer",
        "SITE_URL": "https://shop.example",
        "PUBLIC_BASE_URL": "https://api.shop.example",
        "MONOPAY_TOKEN": "mono-token",
        "MONOPAY_PUBKEY": base64.b64encode(_MONOBANK_PUBKEY_PEM).decode("ascii"),
        "MONOPAY_API_BASE": "https://mono.test",
        "PARTS_STORE_ID": "store-1",
        "PARTS_SECRET": "parts-secret",
        "PARTS_API_BASE": "https://parts.test",
        "LIQPAY_PUBLIC_KEY": "lp-public",
        "LIQPAY_PRIVATE_KEY": "lp-private",
        "TELEGRAM_BOT_TOKEN": "123:bot-token",
        "TELEGRAM_CHAT_ID": "-100",
        "TELEGRAM_API_BASE": "https://telegram.test",
        "META_PIXEL_ID": "",
        "META_CAPI_ACCESS_TOKEN": "",
        "DB_HOST": "",
        "DB_USER": "",
        "DB_NAME": "",
    }
)

from storefront_payments.config import settings  # noqa: E402
from storefront_payments.domain.models import Order, OrderItem  # noqa: E402
from storefront_payments.repositories.memory_store import InMemoryPaymentStore  # noqa: E402
from storefront_payments.services.payments_service import PaymentsService  # noqa: E402
from storefront_payments.utils.signatures import hmac_sha256_b64  # noqa: E402


class FakeHttp:
    """Stand-in for outbound httpx traffic keyed by URL fragment."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self._routes: list[tuple[str, int, Any, Exception | None]] = []

    def add(self, fragment: str, status: int = 200, json: Any = None, exc: Exception | None = None) -> None:
        self._routes.append((fragment, status, json, exc))

    def calls_to(self, fragment: str) -> list[dict[str, Any]]:
        return [call for call in self.calls if fragment in call["url"]]

    async def request(self, method: str, url: Any, **kwargs: Any) -> httpx.Response:
        self.calls.append({"method": method, "url": str(url), **kwargs})
        for fragment, status, payload, exc in reversed(self._routes):
            if fragment in str(url):
                if exc is not None:
                    raise exc
                return httpx.Response(status, json=payload, request=httpx.Request(method, str(url)))
        return httpx.Response(404, json={"error": "no route"}, request=httpx.Request(method, str(url)))


@pytest.fixture()
def fake_http(monkeypatch: pytest.MonkeyPatch) -> FakeHttp:
    fake = FakeHttp()

    async def fake_request(self, method, url, **kwargs):  # type: ignore[override]
        return await fake.request(method, url, **kwargs)

    monkeypatch.setattr(httpx.AsyncClient, "request", fake_request)
    fake.add("/sendMessage", json={"ok": True, "result": {"message_id": 42}})
    return fake


def make_order(order_id: str, total: str, **kwargs: Any) -> Order:
    fields: dict[str, Any] = {
        "customer_name": "Олена Коваль",
        "customer_phone": "+380501112233",
        "customer_email": "olena@example.com",
        "delivery_method": "nova_poshta_dept",
        "delivery_info": {"city": "Київ", "warehouse": {"Description": "Відділення №5"}},
        "payment_method": "monobank",
        "items": [OrderItem(quantity=1, unit_price=Decimal(total), product_id="7", product_name="Кавоварка")],
    }
    fields.update(kwargs)
    return Order(id=order_id, total=Decimal(total), **fields)


@pytest.fixture()
def store() -> InMemoryPaymentStore:
    memory = InMemoryPaymentStore()
    memory.save_order(make_order("o1", "100.50"))
    memory.save_order(make_order("o2", "200.75"))
    return memory


@pytest.fixture()
def service(store: InMemoryPaymentStore) -> PaymentsService:
    return PaymentsService(store, cfg=settings)


@pytest.fixture()
def sign_monobank() -> Callable[[bytes], str]:
    def _sign(body: bytes) -> str:
        return base64.b64encode(MONOBANK_KEY.sign(body, ec.ECDSA(hashes.SHA256()))).decode("ascii")

    return _sign


@pytest.fixture()
def sign_parts() -> Callable[[bytes], str]:
    def _sign(body: bytes) -> str:
        return hmac_sha256_b64(settings.parts_secret, body)

    return _sign


@pytest.fixture()
def monobank_body() -> Callable[..., bytes]:
    def _body(invoice_id: str = "inv-1", status: str = "success", amount: int | None = 10050) -> bytes:
        payload: dict[str, Any] = {"invoiceId": invoice_id, "status": status}
        if amount is not None:
            payload["amount"] = amount
        return json.dumps(payload).encode("utf-8")

    return _body
