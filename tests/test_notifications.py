from __future__ import annotations

import asyncio
from decimal import Decimal

import httpx
import pytest

from storefront_payments.config import Settings, settings
from storefront_payments.domain.enums import NotificationEvent
from storefront_payments.domain.models import OrderItem
from storefront_payments.services.conversions import ConversionsClient, hash_pii
from storefront_payments.services.delivery import (
    ADDRESS_PLACEHOLDER,
    NOT_SPECIFIED,
    format_address,
    format_delivery_method,
    safe_address,
)
from storefront_payments.services.notifications import NotificationDispatcher

from conftest import make_order


def test_item_names_fall_back() -> None:
    assert OrderItem(quantity=1, unit_price=Decimal("1"), product_id="3", product_name="Live").display_name == "Live"
    assert OrderItem(quantity=1, unit_price=Decimal("1"), product_id="3", snapshot_name="Snap").display_name == "Snap"
    assert OrderItem(quantity=1, unit_price=Decimal("1"), product_id="3").display_name == "Товар #3"


@pytest.mark.parametrize(
    "info, expected",
    [
        ({"city": "Київ", "warehouse": "№5"}, "Київ, Відділення: №5"),
        ({"cityName": {"Description": "Львів"}, "street": "Шевченка 1", "zip": 79000}, "Львів, Шевченка 1, Індекс: 79000"),
        ('{"settlement": "Одеса"}', "Одеса"),
        ("вул. Садова 3", "вул. Садова 3"),
        ({}, NOT_SPECIFIED),
        (None, NOT_SPECIFIED),
    ],
)
def test_format_address(info, expected: str) -> None:
    assert format_address(info) == expected


def test_safe_address_placeholder() -> None:
    assert safe_address({"city": ["not", "a", "string"]}) == ADDRESS_PLACEHOLDER
    assert safe_address(12345) == ADDRESS_PLACEHOLDER


def test_delivery_method_labels() -> None:
    assert format_delivery_method("ukrposhta") == "Укрпошта"
    assert format_delivery_method("pickup") == "pickup"
    assert format_delivery_method(None) == NOT_SPECIFIED


def test_compose_escapes_html() -> None:
    order = make_order("o1", "100.50", customer_name="<b>Eve</b>")
    order.delivery_info = {"city": "Київ", "comment": "дзвонити <після> 18", "full_name": "Петро"}
    text = NotificationDispatcher(settings).compose(order, order.items, NotificationEvent.ORDER_CREATED)
    assert "&lt;b&gt;Eve&lt;/b&gt;" in text
    assert "Отримувач: Петро" in text
    assert "Кавоварка x 1 - 100.50 ₴" in text
    assert "дзвонити &lt;після&gt; 18" in text


def test_broken_delivery_payload_still_sends(fake_http) -> None:
    order = make_order("o1", "100.50")
    order.delivery_info = ["unexpected"]
    result = asyncio.run(NotificationDispatcher(settings).dispatch(order, order.items))
    assert result.ok
    (call,) = fake_http.calls_to("/sendMessage")
    assert ADDRESS_PLACEHOLDER in call["json"]["text"]
    assert call["json"]["parse_mode"] == "HTML"
    assert call["json"]["chat_id"] == "-100"


def test_dispatch_reports_telegram_rejection(fake_http, caplog: pytest.LogCaptureFixture) -> None:
    fake_http.add("/sendMessage", json={"ok": False, "description": "Bad Request: chat not found"})
    order = make_order("o1", "100.50")
    result = asyncio.run(NotificationDispatcher(settings).dispatch(order, order.items))
    assert not result.ok
    assert "chat not found" in result.error
    assert "bot-token" not in caplog.text


def test_dispatch_network_failure(fake_http) -> None:
    fake_http.add("/sendMessage", exc=httpx.ConnectError("refused"))
    order = make_order("o1", "100.50")
    result = asyncio.run(NotificationDispatcher(settings).dispatch(order, []))
    assert not result.ok
    assert result.error == "ConnectError"


def test_conversions_disabled_without_credentials(fake_http) -> None:
    result = asyncio.run(ConversionsClient(settings).send_purchase(make_order("o1", "1.00"), []))
    assert not result.ok and result.error == "disabled"
    assert fake_http.calls == []


def test_conversions_do_not_retry_auth_errors(fake_http) -> None:
    cfg = Settings(meta_pixel_id="555", meta_capi_access_token="t", meta_graph_api_base="https://graph.test")
    fake_http.add("/555/events", status=400, json={"error": {"code": 190, "message": "Invalid OAuth access token"}})
    result = asyncio.run(ConversionsClient(cfg, backoff_seconds=0).send_purchase(make_order("o1", "1.00"), []))
    assert not result.ok
    assert len(fake_http.calls_to("/555/events")) == 1


def test_conversions_retry_transient_errors(fake_http) -> None:
    cfg = Settings(meta_pixel_id="555", meta_capi_access_token="t", meta_graph_api_base="https://graph.test")
    fake_http.add("/555/events", status=500, json={"error": {"code": 2, "message": "temporary"}})
    result = asyncio.run(ConversionsClient(cfg, backoff_seconds=0).send_purchase(make_order("o1", "1.00"), []))
    assert not result.ok
    assert len(fake_http.calls_to("/555/events")) == 3


def test_hash_pii_normalizes() -> None:
    assert hash_pii(" Olena@Example.com ") == hash_pii("olena@example.com")
    assert hash_pii("") is None
