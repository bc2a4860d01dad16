from __future__ import annotations

import html
import logging
import time
from decimal import Decimal
from typing import Iterable

import httpx

from storefront_payments.config import Settings, settings
from storefront_payments.domain.enums import NotificationEvent
from storefront_payments.domain.models import NotificationResult, Order, OrderItem, to_money

from .delivery import (
    COMMENT_RULE,
    NOT_SPECIFIED,
    RECIPIENT_RULE,
    format_delivery_method,
    safe_address,
    safe_extract,
)

logger = logging.getLogger(__name__)


def _money(value: Decimal) -> str:
    return f"{to_money(value):.2f} ₴"


def _text(value: object | None) -> str:
    if value is None or value == "":
        return NOT_SPECIFIED
    return html.escape(str(value))


class NotificationDispatcher:
    """Post order events to the operations Telegram chat.

    Best-effort: failures come back as ``NotificationResult(ok=False)`` and
    never propagate into the order-state transition that triggered them.
    """

    channel = "telegram"

    HEADLINES = {
        NotificationEvent.ORDER_CREATED: "🛒 Нове замовлення",
        NotificationEvent.ORDER_PAID: "✅ Замовлення оплачено",
    }

    def __init__(self, cfg: Settings = settings):
        self.settings = cfg

    def compose(self, order: Order, items: Iterable[OrderItem], event: NotificationEvent) -> str:
        short_id = html.escape(str(order.id)[:8].upper())
        lines = [f"{self.HEADLINES[event]} #{short_id}", ""]
        lines.append(f"👤 Клієнт: {_text(order.customer_name)}")
        lines.append(f"📧 Email: {_text(order.customer_email)}")
        lines.append(f"📱 Телефон: {_text(order.customer_phone)}")
        lines.append("")
        lines.append("📦 Товари:")
        items = list(items)
        if items:
            for item in items:
                quantity = item.quantity or 1
                lines.append(
                    f"- {html.escape(item.display_name)} x {quantity} - {_money(item.unit_price * quantity)}"
                )
        else:
            lines.append("- Товари відсутні")
        lines.append("")
        lines.append(f"💰 Сума: {_money(order.total)}")
        if event is NotificationEvent.ORDER_PAID:
            lines.append(f"💳 Оплата: {_text(order.payment_method)} ({_text(order.invoice_id)})")
        lines.append("")
        lines.append(f"🚚 Доставка: {html.escape(format_delivery_method(order.delivery_method))}")
        lines.append(f"📍 Адреса: {html.escape(safe_address(order.delivery_info))}")
        recipient = safe_extract(RECIPIENT_RULE, order.delivery_info)
        if recipient and recipient != order.customer_name:
            lines.append(f"🙋 Отримувач: {html.escape(recipient)}")
        comment = safe_extract(COMMENT_RULE, order.delivery_info)
        if comment:
            lines.append(f"💬 Коментар: {html.escape(comment)}")
        return "\n".join(lines)

    async def dispatch(
        self,
        order: Order,
        items: Iterable[OrderItem],
        event: NotificationEvent = NotificationEvent.ORDER_CREATED,
    ) -> NotificationResult:
        text = self.compose(order, items, event)
        # The bot token is part of the URL; only the method name is logged.
        url = f"{self.settings.telegram_api_base}/bot{self.settings.telegram_bot_token}/sendMessage"
        payload = {
            "chat_id": self.settings.telegram_chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.settings.gateway_timeout_seconds) as client:
                resp = await client.post(url, json=payload)
        except httpx.HTTPError as exc:
            return self._failed(order, event, None, f"{type(exc).__name__}", started)

        body: dict = {}
        try:
            parsed = resp.json()
            if isinstance(parsed, dict):
                body = parsed
        except ValueError:
            body = {}
        if resp.is_error:
            detail = body.get("description") or resp.text or f"HTTP {resp.status_code}"
            return self._failed(order, event, resp.status_code, str(detail), started)
        if not body.get("ok"):
            return self._failed(order, event, resp.status_code, str(body.get("description") or "Unknown error"), started)

        message_id = (body.get("result") or {}).get("message_id")
        logger.info(
            "notification sent",
            extra={
                "notification": self.channel,
                "event": event.value,
                "order_id": order.id,
                "response_status": resp.status_code,
                "latency_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return NotificationResult(
            ok=True,
            channel=self.channel,
            event=event,
            status_code=resp.status_code,
            message_id=message_id,
        )

    def _failed(
        self,
        order: Order,
        event: NotificationEvent,
        status_code: int | None,
        error: str,
        started: float,
    ) -> NotificationResult:
        logger.warning(
            "notification failed",
            extra={
                "notification": self.channel,
                "event": f"{event.value}: {error}",
                "order_id": order.id,
                "response_status": status_code,
                "latency_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return NotificationResult(ok=False, channel=self.channel, event=event, status_code=status_code, error=error)
