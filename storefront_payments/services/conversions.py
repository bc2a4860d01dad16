from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from typing import Any, Dict, Iterable

import httpx

from storefront_payments.config import Settings, settings
from storefront_payments.domain.enums import NotificationEvent
from storefront_payments.domain.models import NotificationResult, Order, OrderItem

logger = logging.getLogger(__name__)

# Graph API codes that will not succeed on retry (bad parameter, bad token).
NON_RETRYABLE_CODES = frozenset({100, 190})


def hash_pii(value: str | None) -> str | None:
    if not value:
        return None
    return hashlib.sha256(value.strip().lower().encode("utf-8")).hexdigest()


class ConversionsClient:
    """Hand a confirmed purchase to the Meta Conversions API."""

    channel = "meta_capi"

    def __init__(self, cfg: Settings = settings, max_attempts: int = 3, backoff_seconds: float = 1.0):
        self.settings = cfg
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    @property
    def enabled(self) -> bool:
        return self.settings.conversions_enabled

    def build_event(self, order: Order, items: Iterable[OrderItem]) -> Dict[str, Any]:
        user_data: Dict[str, Any] = {}
        email = hash_pii(order.customer_email)
        if email:
            user_data["em"] = [email]
        phone = hash_pii(order.customer_phone)
        if phone:
            user_data["ph"] = [phone]
        return {
            "event_name": "Purchase",
            "event_time": int(time.time()),
            # Stable id lets Meta de-duplicate against the browser pixel.
            "event_id": f"purchase_{order.id}",
            "action_source": "website",
            "user_data": user_data,
            "custom_data": {
                "currency": "UAH",
                "value": float(order.total),
                "order_id": order.id,
                "content_ids": [str(item.product_id) for item in items if item.product_id],
                "content_type": "product",
            },
        }

    async def send_purchase(self, order: Order, items: Iterable[OrderItem]) -> NotificationResult:
        event = NotificationEvent.ORDER_PAID
        if not self.enabled:
            return NotificationResult(ok=False, channel=self.channel, event=event, error="disabled")
        url = f"{self.settings.meta_graph_api_base}/{self.settings.meta_pixel_id}/events"
        body = {"data": [self.build_event(order, items)], "access_token": self.settings.meta_capi_access_token}
        last_error = "no attempt"
        status_code: int | None = None
        for attempt in range(self.max_attempts):
            try:
                async with httpx.AsyncClient(timeout=self.settings.gateway_timeout_seconds) as client:
                    resp = await client.post(url, json=body)
            except httpx.HTTPError as exc:
                last_error = type(exc).__name__
            else:
                status_code = resp.status_code
                if not resp.is_error:
                    logger.info(
                        "conversion sent",
                        extra={"notification": self.channel, "order_id": order.id, "response_status": status_code},
                    )
                    return NotificationResult(ok=True, channel=self.channel, event=event, status_code=status_code)
                error: Dict[str, Any] = {}
                try:
                    error = (resp.json() or {}).get("error") or {}
                except ValueError:
                    error = {}
                last_error = str(error.get("message") or f"HTTP {status_code}")
                if error.get("code") in NON_RETRYABLE_CODES:
                    break
            if attempt < self.max_attempts - 1:
                await asyncio.sleep(self.backoff_seconds * (2 ** attempt))
        logger.warning(
            "conversion failed",
            extra={
                "notification": self.channel,
                "order_id": order.id,
                "response_status": status_code,
                "event": last_error,
            },
        )
        return NotificationResult(ok=False, channel=self.channel, event=event, status_code=status_code, error=last_error)
