from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable

import httpx

from storefront_payments.config import Settings
from storefront_payments.domain.errors import GatewayError, GatewayUnavailableError
from storefront_payments.domain.models import OrderItem, PaymentIntent
from storefront_payments.domain.statuses import InvoiceStatus

logger = logging.getLogger(__name__)


@dataclass
class GatewayInvoice:
    """Invoice accepted by the gateway."""

    invoice_id: str
    page_url: str
    amount: Decimal
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayInvoiceStatus:
    """Read-only view of an invoice at the gateway."""

    invoice_id: str
    gateway_status: str
    status: InvoiceStatus | None
    amount: Decimal | None = None
    payload: dict[str, Any] = field(default_factory=dict)


class PaymentGateway(ABC):
    """Abstract payment gateway."""

    provider: str = ""
    secret_headers: frozenset[str] = frozenset()

    def __init__(self, settings: Settings):
        self.settings = settings

    @abstractmethod
    async def create_invoice(self, intent: PaymentIntent, items: Iterable[OrderItem]) -> GatewayInvoice:
        """Create an invoice and return its identifier and payment page."""

    @abstractmethod
    async def get_invoice_status(self, invoice_id: str) -> GatewayInvoiceStatus:
        """Return the gateway-side status without mutating anything."""

    async def _send(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        headers: Dict[str, str],
        content: bytes | None = None,
        params: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        """Perform one bounded HTTP call and classify its failure modes.

        Network failures and timeouts raise ``GatewayUnavailableError``; any
        non-2xx answer raises ``GatewayError`` carrying the raw body.
        """
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.settings.gateway_timeout_seconds) as client:
                resp = await client.request(method, url, headers=headers, content=content, params=params)
        except httpx.TimeoutException as exc:
            self._log_call(operation, url, headers, None, started, error="timeout")
            raise GatewayUnavailableError(f"{self.provider} {operation} timed out") from exc
        except httpx.HTTPError as exc:
            self._log_call(operation, url, headers, None, started, error=type(exc).__name__)
            raise GatewayUnavailableError(f"{self.provider} {operation} unreachable") from exc

        raw_body = resp.text
        data: Dict[str, Any] = {}
        try:
            parsed = resp.json()
            if isinstance(parsed, dict):
                data = parsed
        except ValueError:
            if raw_body:
                data = {"raw": raw_body}
        if resp.is_error:
            self._log_call(operation, url, headers, resp.status_code, started, error="http_error")
            message = (
                data.get("errText")
                or data.get("message")
                or data.get("error")
                or f"{self.provider} {operation} failed ({resp.status_code})"
            )
            raise GatewayError(str(message), status_code=resp.status_code, raw_body=raw_body)
        self._log_call(operation, url, headers, resp.status_code, started)
        return data

    def _mask_headers(self, headers: Dict[str, str]) -> Dict[str, str]:
        masked: Dict[str, str] = {}
        for key, value in (headers or {}).items():
            if key.lower() in self.secret_headers:
                masked[key] = "***"
            else:
                masked[key] = value
        return masked

    def _log_call(
        self,
        operation: str,
        url: str,
        headers: Dict[str, str],
        response_status: int | None,
        started: float,
        *,
        error: str | None = None,
    ) -> None:
        latency_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "gateway call",
            extra={
                "provider": self.provider,
                "endpoint": url,
                "method": operation,
                "response_status": response_status,
                "latency_ms": latency_ms,
                "event": error or "ok",
                "headers": self._mask_headers(headers),
            },
        )
