from __future__ import annotations

import json
import logging
from decimal import Decimal
from enum import Enum
from typing import Any, Dict


class JsonFormatter(logging.Formatter):
    """Format log records as JSON."""

    def _coerce(self, value: Any) -> Any:
        if isinstance(value, Decimal):
            return format(value, "f")
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, dict):
            return {str(k): self._coerce(v) for k, v in value.items()}
        if isinstance(value, (list, tuple, set)):
            return [self._coerce(item) for item in value]
        return value

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        data: Dict[str, Any] = {
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        # Whitelisted extra fields to enrich logs
        extra_fields = (
            "order_id",
            "invoice_id",
            "status",
            "gateway_status",
            "amount",
            "observed_amount",
            "currency",
            "provider",
            "action",
            "mode",
            "parts_count",
            "endpoint",
            "method",
            "redirect_to",
            "event",
            "outcome",
            "review",
            "response_status",
            "latency_ms",
            "notification",
            "headers",
        )
        for field in extra_fields:
            if hasattr(record, field):
                data[field] = self._coerce(getattr(record, field))
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False)


def setup_logging() -> None:
    """Configure root logger to use JSON formatter."""
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=logging.INFO, handlers=[handler])
