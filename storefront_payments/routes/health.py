from __future__ import annotations

import logging
import os
import platform
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter

from storefront_payments.config import settings
from storefront_payments.db.client import ping

from . import payments as payment_routes

router = APIRouter()
logger = logging.getLogger(__name__)

SERVICE_STARTED_AT = datetime.now(timezone.utc)


@router.get("/health")
async def health() -> dict[str, str]:
    """Simple health check endpoint for load balancers."""
    return {"status": "ok"}


def _database_connected() -> bool | None:
    if not settings.db_enabled:
        return None
    try:
        return ping()
    except Exception as exc:  # noqa: BLE001
        logger.info("health database ping failed", extra={"event": str(exc)})
        return False


@router.get("/health/metrics")
async def health_metrics() -> dict[str, Any]:
    """Service health with the review backlog and database reachability."""
    captured_at = datetime.now(timezone.utc)
    db_connected = _database_connected()
    try:
        review_backlog: int | None = len(payment_routes._service.store.list_for_review())
    except Exception as exc:  # noqa: BLE001
        logger.info("health review count failed", extra={"event": str(exc)})
        review_backlog = None
    return {
        "status": "degraded" if db_connected is False else "ok",
        "timestamp": captured_at.isoformat(),
        "uptime_seconds": int((captured_at - SERVICE_STARTED_AT).total_seconds()),
        "service": {
            "host": platform.node(),
            "pid": os.getpid(),
        },
        "database": {
            "enabled": settings.db_enabled,
            "connected": db_connected,
            "schema": settings.db_schema if settings.db_enabled else None,
        },
        "payments": {
            "review_backlog": review_backlog,
            "conversions_enabled": settings.conversions_enabled,
        },
    }
