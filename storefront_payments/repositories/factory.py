from __future__ import annotations

import logging

from storefront_payments.config import Settings

from .base import PaymentStore

logger = logging.getLogger(__name__)


def get_store(settings: Settings) -> PaymentStore:
    """Return the Postgres store when a database is configured, else in-memory."""
    if settings.db_enabled:
        from .pg_store import PgPaymentStore

        return PgPaymentStore()
    from .memory_store import InMemoryPaymentStore

    logger.warning("database not configured; using in-memory payment store")
    return InMemoryPaymentStore()
