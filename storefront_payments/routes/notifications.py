from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from storefront_payments.domain.dtos import NotificationResponse, OrderInsertPayload
from storefront_payments.domain.errors import PaymentError
from storefront_payments.utils.security import verify_bearer_token

from . import payments as payment_routes

router = APIRouter(prefix="/api/notifications")
logger = logging.getLogger(__name__)


@router.post(
    "/order-created",
    response_model=NotificationResponse,
    dependencies=[Depends(verify_bearer_token)],
)
async def order_created(payload: OrderInsertPayload) -> NotificationResponse:
    """Called by the storefront's order-insert trigger."""
    logger.info(
        "order_created received",
        extra={"endpoint": "/api/notifications/order-created", "method": "POST", "order_id": payload.record.id},
    )
    try:
        return await payment_routes._service.notify_order_created(payload)
    except PaymentError as exc:
        raise HTTPException(status_code=exc.http_status, detail=exc.to_detail()) from exc
