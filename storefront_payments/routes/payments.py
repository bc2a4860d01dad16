from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from storefront_payments.config import settings
from storefront_payments.domain.dtos import (
    CheckoutSignResponse,
    IntentCreateResponse,
    PaymentReturnResponse,
    ReviewItem,
    WebhookAck,
)
from storefront_payments.domain.errors import PaymentError
from storefront_payments.domain.models import CheckoutRequest, WebhookEvent
from storefront_payments.domain.statuses import InvoiceStatus
from storefront_payments.repositories.factory import get_store
from storefront_payments.services.payments_service import PaymentsService
from storefront_payments.services.redirect_session import (
    LocalCheckoutSigner,
    RedirectSession,
    render_checkout_page,
)
from storefront_payments.utils.security import verify_bearer_token

router = APIRouter(prefix="/api/payments")

_store = get_store(settings)
_service = PaymentsService(_store)
logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = "5"


def _http_error(exc: PaymentError) -> HTTPException:
    headers = {"Retry-After": RETRY_AFTER_SECONDS} if exc.retryable else None
    return HTTPException(status_code=exc.http_status, detail=exc.to_detail(), headers=headers)


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "validation_error", "message": "Body must be valid JSON", "retryable": False},
        ) from exc


async def _acknowledge(endpoint: str, verify, *args) -> WebhookAck:
    try:
        event: WebhookEvent = verify(*args)
    except PaymentError as exc:
        logger.warning(
            "webhook rejected",
            extra={"endpoint": endpoint, "method": "POST", "event": exc.code},
        )
        raise _http_error(exc) from exc
    try:
        outcome = await _service.handle_event(event)
    except PaymentError as exc:
        logger.warning(
            "webhook deferred",
            extra={
                "endpoint": endpoint,
                "method": "POST",
                "provider": event.provider,
                "invoice_id": event.invoice_id,
                "event": exc.code,
            },
        )
        raise _http_error(exc) from exc
    logger.info(
        "webhook acknowledged",
        extra={
            "endpoint": endpoint,
            "method": "POST",
            "provider": event.provider,
            "invoice_id": event.invoice_id,
            "outcome": outcome,
        },
    )
    return WebhookAck(outcome=outcome.value, invoice_id=event.invoice_id)


@router.post("/monobank", response_model=IntentCreateResponse, response_model_exclude_none=True)
async def create_monobank_invoice(request: Request, action: str | None = Query(default=None)) -> IntentCreateResponse:
    body = await _json_body(request)
    logger.info(
        "create_invoice received",
        extra={
            "endpoint": "/api/payments/monobank",
            "method": "POST",
            "action": action,
            "order_id": body.get("orderId") if isinstance(body, dict) else None,
        },
    )
    try:
        result = await _service.create_intent(action, body)
    except PaymentError as exc:
        logger.info(
            "create_invoice failed",
            extra={"endpoint": "/api/payments/monobank", "action": action, "event": exc.code},
        )
        raise _http_error(exc) from exc
    logger.info(
        "create_invoice responded",
        extra={
            "endpoint": "/api/payments/monobank",
            "method": "POST",
            "action": action,
            "invoice_id": result.invoice_id,
        },
    )
    return result


@router.post("/monobank/webhook", response_model=WebhookAck)
async def monobank_webhook(request: Request) -> WebhookAck:
    body = await request.body()
    return await _acknowledge(
        "/api/payments/monobank/webhook",
        _service.verifier.monobank,
        body,
        request.headers.get("X-Sign"),
    )


@router.post("/monobank/parts/webhook", response_model=WebhookAck)
async def monobank_parts_webhook(request: Request) -> WebhookAck:
    body = await request.body()
    return await _acknowledge(
        "/api/payments/monobank/parts/webhook",
        _service.verifier.parts,
        body,
        request.headers.get("signature"),
    )


@router.post("/liqpay/webhook", response_model=WebhookAck)
async def liqpay_webhook(request: Request) -> WebhookAck:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        payload = await _json_body(request)
        payload = payload if isinstance(payload, dict) else {}
    else:
        payload = await request.form()
    data = payload.get("data")
    signature = payload.get("signature")
    return await _acknowledge(
        "/api/payments/liqpay/webhook",
        _service.verifier.liqpay_callback,
        str(data) if data else None,
        str(signature) if signature else None,
    )


@router.post("/liqpay/sign", response_model=CheckoutSignResponse)
async def liqpay_sign(request: Request) -> CheckoutSignResponse:
    body = await _json_body(request)
    try:
        result = _service.sign_checkout(body)
    except PaymentError as exc:
        raise _http_error(exc) from exc
    return result


def _sign_locally(checkout: CheckoutRequest) -> tuple[str, str]:
    signed = _service.sign_request(checkout)
    return signed.data, signed.signature


# POST only: every call signs a new attempt and replaces the order's active invoice.
@router.post("/liqpay/checkout", response_class=HTMLResponse)
async def liqpay_checkout(request: Request) -> HTMLResponse:
    form = await request.form()
    order_id = form.get("orderId")
    logger.info(
        "liqpay_checkout received",
        extra={"endpoint": "/api/payments/liqpay/checkout", "method": "POST", "order_id": order_id},
    )
    try:
        checkout = _service.builder.build_checkout(
            {
                "orderId": order_id,
                "amount": form.get("amount"),
                "currency": form.get("currency") or "UAH",
                "description": form.get("description") or f"Оплата замовлення #{order_id}",
            }
        )
    except PaymentError as exc:
        raise _http_error(exc) from exc
    session = RedirectSession(LocalCheckoutSigner(_sign_locally), checkout, _service.liqpay.checkout_url)
    page = await session.start()
    if page is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Checkout session closed")
    return HTMLResponse(render_checkout_page(page))


@router.api_route("/return", methods=["GET", "POST"], response_model=PaymentReturnResponse)
async def payment_return(request: Request):
    form = await request.form() if request.method == "POST" else {}
    params = request.query_params
    order_id = form.get("orderId") or params.get("orderId")
    response_format = (form.get("format") or params.get("format") or "").lower()
    data = form.get("data") or params.get("data")
    signature = form.get("signature") or params.get("signature")
    logger.info(
        "payment_return received",
        extra={"endpoint": "/api/payments/return", "method": request.method, "order_id": order_id},
    )
    if not order_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "validation_error", "message": "orderId is required", "retryable": False},
        )
    try:
        result = await _service.handle_return(
            str(order_id),
            str(data) if data else None,
            str(signature) if signature else None,
        )
    except PaymentError as exc:
        raise _http_error(exc) from exc

    if response_format == "json":
        return JSONResponse(result.model_dump(mode="json"))
    failed = result.invoice_status in (InvoiceStatus.FAILED, InvoiceStatus.EXPIRED)
    page = "failure" if failed else "success"
    state = result.invoice_status or result.order_status
    query = urlencode({"orderId": result.order_id, "status": state.value if state else ""})
    redirect_to = f"{settings.site_url.rstrip('/')}/checkout/{page}?{query}"
    logger.info(
        "payment_return redirecting",
        extra={
            "endpoint": "/api/payments/return",
            "method": request.method,
            "order_id": result.order_id,
            "status": state,
            "redirect_to": redirect_to,
        },
    )
    return RedirectResponse(redirect_to, status_code=303)


@router.get("/review", response_model=list[ReviewItem], dependencies=[Depends(verify_bearer_token)])
async def list_review() -> list[ReviewItem]:
    return [
        ReviewItem(
            invoice_id=record.invoice_id,
            order_id=record.order_id,
            amount=float(record.amount),
            provider=record.provider.value,
            status=record.status,
            review_reason=record.review_reason,
            updated_at=record.updated_at,
        )
        for record in _service.store.list_for_review()
    ]
