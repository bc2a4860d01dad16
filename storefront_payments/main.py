from __future__ import annotations

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse

from storefront_payments.config import settings
from storefront_payments.logging import setup_logging
from storefront_payments.routes import health, notifications, payments
from storefront_payments.utils.security import verify_bearer_token

setup_logging()
settings.ensure_configured()

app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(health.router)
app.include_router(payments.router)
app.include_router(notifications.router)


@app.get("/openapi.json", include_in_schema=False)
def custom_openapi(_: None = Depends(verify_bearer_token)):
    return JSONResponse(content=app.openapi())


@app.get("/docs", include_in_schema=False)
def custom_swagger_ui(_: None = Depends(verify_bearer_token)):
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Storefront Payments API")


@app.get("/redoc", include_in_schema=False)
def custom_redoc(_: None = Depends(verify_bearer_token)):
    return get_redoc_html(openapi_url="/openapi.json", title="Storefront Payments API ReDoc")
