from __future__ import annotations

import secrets

from fastapi import HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from storefront_payments.config import settings


_bearer_scheme = HTTPBearer(auto_error=False, scheme_name="BearerAuth")


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer_scheme),
) -> None:
    """Guard for server-to-server hooks (database triggers, schedulers)."""

    if credentials is None:
        raise _unauthorized()
    token = credentials.credentials.strip()
    expected = settings.api_bearer_token
    if not token or not expected or not secrets.compare_digest(token, expected):
        raise _unauthorized()
