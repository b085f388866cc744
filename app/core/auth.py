"""API key and caller authentication."""

import hmac

from fastapi import Header, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from app.core.config import settings

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
internal_secret_header = APIKeyHeader(name="X-Internal-Secret", auto_error=False)


def verify_api_key(api_key: str | None = Security(api_key_header)) -> str:
    """Verify API key from request header."""
    if not api_key or not hmac.compare_digest(api_key, settings.api_secret_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return api_key


def get_current_user_id(
    api_key: str | None = Security(api_key_header),
    user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> str:
    """Resolve the calling user.

    Sessions are issued upstream; the gateway forwards the authenticated
    user's id alongside the service API key.
    """
    verify_api_key(api_key)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return user_id


def is_internal_call(
    internal_secret: str | None = Security(internal_secret_header),
) -> bool:
    """Whether the request carries the internal service secret."""
    expected = settings.internal_api_secret
    if not internal_secret or not expected:
        return False
    return hmac.compare_digest(internal_secret, expected)
