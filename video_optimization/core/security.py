"""API key authentication for the protected endpoints."""

import hmac
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader

logger = logging.getLogger(__name__)

API_KEY_SCHEME = "API-Key "

# Authorization: API-Key <token>
api_key_header = APIKeyHeader(name="Authorization", auto_error=False)


def verify_api_key(authorization: Optional[str], expected: str) -> bool:
    """Check an Authorization header value against the configured secret.

    The comparison runs in constant time regardless of where the values
    differ or how long they are.
    """
    if not authorization or not authorization.startswith(API_KEY_SCHEME):
        return False
    presented = authorization[len(API_KEY_SCHEME):]
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


async def require_api_key(
    request: Request,
    authorization: Optional[str] = Depends(api_key_header),
) -> None:
    """FastAPI dependency rejecting requests without a valid API key."""
    settings = request.app.state.settings
    if verify_api_key(authorization, settings.VIDEO_OPTIMIZATION_API_KEY):
        return

    remote_addr = request.client.host if request.client else None
    if authorization and authorization.startswith(API_KEY_SCHEME):
        logger.warning(
            "Unauthorized access attempt with invalid API key",
            extra={"remote_addr": remote_addr},
        )
    else:
        logger.warning(
            "Unauthorized access attempt missing API key",
            extra={"remote_addr": remote_addr},
        )
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
    )
