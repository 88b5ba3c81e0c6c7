"""
Security — Authentication for inbound push triggers.

Triggers come from the Timely backend (database webhooks and server
code), not from end users, so they authenticate with a shared secret
sent as a Bearer token.

Usage in route handlers:
    from timely_push.core.security import verify_trigger_token

    @router.post("/dispatch", dependencies=[Depends(verify_trigger_token)])
    async def dispatch(...):
        ...
"""

import hmac
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from timely_push.core.config import get_trigger_secret

logger = logging.getLogger(__name__)

# auto_error=False so we can return a custom 401 message instead of
# FastAPI's default 403 for missing credentials.
_bearer_scheme = HTTPBearer(auto_error=False)


async def verify_trigger_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> None:
    """
    FastAPI dependency that checks the trigger's Bearer token.

    Raises:
        HTTPException(503): If no trigger secret is configured.
        HTTPException(401): If the token is missing or does not match.
    """
    expected = get_trigger_secret()
    if not expected:
        logger.error("Push trigger secret not configured — rejecting request")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Push triggers are not configured. Set PUSH_TRIGGER_SECRET.",
        )

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token. Provide a Bearer token in the Authorization header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not hmac.compare_digest(
        credentials.credentials.encode("utf-8"), expected.encode("utf-8")
    ):
        logger.warning("Push trigger rejected: invalid token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
