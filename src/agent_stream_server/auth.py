"""Bearer credential gate for the agent endpoints.

The token is opaque: when ``API_BEARER_TOKEN`` is configured it must match,
otherwise any non-empty bearer token is accepted. ``REQUIRE_AUTH=false``
disables the gate entirely.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings, get_settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def verify_token(presented: str, expected: str | None) -> bool:
    if not presented:
        return False
    if expected is None:
        return True
    return hmac.compare_digest(presented.encode(), expected.encode())


async def require_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> str | None:
    if not settings.require_auth:
        return credentials.credentials if credentials else None

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not verify_token(credentials.credentials, settings.api_bearer_token):
        logger.warning("Rejected request with invalid bearer token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid bearer token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials
