"""FastAPI dependencies for injection."""
import logging
from dataclasses import dataclass

import httpx
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.auth import AuthenticationError, Identity
from core.backend import Backend, get_backend
from core.config import Settings, get_settings
from services.sync_registry import SyncSession

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme; the session cookie is accepted as a fallback
security = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    """Authenticated identity together with the credential that proved it."""

    identity: Identity
    token: str


def get_request_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    settings: Settings = Depends(get_settings),
) -> str | None:
    """Bearer credential from the Authorization header or the session cookie."""
    if credentials:
        return credentials.credentials
    return request.cookies.get(settings.session_cookie_name) or None


async def get_current_user(
    token: str | None = Depends(get_request_token),
    backend: Backend = Depends(get_backend),
) -> CurrentUser:
    """Resolve the request's credential to an identity."""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        identity = await backend.auth.get_user(token)
    except AuthenticationError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except httpx.HTTPError as e:
        logger.error("Failed to reach identity service: %s", e, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not validate credentials",
        )
    return CurrentUser(identity=identity, token=token)


async def get_sync_session(
    current_user: CurrentUser = Depends(get_current_user),
    backend: Backend = Depends(get_backend),
) -> SyncSession:
    """The synchronized bookmark list of the current user."""
    return await backend.registry.acquire(current_user.identity.id, current_user.token)


__all__ = [
    "CurrentUser",
    "get_backend",
    "get_current_user",
    "get_request_token",
    "get_settings",
    "get_sync_session",
]
