"""Sign-in and sign-out endpoints."""
import logging

import httpx
from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse

from api.dependencies import get_backend, get_request_token, get_settings
from core.auth import AuthenticationError, generate_pkce_pair
from core.backend import Backend
from core.config import Settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

PKCE_COOKIE_NAME = "bm_pkce_verifier"
PKCE_COOKIE_MAX_AGE = 600


@router.get("/login")
async def login(
    backend: Backend = Depends(get_backend),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    """Redirect the browser to the OAuth provider."""
    verifier, challenge = generate_pkce_pair()
    response = RedirectResponse(backend.auth.build_authorize_url(challenge), status_code=302)
    response.set_cookie(
        PKCE_COOKIE_NAME,
        verifier,
        max_age=PKCE_COOKIE_MAX_AGE,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return response


@router.get("/auth/callback")
async def auth_callback(
    request: Request,
    code: str | None = Query(default=None),
    error: str | None = Query(default=None),
    backend: Backend = Depends(get_backend),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    """
    Complete sign-in after the provider redirects back.

    On success the session cookie is set and the browser continues to the
    dashboard; on any failure it is sent back to the landing page.
    """
    verifier = request.cookies.get(PKCE_COOKIE_NAME)
    if error or not code or not verifier:
        logger.info("Sign-in callback without usable code: %s", error or "missing code")
        return _landing_redirect("signin_failed")

    try:
        session = await backend.auth.exchange_code(code, verifier)
    except AuthenticationError:
        return _landing_redirect("signin_failed")
    except httpx.HTTPError as e:
        logger.error("Identity service unreachable during sign-in: %s", e)
        return _landing_redirect("service_unavailable")

    logger.info("User %s signed in", session.identity.id)
    response = RedirectResponse(settings.dashboard_path, status_code=303)
    response.delete_cookie(PKCE_COOKIE_NAME)
    response.set_cookie(
        settings.session_cookie_name,
        session.access_token,
        max_age=session.expires_in,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return response


@router.post("/logout", status_code=204)
async def logout(
    token: str | None = Depends(get_request_token),
    backend: Backend = Depends(get_backend),
    settings: Settings = Depends(get_settings),
) -> Response:
    """
    Sign out and stop synchronizing the user's bookmarks.

    Always clears the session cookie, even when the credential has already
    expired upstream.
    """
    if token:
        try:
            identity = await backend.auth.get_user(token)
        except (AuthenticationError, httpx.HTTPError) as e:
            logger.info("Logout with unusable session: %s", e)
        else:
            await backend.registry.release(identity.id)
            logger.info("User %s signed out", identity.id)
        await backend.auth.sign_out(token)

    response = Response(status_code=204)
    response.delete_cookie(settings.session_cookie_name)
    return response


def _landing_redirect(reason: str) -> RedirectResponse:
    response = RedirectResponse(f"/?error={reason}", status_code=303)
    response.delete_cookie(PKCE_COOKIE_NAME)
    return response
