"""FastAPI application entry point."""
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from api.routers import auth, bookmarks, health, users
from core.backend import Backend, set_backend
from core.config import get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifespan - startup and shutdown."""
    app_settings = get_settings()

    # Startup: one shared client for auth, table and change-feed requests
    backend = Backend(app_settings)
    backend.start()
    set_backend(backend)
    logger.info("Using backend at %s", app_settings.backend_url)

    yield

    # Shutdown: release every live subscription, then the HTTP client
    await backend.aclose()
    set_backend(None)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to every response, including sign-in redirects."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        # Sign-in redirects carry the authorization code in the query string
        response.headers["Referrer-Policy"] = "no-referrer"
        return response


app_settings = get_settings()

app = FastAPI(
    title="Bookmark Sync API",
    description="Signed-in users' bookmarks, kept in sync across sessions and devices.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=app_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(bookmarks.router)


def main() -> None:
    """Entry point for running the API server."""
    logging.basicConfig(
        level=app_settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=8000, log_config=None)


if __name__ == "__main__":
    main()
