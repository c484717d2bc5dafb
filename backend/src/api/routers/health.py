"""Health check endpoints."""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.dependencies import get_backend
from core.backend import Backend


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    live_sessions: int


@router.get("/health", response_model=HealthResponse)
async def health_check(backend: Backend = Depends(get_backend)) -> HealthResponse:
    """Check application health and report how many owners are being synchronized."""
    return HealthResponse(status="healthy", live_sessions=len(backend.registry))
