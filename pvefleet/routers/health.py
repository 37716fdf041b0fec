"""Health-check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from pvefleet import __version__
from pvefleet.models.responses import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def service_health() -> HealthResponse:
    """Basic liveness check."""
    return HealthResponse(status="ok", version=__version__)
