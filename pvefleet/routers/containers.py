"""LXC container config endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from pvefleet.models.lxc import ConfigReadResult, SaveConfigRequest, SaveConfigResult
from pvefleet.models.responses import error_responses
from pvefleet.services.config_reconciler import config_reconciler

router = APIRouter(prefix="/containers", tags=["containers"])


@router.get(
    "/{entity_id}/config",
    response_model=ConfigReadResult,
    responses=error_responses(404, 502),
)
async def get_config(entity_id: int, force_refresh: bool = False) -> ConfigReadResult:
    return await config_reconciler.get_config(entity_id, force_refresh=force_refresh)


@router.put(
    "/{entity_id}/config",
    response_model=SaveConfigResult,
    responses=error_responses(404, 422, 502),
)
async def save_config(entity_id: int, req: SaveConfigRequest) -> SaveConfigResult:
    """Validate and write the config; 422 lists every rejected field."""
    return await config_reconciler.save_config(entity_id, req.config)
