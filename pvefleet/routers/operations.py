"""Progress logs for detached operations, and the restore action."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from pvefleet.models.operations import (
    AppendLineRequest,
    OperationSnapshot,
    OperationStatus,
    RestoreRequest,
    RestoreStarted,
)
from pvefleet.models.responses import OkResponse, error_responses
from pvefleet.services.operation_tracker import operation_tracker
from pvefleet.services.restore import classify_operation, start_restore

router = APIRouter(tags=["operations"])


def _snapshot_or_404(key: str) -> OperationSnapshot:
    snapshot = operation_tracker.peek(key)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Operation {key} not found")
    return snapshot


@router.post("/operations/{key}", response_model=OperationSnapshot)
async def start_operation(key: str) -> OperationSnapshot:
    return operation_tracker.start(key)


@router.post("/operations/{key}/lines", response_model=OkResponse)
async def append_line(key: str, req: AppendLineRequest) -> OkResponse:
    """Append a line; ``ok`` is false once the operation has completed."""
    return OkResponse(ok=operation_tracker.append(key, req.line))


@router.post("/operations/{key}/complete", response_model=OkResponse)
async def complete_operation(key: str) -> OkResponse:
    return OkResponse(ok=operation_tracker.complete(key))


@router.get(
    "/operations/{key}",
    response_model=OperationStatus,
    responses=error_responses(404),
)
async def peek_operation(key: str) -> OperationStatus:
    snapshot = _snapshot_or_404(key)
    return OperationStatus(
        **snapshot.model_dump(),
        outcome=classify_operation(snapshot),
    )


@router.delete(
    "/operations/{key}",
    response_model=OkResponse,
    responses=error_responses(404),
)
async def dismiss_operation(key: str) -> OkResponse:
    if not operation_tracker.dismiss(key):
        raise HTTPException(status_code=404, detail=f"Operation {key} not found")
    return OkResponse()


@router.post(
    "/restore",
    response_model=RestoreStarted,
    status_code=202,
    responses=error_responses(404, 409),
)
async def restore(req: RestoreRequest) -> RestoreStarted:
    """Start a detached restore; poll ``GET /operations/{operation_key}``."""
    key = await start_restore(req.backup_id, req.container_id, req.server_id)
    return RestoreStarted(operation_key=key)
