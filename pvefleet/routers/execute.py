"""Streamed command execution against an inventory server."""

from __future__ import annotations

from typing import AsyncIterator

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from pvefleet.models.responses import error_responses
from pvefleet.models.target import ExecuteRequest, StreamEvent
from pvefleet.services.inventory import inventory
from pvefleet.services.ssh_executor import ssh_executor

router = APIRouter(tags=["execute"])


def _ndjson(event: StreamEvent) -> bytes:
    return (event.model_dump_json() + "\n").encode("utf-8")


@router.post("/execute", responses=error_responses(404, 502))
async def execute(req: ExecuteRequest) -> StreamingResponse:
    """Run a command and stream ``stdout``/``stderr``/``exit`` events as NDJSON.

    Connection failures surface as a 502 before the stream starts.
    """
    target = inventory.get_server(req.server_id).to_target()
    events = ssh_executor.stream(target, req.command)
    # Pull the first event now so connect errors map to a status code
    first = await events.__anext__()

    async def body() -> AsyncIterator[bytes]:
        yield _ndjson(first)
        async for event in events:
            yield _ndjson(event)

    return StreamingResponse(body(), media_type="application/x-ndjson")
