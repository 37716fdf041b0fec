"""Server connectivity and SSH key endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from pvefleet.models.responses import error_responses
from pvefleet.models.target import ConnectionTestResult, KeyPair, TestConnectionRequest
from pvefleet.services.inventory import inventory
from pvefleet.services.keys import generate_key_pair
from pvefleet.services.ssh_executor import ssh_executor

router = APIRouter(prefix="/servers", tags=["servers"])


@router.post("/test-connection", response_model=ConnectionTestResult)
async def test_connection(req: TestConnectionRequest) -> ConnectionTestResult:
    if req.target is not None:
        target = req.target
    else:
        target = inventory.get_server(req.server_id).to_target()
    return await ssh_executor.test_connection(target)


@router.post(
    "/generate-keypair",
    response_model=KeyPair,
    responses=error_responses(409),
)
async def generate_keypair() -> KeyPair:
    """Create a key pair for the next server id to be registered."""
    return generate_key_pair(inventory.next_server_id())
