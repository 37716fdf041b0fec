"""FastAPI application entry-point."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pvefleet import __version__
from pvefleet.errors import (
    CommandFailureError,
    ConnectionError,
    KeyExistsError,
    NotFoundError,
    OperationInProgressError,
    PveFleetError,
    ValidationError,
)
from pvefleet.routers import containers, execute, health, operations, servers, sync
from pvefleet.services.ssh_executor import ssh_executor
from pvefleet.services.sync_coordinator import sync_coordinator
from pvefleet.utils.logging import get_logger, setup_logging

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hooks."""
    setup_logging()
    # Resume the auto-sync schedule from persisted settings
    sync_coordinator.start()
    yield
    sync_coordinator.stop()
    await ssh_executor.close()


app = FastAPI(
    title="pvefleet",
    description="Proxmox VE fleet management core",
    version=__version__,
    lifespan=lifespan,
)


# ── Error mapping ─────────────────────────────────────────────────────────


@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "detail": str(exc),
            "errors": [e.model_dump() for e in exc.errors],
        },
    )


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(KeyExistsError)
async def _key_exists(request: Request, exc: KeyExistsError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(OperationInProgressError)
async def _in_progress(request: Request, exc: OperationInProgressError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ConnectionError)
async def _connection_error(request: Request, exc: ConnectionError) -> JSONResponse:
    log.warning("api.connection_error", host=exc.host, path=request.url.path)
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(CommandFailureError)
async def _command_failed(request: Request, exc: CommandFailureError) -> JSONResponse:
    return JSONResponse(
        status_code=502,
        content={
            "detail": f"Command failed with exit code {exc.exit_code}",
            "output": exc.output_tail,
        },
    )


@app.exception_handler(PveFleetError)
async def _generic_error(request: Request, exc: PveFleetError) -> JSONResponse:
    log.error("api.error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"detail": str(exc)})


app.include_router(health.router)
app.include_router(execute.router)
app.include_router(servers.router)
app.include_router(containers.router)
app.include_router(operations.router)
app.include_router(sync.router)
