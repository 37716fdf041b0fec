"""Catalog auto-sync endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from pvefleet.models.sync import (
    NotificationResult,
    SyncResult,
    SyncSettings,
    SyncSettingsUpdate,
    SyncStatus,
)
from pvefleet.services.sync_coordinator import sync_coordinator

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/run", response_model=SyncResult)
async def run_sync() -> SyncResult:
    """Run a sync now; returns immediately if one is already in progress."""
    return await sync_coordinator.run_sync_now()


@router.get("/status", response_model=SyncStatus)
async def sync_status() -> SyncStatus:
    return sync_coordinator.get_status()


@router.get("/settings", response_model=SyncSettings)
async def get_settings() -> SyncSettings:
    return sync_coordinator.load_settings()


@router.put("/settings", response_model=SyncSettings)
async def put_settings(req: SyncSettingsUpdate) -> SyncSettings:
    return sync_coordinator.update_settings(req)


@router.post("/test-notification", response_model=NotificationResult)
async def test_notification() -> NotificationResult:
    return await sync_coordinator.test_notification()
