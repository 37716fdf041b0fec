"""Auto-sync settings, run state and results."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class IntervalType(str, Enum):
    predefined = "predefined"
    custom = "custom"


PREDEFINED_INTERVALS: dict[str, str] = {
    "15min": "*/15 * * * *",
    "30min": "*/30 * * * *",
    "1hour": "0 * * * *",
    "6hours": "0 */6 * * *",
    "12hours": "0 */12 * * *",
    "24hours": "0 0 * * *",
}


class SyncSettings(BaseModel):
    """Persisted auto-sync configuration plus the last run's metadata."""

    enabled: bool = False
    interval_type: IntervalType = IntervalType.predefined
    interval_predefined: str = "1hour"
    interval_cron: str = ""
    auto_download_new: bool = False
    auto_update_existing: bool = False
    notification_enabled: bool = False
    apprise_urls: list[str] = Field(default_factory=list)

    # Run metadata, written only at the end of a run
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    @property
    def schedule(self) -> str:
        if self.interval_type == IntervalType.custom:
            return self.interval_cron.strip()
        return PREDEFINED_INTERVALS.get(self.interval_predefined, "0 * * * *")


class SyncSettingsUpdate(BaseModel):
    """User-editable subset of SyncSettings."""

    enabled: bool
    interval_type: IntervalType = IntervalType.predefined
    interval_predefined: str = "1hour"
    interval_cron: str = ""
    auto_download_new: bool = False
    auto_update_existing: bool = False
    notification_enabled: bool = False
    apprise_urls: list[str] = Field(default_factory=list)


class CatalogSyncResult(BaseModel):
    success: bool
    message: str = ""
    synced_files: list[str] = Field(default_factory=list)
    skipped_count: int = 0
    errors: list[str] = Field(default_factory=list)


class SyncSummary(BaseModel):
    synced_files: list[str] = Field(default_factory=list)
    downloaded: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class SyncResult(BaseModel):
    ok: bool
    message: str
    summary: Optional[SyncSummary] = None
    already_running: bool = False
    rate_limited: bool = False
    duration_ms: int = 0


class SyncStatus(BaseModel):
    is_running: bool
    has_schedule: bool
    schedule: Optional[str] = None
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None


class NotificationResult(BaseModel):
    success: bool
    message: str
