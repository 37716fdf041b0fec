"""Cron-driven catalog auto-sync.

One module-level mutex guards every run, whether started by the schedule or
by hand. A tick that finds the mutex held is skipped, never queued. Run
failures are recorded in the persisted settings and optionally notified;
they never escape this module.
"""

from __future__ import annotations

import asyncio
import threading
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import pydantic
from croniter import croniter

from pvefleet.errors import (
    RATE_LIMIT_HINT,
    FieldError,
    PveFleetError,
    RateLimitError,
    ValidationError,
)
from pvefleet.models.sync import (
    PREDEFINED_INTERVALS,
    IntervalType,
    NotificationResult,
    SyncResult,
    SyncSettings,
    SyncSettingsUpdate,
    SyncStatus,
    SyncSummary,
)
from pvefleet.services.catalog import GitHubCatalog, github_catalog
from pvefleet.services.notifier import AppriseNotifier, apprise_notifier
from pvefleet.services.settings_store import SettingsStore, settings_store
from pvefleet.utils.logging import get_logger

log = get_logger(__name__)

SETTINGS_KEY = "auto_sync"

# Process-wide; acquire(blocking=False) is the atomic test-and-set
_sync_lock = threading.Lock()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_schedule(update: SyncSettingsUpdate) -> list[FieldError]:
    errors: list[FieldError] = []
    if update.interval_type == IntervalType.custom:
        expr = update.interval_cron.strip()
        if not expr:
            errors.append(FieldError(field="interval_cron", message="is required"))
        elif len(expr.split()) != 5 or not croniter.is_valid(expr):
            errors.append(
                FieldError(field="interval_cron", message=f"invalid cron expression: {expr}"),
            )
    elif update.interval_predefined not in PREDEFINED_INTERVALS:
        errors.append(
            FieldError(
                field="interval_predefined",
                message=f"must be one of {', '.join(PREDEFINED_INTERVALS)}",
            ),
        )
    return errors


class SyncCoordinator:
    def __init__(
        self,
        *,
        catalog: GitHubCatalog | None = None,
        notifier: AppriseNotifier | None = None,
        store: SettingsStore | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._catalog = catalog or github_catalog
        self._notifier = notifier or apprise_notifier
        self._store = store or settings_store
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._schedule: Optional[str] = None
        # Loop tasks currently inside a tick
        self._running: set[asyncio.Task] = set()

    # ── settings ──────────────────────────────────────────────────────

    def load_settings(self) -> SyncSettings:
        raw = self._store.get(SETTINGS_KEY) or {}
        try:
            return SyncSettings.model_validate(raw)
        except pydantic.ValidationError as exc:
            log.warning("sync.settings_invalid", error=str(exc))
            return SyncSettings()

    def update_settings(self, update: SyncSettingsUpdate) -> SyncSettings:
        """Persist the user-editable settings and reschedule.

        Must be called from the running event loop.
        """
        errors = validate_schedule(update)
        if errors:
            raise ValidationError(errors)
        self._store.update(SETTINGS_KEY, update.model_dump(mode="json"))
        log.info("sync.settings_updated", enabled=update.enabled)
        if update.enabled:
            self.start()
        else:
            self.stop()
        return self.load_settings()

    def _record(self, **changes) -> None:
        payload = {
            k: v.isoformat() if isinstance(v, datetime) else v
            for k, v in changes.items()
        }
        self._store.update(SETTINGS_KEY, payload)

    # ── scheduling ────────────────────────────────────────────────────

    @property
    def has_schedule(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """(Re)start the scheduler from the persisted settings."""
        self.stop()
        current = self.load_settings()
        if not current.enabled:
            log.info("sync.not_scheduled", reason="disabled")
            return False
        schedule = current.schedule
        if not croniter.is_valid(schedule):
            log.warning("sync.not_scheduled", reason="invalid cron", schedule=schedule)
            return False
        self._schedule = schedule
        self._task = asyncio.create_task(self._loop(schedule), name="auto-sync")
        log.info("sync.scheduled", schedule=schedule)
        return True

    def stop(self) -> None:
        """Drop the current schedule.

        A loop that is in the middle of a run is left to finish it and
        record the outcome; it exits on its own once it sees it has been
        replaced.
        """
        task = self._task
        self._task = None
        self._schedule = None
        if task is None or task.done():
            return
        if task in self._running:
            log.info("sync.stop_deferred", reason="run in progress")
            return
        task.cancel()

    async def _loop(self, schedule: str) -> None:
        me = asyncio.current_task()
        while self._task is me:
            # Seeded from now each round: ticks missed during a long run are dropped
            next_at = croniter(schedule, self._clock()).get_next(datetime)
            delay = (next_at - self._clock()).total_seconds()
            await self._sleep(max(delay, 0.0))
            self._running.add(me)
            try:
                keep_going = await self._tick()
            except Exception:
                log.exception("sync.tick_crashed")
                keep_going = True
            finally:
                self._running.discard(me)
            if not keep_going:
                return

    async def _tick(self) -> bool:
        """One scheduled firing. Returns False when the schedule should end."""
        if _sync_lock.locked():
            log.info("sync.tick_skipped", reason="already running")
            return True
        if not self.load_settings().enabled:
            log.info("sync.stopping", reason="disabled")
            if self._task is asyncio.current_task():
                self._task = None
                self._schedule = None
            return False
        await self.run_sync_now()
        return True

    # ── running ───────────────────────────────────────────────────────

    async def run_sync_now(self) -> SyncResult:
        if not _sync_lock.acquire(blocking=False):
            return SyncResult(
                ok=False,
                message="Auto-sync already running",
                already_running=True,
            )
        started = time.monotonic()
        try:
            result = await self._run_locked()
        finally:
            _sync_lock.release()
        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result

    async def _run_locked(self) -> SyncResult:
        current = self.load_settings()
        log.info("sync.started")
        try:
            summary = await self._sync(current)
        except RateLimitError as exc:
            log.warning("sync.rate_limited", error=str(exc))
            await self._notify(
                current,
                "Auto-Sync Rate Limited",
                f"{RATE_LIMIT_HINT}\n\nError: {exc}",
            )
            self._record(last_error=RATE_LIMIT_HINT, last_error_at=self._clock())
            return SyncResult(ok=False, message=RATE_LIMIT_HINT, rate_limited=True)
        except Exception as exc:
            log.exception("sync.failed")
            await self._notify(
                current,
                "Auto-Sync Failed",
                f"Auto-sync failed with error: {exc}",
            )
            self._record(last_error=str(exc), last_error_at=self._clock())
            return SyncResult(ok=False, message=str(exc))

        await self._notify(current, "Auto-Sync Completed", _summary_body(summary))
        self._record(last_run_at=self._clock(), last_error=None, last_error_at=None)
        log.info(
            "sync.completed",
            synced=len(summary.synced_files),
            downloaded=len(summary.downloaded),
            updated=len(summary.updated),
            errors=len(summary.errors),
        )
        return SyncResult(
            ok=True,
            message="Auto-sync completed successfully",
            summary=summary,
        )

    async def _sync(self, current: SyncSettings) -> SyncSummary:
        catalog_result = await self._catalog.sync_catalog()
        if not catalog_result.success:
            raise PveFleetError(f"JSON sync failed: {catalog_result.message}")

        summary = SyncSummary(
            synced_files=catalog_result.synced_files,
            errors=list(catalog_result.errors),
        )
        if not (current.auto_download_new or current.auto_update_existing):
            return summary

        for item in self._catalog.load_items(catalog_result.synced_files):
            present = self._catalog.is_already_present(item)
            if present and not current.auto_update_existing:
                continue
            if not present and not current.auto_download_new:
                continue
            try:
                await self._catalog.fetch_item(item)
            except RateLimitError:
                raise
            except Exception as exc:
                summary.errors.append(f"{item.label}: {exc}")
                continue
            (summary.updated if present else summary.downloaded).append(item.label)
        return summary

    async def _notify(self, current: SyncSettings, title: str, body: str) -> None:
        if not (current.notification_enabled and current.apprise_urls):
            return
        try:
            await self._notifier.send(title, body, current.apprise_urls)
        except PveFleetError as exc:
            log.warning("sync.notify_failed", error=str(exc))

    async def test_notification(self) -> NotificationResult:
        current = self.load_settings()
        if not (current.notification_enabled and current.apprise_urls):
            return NotificationResult(
                success=False,
                message="Notifications not enabled or no Apprise URLs configured",
            )
        try:
            await self._notifier.send(
                "pvefleet - Test Notification",
                "This is a test notification from pvefleet auto-sync.",
                current.apprise_urls,
            )
        except PveFleetError as exc:
            return NotificationResult(
                success=False, message=f"Failed to send test notification: {exc}",
            )
        return NotificationResult(success=True, message="Test notification sent successfully")

    # ── status ────────────────────────────────────────────────────────

    def get_status(self) -> SyncStatus:
        current = self.load_settings()
        return SyncStatus(
            is_running=_sync_lock.locked(),
            has_schedule=self.has_schedule,
            schedule=self._schedule,
            last_run_at=current.last_run_at,
            last_error=current.last_error,
            last_error_at=current.last_error_at,
        )


def _summary_body(summary: SyncSummary) -> str:
    lines = ["Auto-sync completed successfully.", ""]
    if summary.synced_files:
        lines.append(f"JSON files: {len(summary.synced_files)} synced")
    else:
        lines.append("JSON files: all up-to-date")
    if summary.downloaded:
        lines.append(f"New scripts downloaded: {len(summary.downloaded)}")
        lines.extend(f"• {name}" for name in summary.downloaded)
    if summary.updated:
        lines.append(f"Scripts updated: {len(summary.updated)}")
        lines.extend(f"• {name}" for name in summary.updated)
    if summary.errors:
        lines.append(f"Errors: {len(summary.errors)}")
        lines.extend(f"• {err}" for err in summary.errors[:5])
        if len(summary.errors) > 5:
            lines.append(f"• ... and {len(summary.errors) - 5} more")
    if not (summary.synced_files or summary.downloaded or summary.updated):
        lines.append("No script changes detected.")
    return "\n".join(lines)


# ── Singleton instance ────────────────────────────────────────────────────

sync_coordinator = SyncCoordinator()
