"""Restore an LXC container from a vzdump backup as a tracked detached job.

The caller gets an operation key back immediately and polls the tracker;
the last log line says how it ended.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from pvefleet.config import settings
from pvefleet.errors import CommandFailureError, OperationInProgressError, PveFleetError
from pvefleet.models.inventory import BackupRecord
from pvefleet.models.operations import OperationOutcome, OperationSnapshot
from pvefleet.models.target import RemoteTarget
from pvefleet.services.inventory import InventoryStore, inventory
from pvefleet.services.operation_tracker import OperationTracker, operation_tracker
from pvefleet.services.ssh_executor import SSHCommandExecutor, ssh_executor
from pvefleet.utils import lxc_parser
from pvefleet.utils.logging import get_logger

log = get_logger(__name__)

SUCCESS_LINE = "Restore completed successfully"
ERROR_PREFIX = "Error:"

_MISSING_MARKERS = ("does not exist", "not found")

# Detached restore tasks; held so they are not garbage-collected mid-run
_tasks: set[asyncio.Task] = set()


def operation_key(container_id: str) -> str:
    return f"restore-{container_id}"


class _LineSink:
    """Turns arbitrary output fragments into whole tracker lines.

    Writes carry the generation the restore started with, so a run whose
    log was restarted under it goes quiet instead of mixing in.
    """

    def __init__(
        self,
        tracker: OperationTracker,
        key: str,
        generation: Optional[int] = None,
    ) -> None:
        self._tracker = tracker
        self._key = key
        self._generation = generation
        self._buf = ""

    def line(self, text: str) -> None:
        self._tracker.append(self._key, text, generation=self._generation)

    def write(self, fragment: str) -> None:
        self._buf += fragment.replace("\r\n", "\n").replace("\r", "\n")
        *lines, self._buf = self._buf.split("\n")
        for line in lines:
            if line.strip():
                self.line(line)

    def flush(self) -> None:
        if self._buf.strip():
            self.line(self._buf)
        self._buf = ""

    def complete(self) -> None:
        self._tracker.complete(self._key, generation=self._generation)


def _restore_running(key: str, tracker: OperationTracker) -> bool:
    if any(task.get_name() == key and not task.done() for task in _tasks):
        return True
    snapshot = tracker.peek(key)
    return snapshot is not None and not snapshot.is_complete


async def start_restore(
    backup_id: int,
    container_id: str,
    server_id: int,
    *,
    executor: SSHCommandExecutor | None = None,
    store: InventoryStore | None = None,
    tracker: OperationTracker | None = None,
) -> str:
    """Kick off a restore and return its operation key.

    Unknown backup or server ids raise ``NotFoundError`` here, before any
    tracker entry exists. A restore of the same container that has not
    finished yet raises ``OperationInProgressError``.
    """
    _store = store or inventory
    _tracker = tracker or operation_tracker
    _executor = executor or ssh_executor

    backup = _store.get_backup(backup_id)
    target = _store.get_server(server_id).to_target()

    key = operation_key(container_id)
    if _restore_running(key, _tracker):
        log.warning("restore.rejected", container_id=container_id, reason="in progress")
        raise OperationInProgressError(key)

    generation = _tracker.start(key).generation
    sink = _LineSink(_tracker, key, generation)
    task = asyncio.create_task(
        _run_restore(backup, container_id, server_id, target, _executor, _store, sink),
        name=key,
    )
    _tasks.add(task)
    task.add_done_callback(_tasks.discard)
    return key


async def _run_restore(
    backup: BackupRecord,
    container_id: str,
    server_id: int,
    target: RemoteTarget,
    executor: SSHCommandExecutor,
    store: InventoryStore,
    sink: _LineSink,
) -> None:
    try:
        sink.line("Reading container configuration...")
        storage = await _rootfs_storage(executor, store, target, container_id, server_id)
        if not storage:
            raise PveFleetError(
                f"Could not determine rootfs storage for container {container_id}",
            )
        sink.line(f"Target storage: {storage}")

        sink.line(f"Stopping container {container_id}...")
        await executor.run(target, f"pct stop {container_id} 2>&1 || true")

        sink.line(f"Destroying container {container_id}...")
        destroyed = await executor.run(target, f"pct destroy {container_id} 2>&1")
        if not destroyed.ok:
            output = destroyed.stdout + destroyed.stderr
            if not any(marker in output for marker in _MISSING_MARKERS):
                raise CommandFailureError(
                    destroyed.command, destroyed.exit_code,
                    destroyed.stdout, destroyed.stderr,
                )
            sink.line("Container does not exist, continuing")

        sink.line(f"Restoring from {backup.backup_path}...")
        result = await executor.execute(
            target,
            f'pct restore {container_id} "{backup.backup_path}" --storage={storage}',
            on_stdout=sink.write,
            on_stderr=sink.write,
        )
        sink.flush()
        if not result.ok:
            raise CommandFailureError(
                result.command, result.exit_code, result.stdout, result.stderr,
            )
        sink.line(SUCCESS_LINE)
        log.info("restore.done", container_id=container_id, backup_id=backup.id)
    except PveFleetError as exc:
        sink.flush()
        sink.line(f"{ERROR_PREFIX} {exc}")
        log.warning("restore.failed", container_id=container_id, error=str(exc))
    except Exception as exc:
        sink.flush()
        sink.line(f"{ERROR_PREFIX} {exc}")
        log.exception("restore.crashed", container_id=container_id)
    finally:
        sink.complete()


async def _rootfs_storage(
    executor: SSHCommandExecutor,
    store: InventoryStore,
    target: RemoteTarget,
    container_id: str,
    server_id: int,
) -> Optional[str]:
    """Storage id of the container's rootfs, live config first, cache second."""
    try:
        result = await executor.run(
            target, f'cat "{settings.lxc_config_dir}/{container_id}.conf"',
        )
        if result.ok:
            storage = lxc_parser.rootfs_volume_storage(
                lxc_parser.parse(result.stdout).rootfs_storage,
            )
            if storage:
                return storage
    except PveFleetError as exc:
        log.warning("restore.config_read_failed", container_id=container_id, error=str(exc))

    cached = store.find_lxc_config(container_id, server_id)
    if cached is not None:
        return lxc_parser.rootfs_volume_storage(cached.config.rootfs_storage)
    return None


def classify_operation(snapshot: Optional[OperationSnapshot]) -> OperationOutcome:
    """Caller-side outcome: success only if the log says so after completing."""
    if snapshot is None:
        return OperationOutcome.failure
    if not snapshot.is_complete:
        return OperationOutcome.running
    for line in reversed(snapshot.lines):
        text = line.strip()
        if not text:
            continue
        if text.startswith(ERROR_PREFIX):
            return OperationOutcome.failure
        if SUCCESS_LINE in text:
            return OperationOutcome.success
        break
    return OperationOutcome.failure
