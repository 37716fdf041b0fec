"""Tests for the tracked LXC restore action."""

from __future__ import annotations

import asyncio

import pytest

import pvefleet.services.restore as restore_mod
from pvefleet.errors import NotFoundError, OperationInProgressError
from pvefleet.models.lxc import ConfigCacheEntry, LXCConfig
from pvefleet.models.operations import OperationOutcome, OperationSnapshot
from pvefleet.services.restore import (
    SUCCESS_LINE,
    _LineSink,
    classify_operation,
    start_restore,
)
from tests.fakes import NOW


async def _run(mock_executor, store, tracker, backup_id: int = 3) -> OperationSnapshot:
    key = await start_restore(
        backup_id, "100", 1, executor=mock_executor, store=store, tracker=tracker,
    )
    await asyncio.gather(*list(restore_mod._tasks))
    return tracker.peek(key)


@pytest.mark.asyncio
async def test_restore_lifecycle_success(mock_executor, store, tracker):
    snap = await _run(mock_executor, store, tracker)

    assert snap.key == "restore-100"
    assert snap.is_complete is True
    assert snap.lines[-1] == SUCCESS_LINE
    assert classify_operation(snap) == OperationOutcome.success
    # pct output is streamed into the log line by line
    assert any(line.startswith("extracting archive") for line in snap.lines)

    assert mock_executor.commands == [
        'cat "/etc/pve/lxc/100.conf"',
        "pct stop 100 2>&1 || true",
        "pct destroy 100 2>&1",
        'pct restore 100 "/var/lib/vz/dump/vzdump-lxc-100-2025_01_01-00_00_00.tar.zst"'
        " --storage=local-lvm",
    ]


@pytest.mark.asyncio
async def test_restore_tolerates_missing_container(mock_executor, store, tracker):
    mock_executor.add_response(
        "pct destroy 100",
        "Configuration file 'nodes/pve/lxc/100.conf' does not exist\n",
        exit_code=2,
    )
    snap = await _run(mock_executor, store, tracker)
    assert classify_operation(snap) == OperationOutcome.success


@pytest.mark.asyncio
async def test_restore_destroy_failure(mock_executor, store, tracker):
    mock_executor.add_response("pct destroy 100", "CT is locked (backup)\n", exit_code=255)
    snap = await _run(mock_executor, store, tracker)

    assert snap.is_complete is True
    assert snap.lines[-1].startswith("Error:")
    assert classify_operation(snap) == OperationOutcome.failure
    assert mock_executor.count("pct restore") == 0


@pytest.mark.asyncio
async def test_restore_command_failure(mock_executor, store, tracker):
    mock_executor.add_response(
        "pct restore 100", stderr="unable to restore CT 100 - no space left\n", exit_code=1,
    )
    snap = await _run(mock_executor, store, tracker)

    assert classify_operation(snap) == OperationOutcome.failure
    assert "unable to restore CT 100 - no space left" in snap.lines
    assert "exit code 1" in snap.lines[-1]


@pytest.mark.asyncio
async def test_restore_storage_falls_back_to_cache(mock_executor, store, tracker):
    mock_executor.add_response(
        'cat "/etc/pve/lxc/100.conf"', stderr="No such file or directory", exit_code=1,
    )
    store.save_lxc_config(
        7,
        ConfigCacheEntry(
            config=LXCConfig(rootfs_storage="local-zfs:subvol-100-disk-0", rootfs_size="8G"),
            config_hash="x",
            synced_at=NOW,
        ),
    )
    snap = await _run(mock_executor, store, tracker)

    assert classify_operation(snap) == OperationOutcome.success
    assert mock_executor.commands[-1].endswith("--storage=local-zfs")


@pytest.mark.asyncio
async def test_restore_without_storage_fails(mock_executor, store, tracker):
    mock_executor.add_response('cat "/etc/pve/lxc/100.conf"', exit_code=1)
    snap = await _run(mock_executor, store, tracker)

    assert classify_operation(snap) == OperationOutcome.failure
    assert "Could not determine rootfs storage" in snap.lines[-1]
    assert mock_executor.count("pct ") == 0


@pytest.mark.asyncio
async def test_restore_connection_failure(mock_executor, store, tracker):
    mock_executor.fail_connect = True
    snap = await _run(mock_executor, store, tracker)
    assert snap.is_complete is True
    assert classify_operation(snap) == OperationOutcome.failure


@pytest.mark.asyncio
async def test_unknown_backup_creates_no_entry(mock_executor, store, tracker):
    with pytest.raises(NotFoundError):
        await start_restore(
            404, "100", 1, executor=mock_executor, store=store, tracker=tracker,
        )
    assert tracker.peek("restore-100") is None


@pytest.mark.asyncio
async def test_second_restore_refused_while_first_runs(mock_executor, store, tracker):
    gate = mock_executor.hold("pct restore")
    key = await start_restore(
        3, "100", 1, executor=mock_executor, store=store, tracker=tracker,
    )
    await asyncio.wait_for(mock_executor.held.wait(), timeout=5)

    with pytest.raises(OperationInProgressError):
        await start_restore(
            3, "100", 1, executor=mock_executor, store=store, tracker=tracker,
        )

    gate.set()
    await asyncio.gather(*list(restore_mod._tasks))
    assert classify_operation(tracker.peek(key)) == OperationOutcome.success
    assert mock_executor.count("pct destroy") == 1
    assert mock_executor.count("pct restore") == 1


@pytest.mark.asyncio
async def test_restore_allowed_again_after_completion(mock_executor, store, tracker):
    await _run(mock_executor, store, tracker)
    snap = await _run(mock_executor, store, tracker)
    assert classify_operation(snap) == OperationOutcome.success
    assert mock_executor.count("pct restore") == 2


@pytest.mark.asyncio
async def test_restarted_log_is_not_written_by_old_run(mock_executor, store, tracker):
    gate = mock_executor.hold("pct restore")
    key = await start_restore(
        3, "100", 1, executor=mock_executor, store=store, tracker=tracker,
    )
    await asyncio.wait_for(mock_executor.held.wait(), timeout=5)

    tracker.start(key)
    gate.set()
    await asyncio.gather(*list(restore_mod._tasks))

    snap = tracker.peek(key)
    assert snap.lines == []
    assert snap.is_complete is False


# ── classification ────────────────────────────────────────────────────────


def test_classify_running():
    snap = OperationSnapshot(key="k", lines=["working"], is_complete=False)
    assert classify_operation(snap) == OperationOutcome.running


def test_classify_missing_is_failure():
    assert classify_operation(None) == OperationOutcome.failure


def test_classify_complete_without_success_line():
    snap = OperationSnapshot(key="k", lines=["Stopping container 100..."], is_complete=True)
    assert classify_operation(snap) == OperationOutcome.failure


def test_line_sink_joins_fragments(tracker):
    tracker.start("k")
    sink = _LineSink(tracker, "k")
    sink.write("extract")
    sink.write("ing archive\nTotal ")
    sink.write("bytes read\r\n\n")
    sink.write("tail")
    sink.flush()
    assert tracker.peek("k").lines == ["extracting archive", "Total bytes read", "tail"]
