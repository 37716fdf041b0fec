"""Shared pytest fixtures."""

from __future__ import annotations

import os
from functools import partial

# Keep settings away from /data before any import
os.environ.setdefault("DATA_DIR", "/tmp/pvefleet-test")
os.environ.setdefault("INVENTORY_PATH", "/tmp/pvefleet-test/inventory.json")
os.environ.setdefault("SETTINGS_STORE_PATH", "/tmp/pvefleet-test/settings.json")
os.environ.setdefault("SSH_KEY_DIR", "/tmp/pvefleet-test/ssh-keys")
os.environ.setdefault("SCRIPTS_DIR", "/tmp/pvefleet-test/scripts")
os.environ.setdefault("GITHUB_TOKEN", "")

import pytest
from httpx import ASGITransport, AsyncClient

from pvefleet.config import Settings
from pvefleet.models.inventory import BackupRecord, InstalledContainer, ServerRecord
from pvefleet.services.config_reconciler import ConfigReconciler
from pvefleet.services.inventory import InventoryStore
from pvefleet.services.operation_tracker import OperationTracker
from pvefleet.services.settings_store import SettingsStore
from pvefleet.services.sync_coordinator import SyncCoordinator
from tests.fakes import FakeCatalog, FakeClock, FakeNotifier, make_item
from tests.mock_executor import MockExecutor


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        data_dir=str(tmp_path),
        inventory_path=str(tmp_path / "inventory.json"),
        settings_store_path=str(tmp_path / "settings.json"),
        ssh_key_dir=str(tmp_path / "ssh-keys"),
        scripts_dir=str(tmp_path / "scripts"),
        github_token="",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_executor(test_settings):
    """Provide a fresh MockExecutor."""
    return MockExecutor(test_settings)


@pytest.fixture
def store(test_settings) -> InventoryStore:
    """Inventory with one server, one installed container and one backup."""
    inv = InventoryStore(cfg=test_settings)
    inv.add_server(ServerRecord(id=1, name="pve1", ip="10.0.0.10", password="secret"))
    inv.add_container(
        InstalledContainer(
            id=7, script_name="homeassistant", container_id="100", server_id=1,
        ),
    )
    inv.add_backup(
        BackupRecord(
            id=3,
            container_id="100",
            server_id=1,
            hostname="homeassistant",
            backup_name="vzdump-lxc-100-2025_01_01-00_00_00.tar.zst",
            backup_path="/var/lib/vz/dump/vzdump-lxc-100-2025_01_01-00_00_00.tar.zst",
            storage_name="local",
        ),
    )
    return inv


@pytest.fixture
def reconciler(mock_executor, store, test_settings, clock) -> ConfigReconciler:
    return ConfigReconciler(
        executor=mock_executor, store=store, cfg=test_settings, clock=clock,
    )


@pytest.fixture
def tracker() -> OperationTracker:
    return OperationTracker(max_lines=2000)


@pytest.fixture
def settings_store(test_settings) -> SettingsStore:
    return SettingsStore(cfg=test_settings)


@pytest.fixture
def fake_catalog() -> FakeCatalog:
    return FakeCatalog([make_item("homeassistant"), make_item("pihole")])


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def coordinator(fake_catalog, fake_notifier, settings_store, clock) -> SyncCoordinator:
    return SyncCoordinator(
        catalog=fake_catalog,
        notifier=fake_notifier,
        store=settings_store,
        clock=clock,
    )


@pytest.fixture
async def client(
    mock_executor, store, reconciler, tracker, coordinator, test_settings, monkeypatch,
):
    """Async test client with mock services injected into the routers."""
    import pvefleet.routers.containers as rc
    import pvefleet.routers.execute as rx
    import pvefleet.routers.operations as ro
    import pvefleet.routers.servers as rs
    import pvefleet.routers.sync as rsy
    from pvefleet.services.keys import generate_key_pair
    from pvefleet.services.restore import start_restore

    monkeypatch.setattr(rx, "inventory", store)
    monkeypatch.setattr(rx, "ssh_executor", mock_executor)
    monkeypatch.setattr(rs, "inventory", store)
    monkeypatch.setattr(rs, "ssh_executor", mock_executor)
    monkeypatch.setattr(
        rs, "generate_key_pair", partial(generate_key_pair, key_dir=test_settings.ssh_key_dir),
    )
    monkeypatch.setattr(rc, "config_reconciler", reconciler)
    monkeypatch.setattr(ro, "operation_tracker", tracker)
    monkeypatch.setattr(
        ro,
        "start_restore",
        partial(start_restore, executor=mock_executor, store=store, tracker=tracker),
    )
    monkeypatch.setattr(rsy, "sync_coordinator", coordinator)

    from pvefleet.main import app as fastapi_app

    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
