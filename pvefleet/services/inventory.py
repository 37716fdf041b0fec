"""Local inventory: servers, installed containers, cached LXC configs, backups.

Persisted as a single JSON document. The web UI's database is out of scope;
this store holds just what the core operations need to resolve ids.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path

from pvefleet.config import Settings, settings
from pvefleet.errors import NotFoundError
from pvefleet.models.inventory import (
    BackupRecord,
    InstalledContainer,
    InventoryData,
    ServerRecord,
)
from pvefleet.models.lxc import ConfigCacheEntry
from pvefleet.utils.logging import get_logger

log = get_logger(__name__)


class InventoryStore:
    def __init__(self, path: str | None = None, cfg: Settings | None = None) -> None:
        self._cfg = cfg or settings
        self._path = Path(path or self._cfg.inventory_path)
        self._lock = threading.Lock()

    # ── persistence ───────────────────────────────────────────────────

    def _load(self) -> InventoryData:
        if not self._path.exists():
            return InventoryData()
        return InventoryData.model_validate_json(self._path.read_text() or "{}")

    def _dump(self, data: InventoryData) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(data.model_dump_json(indent=2))
        os.replace(tmp, self._path)

    # ── servers ───────────────────────────────────────────────────────

    def get_server(self, server_id: int) -> ServerRecord:
        with self._lock:
            server = self._load().servers.get(server_id)
        if server is None:
            raise NotFoundError(f"Server {server_id} not found")
        return server

    def next_server_id(self) -> int:
        with self._lock:
            return max(self._load().servers, default=0) + 1

    def add_server(self, server: ServerRecord) -> ServerRecord:
        with self._lock:
            data = self._load()
            data.servers[server.id] = server
            self._dump(data)
        log.info("inventory.server_added", server_id=server.id, ip=server.ip)
        return server

    # ── installed containers ──────────────────────────────────────────

    def get_installed_container(self, entity_id: int) -> InstalledContainer:
        with self._lock:
            item = self._load().containers.get(entity_id)
        if item is None:
            raise NotFoundError(f"Installed script {entity_id} not found")
        return item

    def add_container(self, container: InstalledContainer) -> InstalledContainer:
        with self._lock:
            data = self._load()
            data.containers[container.id] = container
            self._dump(data)
        return container

    # ── LXC config cache ──────────────────────────────────────────────

    def get_lxc_config(self, entity_id: int) -> ConfigCacheEntry | None:
        with self._lock:
            return self._load().lxc_configs.get(entity_id)

    def save_lxc_config(self, entity_id: int, entry: ConfigCacheEntry) -> None:
        with self._lock:
            data = self._load()
            data.lxc_configs[entity_id] = entry
            self._dump(data)

    def find_lxc_config(self, container_id: str, server_id: int) -> ConfigCacheEntry | None:
        """Cached config of the installed container with this CT id on this host."""
        with self._lock:
            data = self._load()
        for entity_id, item in data.containers.items():
            if item.container_id == container_id and item.server_id == server_id:
                entry = data.lxc_configs.get(entity_id)
                if entry is not None:
                    return entry
        return None

    # ── backups ───────────────────────────────────────────────────────

    def get_backup(self, backup_id: int) -> BackupRecord:
        with self._lock:
            backup = self._load().backups.get(backup_id)
        if backup is None:
            raise NotFoundError(f"Backup {backup_id} not found")
        return backup

    def add_backup(self, backup: BackupRecord) -> BackupRecord:
        with self._lock:
            data = self._load()
            data.backups[backup.id] = backup
            self._dump(data)
        return backup


inventory = InventoryStore()
