"""Records held by the local inventory store."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from pvefleet.models.lxc import ConfigCacheEntry
from pvefleet.models.target import AuthMethod, RemoteTarget


class ServerRecord(BaseModel):
    id: int
    name: str
    ip: str
    user: str = "root"
    ssh_port: int = 22
    auth_type: AuthMethod = AuthMethod.password
    password: Optional[str] = None
    ssh_key: Optional[str] = None
    ssh_key_passphrase: Optional[str] = None

    def to_target(self) -> RemoteTarget:
        return RemoteTarget(
            host=self.ip,
            port=self.ssh_port,
            username=self.user,
            auth_method=self.auth_type,
            password=self.password if self.auth_type == AuthMethod.password else None,
            ssh_key=self.ssh_key if self.auth_type == AuthMethod.ssh_key else None,
            ssh_key_passphrase=self.ssh_key_passphrase,
        )


class InstalledContainer(BaseModel):
    id: int
    script_name: str
    container_id: str
    server_id: int
    status: str = "success"


class BackupRecord(BaseModel):
    id: int
    container_id: str
    server_id: int
    hostname: str = ""
    backup_name: str
    backup_path: str
    storage_name: str
    storage_type: str = "local"
    created_at: Optional[datetime] = None


class InventoryData(BaseModel):
    servers: dict[int, ServerRecord] = {}
    containers: dict[int, InstalledContainer] = {}
    lxc_configs: dict[int, ConfigCacheEntry] = {}
    backups: dict[int, BackupRecord] = {}
