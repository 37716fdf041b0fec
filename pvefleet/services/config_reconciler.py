"""Read and write LXC container configs with a TTL cache and drift detection."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable

from pvefleet.config import Settings, settings
from pvefleet.errors import FieldError, ValidationError
from pvefleet.models.lxc import (
    ConfigCacheEntry,
    ConfigReadResult,
    ConfigSource,
    LXCConfig,
    SaveConfigResult,
)
from pvefleet.models.target import RemoteTarget
from pvefleet.services.inventory import InventoryStore, inventory
from pvefleet.services.ssh_executor import SSHCommandExecutor, ssh_executor
from pvefleet.utils import lxc_parser
from pvefleet.utils.logging import get_logger

log = get_logger(__name__)

MIN_CORES = 1
MIN_MEMORY_MB = 128
_REQUIRED_FIELDS = ("arch", "cores", "memory", "hostname", "ostype", "rootfs_storage")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConfigReconciler:
    """Keeps the local view of each container's config in step with its host."""

    def __init__(
        self,
        *,
        executor: SSHCommandExecutor | None = None,
        store: InventoryStore | None = None,
        cfg: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._executor = executor or ssh_executor
        self._store = store or inventory
        self._cfg = cfg or settings
        self._clock = clock

    # ── helpers ───────────────────────────────────────────────────────

    def _resolve(self, entity_id: int) -> tuple[RemoteTarget, str]:
        container = self._store.get_installed_container(entity_id)
        server = self._store.get_server(container.server_id)
        return server.to_target(), container.container_id

    def _config_path(self, container_id: str) -> str:
        return f"{self._cfg.lxc_config_dir.rstrip('/')}/{container_id}.conf"

    def _is_fresh(self, entry: ConfigCacheEntry, now: datetime) -> bool:
        age = now - entry.synced_at
        return age < timedelta(seconds=self._cfg.config_cache_ttl_seconds)

    # ── public: read ──────────────────────────────────────────────────

    async def get_config(
        self,
        entity_id: int,
        force_refresh: bool = False,
    ) -> ConfigReadResult:
        """Return the container config, from cache when fresh.

        A cache miss reads the file from the host, replaces the cache entry
        and reports ``has_changes`` when the content differs from what was
        cached before.
        """
        previous = self._store.get_lxc_config(entity_id)
        now = self._clock()
        if previous and not force_refresh and self._is_fresh(previous, now):
            log.debug("config.cache_hit", entity_id=entity_id)
            return ConfigReadResult(
                config=previous.config,
                source=ConfigSource.cache,
                has_changes=False,
                synced_at=previous.synced_at,
                config_hash=previous.config_hash,
            )

        target, container_id = self._resolve(entity_id)
        result = await self._executor.run(
            target, f'cat "{self._config_path(container_id)}"', check=True,
        )
        text = result.stdout
        digest = lxc_parser.config_hash(text)
        entry = ConfigCacheEntry(
            config=lxc_parser.parse(text),
            config_hash=digest,
            synced_at=self._clock(),
        )
        has_changes = previous is not None and previous.config_hash != digest
        self._store.save_lxc_config(entity_id, entry)
        log.info(
            "config.synced",
            entity_id=entity_id,
            container_id=container_id,
            has_changes=has_changes,
        )
        return ConfigReadResult(
            config=entry.config,
            source=ConfigSource.server,
            has_changes=has_changes,
            synced_at=entry.synced_at,
            config_hash=digest,
        )

    # ── public: write ─────────────────────────────────────────────────

    async def save_config(self, entity_id: int, config: LXCConfig) -> SaveConfigResult:
        """Validate, optionally grow the rootfs, then write the config file.

        Nothing touches the host until validation passes, and the cache is
        only replaced after the write succeeded.
        """
        errors = validate_config(config)
        if errors:
            raise ValidationError(errors)

        target, container_id = self._resolve(entity_id)

        current = self._store.get_lxc_config(entity_id)
        current_config = (
            current.config if current
            else (await self.get_config(entity_id, force_refresh=True)).config
        )
        # An omitted size keeps the current one
        if config.rootfs_size is None and current_config.rootfs_size:
            config = config.model_copy(update={"rootfs_size": current_config.rootfs_size})
        resize = _check_disk_size(current_config.rootfs_size, config.rootfs_size)

        if resize:
            log.info(
                "config.resize",
                container_id=container_id,
                size=config.rootfs_size,
            )
            await self._executor.run(
                target,
                f"pct resize {container_id} rootfs {config.rootfs_size}",
                check=True,
            )

        text = lxc_parser.reconstruct(config)
        await self._executor.run(
            target, _heredoc_write(self._config_path(container_id), text), check=True,
        )

        entry = ConfigCacheEntry(
            config=config,
            config_hash=lxc_parser.config_hash(text),
            synced_at=self._clock(),
        )
        self._store.save_lxc_config(entity_id, entry)
        log.info("config.saved", entity_id=entity_id, container_id=container_id)
        return SaveConfigResult(
            ok=True,
            config_hash=entry.config_hash,
            synced_at=entry.synced_at,
            resized=resize,
            message=(
                "Configuration saved and disk resized" if resize
                else "Configuration saved"
            ),
        )


# ── validation ────────────────────────────────────────────────────────────

def validate_config(config: LXCConfig) -> list[FieldError]:
    errors: list[FieldError] = []
    for name in _REQUIRED_FIELDS:
        if getattr(config, name) is None:
            errors.append(FieldError(field=name, message="is required"))
    if config.cores is not None and config.cores < MIN_CORES:
        errors.append(FieldError(field="cores", message=f"must be at least {MIN_CORES}"))
    if config.memory is not None and config.memory < MIN_MEMORY_MB:
        errors.append(
            FieldError(field="memory", message=f"must be at least {MIN_MEMORY_MB} MB"),
        )
    if config.rootfs_size is not None:
        try:
            lxc_parser.size_to_bytes(config.rootfs_size)
        except ValueError as exc:
            errors.append(FieldError(field="rootfs_size", message=str(exc)))
    return errors


def _check_disk_size(current: str | None, requested: str | None) -> bool:
    """Return True when the disk must grow; raise on shrink."""
    if not current or not requested:
        return False
    try:
        old_bytes = lxc_parser.size_to_bytes(current)
    except ValueError:
        # Unknown on-host format, nothing sane to compare against
        return False
    new_bytes = lxc_parser.size_to_bytes(requested)
    if new_bytes < old_bytes:
        raise ValidationError([
            FieldError(
                field="rootfs_size",
                message=f"Disk size cannot be decreased (current {current}, requested {requested})",
            ),
        ])
    return new_bytes > old_bytes


def _heredoc_write(path: str, text: str) -> str:
    delimiter = f"PVEFLEET_EOF_{uuid.uuid4().hex}"
    while delimiter in text:
        delimiter = f"PVEFLEET_EOF_{uuid.uuid4().hex}"
    if not text.endswith("\n"):
        text += "\n"
    return f"cat > \"{path}\" <<'{delimiter}'\n{text}{delimiter}"


config_reconciler = ConfigReconciler()
