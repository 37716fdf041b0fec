"""Small JSON-file key/value store for persisted application settings."""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Any

from pvefleet.config import Settings, settings
from pvefleet.utils.logging import get_logger

log = get_logger(__name__)


class SettingsStore:
    """Whole-file JSON store; every write replaces the file atomically."""

    def __init__(self, path: str | None = None, cfg: Settings | None = None) -> None:
        self._cfg = cfg or settings
        self._path = Path(path or self._cfg.settings_store_path)
        self._lock = threading.Lock()

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            return json.loads(self._path.read_text() or "{}")
        except json.JSONDecodeError:
            log.warning("settings.corrupt", path=str(self._path))
            return {}

    def _dump(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True, default=str))
        os.replace(tmp, self._path)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._dump(data)

    def update(self, key: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Merge *changes* into the dict stored under *key*; return the result."""
        with self._lock:
            data = self._load()
            current = dict(data.get(key) or {})
            current.update(changes)
            data[key] = current
            self._dump(data)
            return current


settings_store = SettingsStore()
