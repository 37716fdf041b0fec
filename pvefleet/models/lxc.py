"""LXC container configuration models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class ConfigSource(str, Enum):
    cache = "cache"
    server = "server"


class LXCConfig(BaseModel):
    """Structured view of ``/etc/pve/lxc/<ctid>.conf``.

    Every recognized key has a typed field. Anything else (comments,
    ``lxc.*`` entries, extra mount points, snapshot sections) lives in
    ``advanced`` verbatim and is written back after the recognized keys.
    """

    arch: Optional[str] = None
    cores: Optional[int] = None
    memory: Optional[int] = None
    hostname: Optional[str] = None
    swap: Optional[int] = None
    onboot: Optional[bool] = None
    ostype: Optional[str] = None
    unprivileged: Optional[bool] = None

    # net0
    net_name: Optional[str] = None
    net_bridge: Optional[str] = None
    net_hwaddr: Optional[str] = None
    net_ip_type: Optional[str] = None  # "dhcp", "manual" or "static"
    net_ip: Optional[str] = None
    net_gateway: Optional[str] = None
    net_type: Optional[str] = None
    net_vlan: Optional[int] = Field(default=None, ge=1, le=4094)
    net_options: Optional[str] = None

    # rootfs
    rootfs_storage: Optional[str] = None
    rootfs_size: Optional[str] = None

    # features
    feature_keyctl: Optional[bool] = None
    feature_nesting: Optional[bool] = None
    feature_fuse: Optional[bool] = None
    features_extra: Optional[str] = None

    tags: Optional[str] = None
    advanced: str = ""

    @field_validator(
        "arch", "hostname", "ostype", "net_name", "net_bridge", "net_hwaddr",
        "net_ip_type", "net_ip", "net_gateway", "net_type", "net_options",
        "rootfs_storage", "rootfs_size", "features_extra", "tags",
        mode="before",
    )
    @classmethod
    def _blank_is_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("advanced", mode="before")
    @classmethod
    def _advanced_text(cls, v):
        return "" if v is None else v

    @model_validator(mode="after")
    def _net_ip_shape(self) -> "LXCConfig":
        """Keep ``net_ip_type`` and ``net_ip`` in the one shape ``net0`` can carry."""
        if self.net_ip_type is None and self.net_ip is not None:
            self.net_ip_type = "static"
        if self.net_ip_type in ("dhcp", "manual"):
            self.net_ip = None
        elif self.net_ip_type == "static":
            if self.net_ip is None:
                raise ValueError("net_ip_type 'static' requires net_ip")
        elif self.net_ip_type is not None:
            raise ValueError(
                f"net_ip_type must be dhcp, manual or static, not {self.net_ip_type!r}",
            )
        return self


class ConfigCacheEntry(BaseModel):
    config: LXCConfig
    config_hash: str
    synced_at: datetime


class ConfigReadResult(BaseModel):
    config: LXCConfig
    source: ConfigSource
    has_changes: bool = False
    synced_at: datetime
    config_hash: str


class SaveConfigRequest(BaseModel):
    config: LXCConfig


class SaveConfigResult(BaseModel):
    ok: bool
    config_hash: str
    synced_at: datetime
    resized: bool = False
    message: str = Field(default="Configuration saved")
