"""Utilities for converting Proxmox LXC config text to and from LXCConfig."""

from __future__ import annotations

import hashlib
import re
from typing import Any, Callable

from pvefleet.models.lxc import LXCConfig


# ---------------------------------------------------------------------------
# Line shapes
# ---------------------------------------------------------------------------

_SECTION_RE = re.compile(r"^\s*\[[^\]]+\]\s*$")
_KEY_VALUE_RE = re.compile(r"^([A-Za-z][\w.\-]*)\s*:\s*(.*?)\s*$")
_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMGT]?)B?\s*$", re.IGNORECASE)

_UNIT_BYTES = {
    "K": 1024,
    "M": 1024 ** 2,
    "G": 1024 ** 3,
    "T": 1024 ** 4,
}


# ---------------------------------------------------------------------------
# Scalar converters (raise ValueError on anything unexpected)
# ---------------------------------------------------------------------------

def _to_str(value: str) -> str:
    if not value:
        raise ValueError("empty value")
    return value


def _to_int(value: str) -> int:
    return int(value)


def _to_flag(value: str) -> bool:
    if value == "1":
        return True
    if value == "0":
        return False
    raise ValueError(f"not a 0/1 flag: {value!r}")


def _flag_text(flag: bool) -> str:
    return "1" if flag else "0"


# ---------------------------------------------------------------------------
# Composite fields
# ---------------------------------------------------------------------------

def _split_options(value: str) -> list[str]:
    return [tok.strip() for tok in value.split(",") if tok.strip()]


def _parse_rootfs(value: str) -> dict[str, Any]:
    """``local-lvm:vm-100-disk-0,size=8G`` -> storage reference + size."""
    storage_parts: list[str] = []
    size: str | None = None
    for tok in _split_options(value):
        if tok.lower().startswith("size="):
            size = tok.split("=", 1)[1]
        else:
            storage_parts.append(tok)
    if not storage_parts:
        raise ValueError("rootfs without a volume")
    return {"rootfs_storage": ",".join(storage_parts), "rootfs_size": size}


_NET_KEYS = {
    "name": "net_name",
    "bridge": "net_bridge",
    "hwaddr": "net_hwaddr",
    "gw": "net_gateway",
    "type": "net_type",
}


def _parse_net(value: str) -> dict[str, Any]:
    """``name=eth0,bridge=vmbr0,ip=dhcp,...`` -> net_* sub-fields."""
    out: dict[str, Any] = {}
    extra: list[str] = []
    for tok in _split_options(value):
        key, sep, val = tok.partition("=")
        if not sep:
            extra.append(tok)
            continue
        if key in _NET_KEYS:
            out[_NET_KEYS[key]] = val
        elif key == "ip":
            if not val:
                raise ValueError("ip= without an address")
            if val in ("dhcp", "manual"):
                out["net_ip_type"] = val
            else:
                out["net_ip_type"] = "static"
                out["net_ip"] = val
        elif key == "tag" and val.isdigit() and 1 <= int(val) <= 4094:
            out["net_vlan"] = int(val)
        else:
            extra.append(tok)
    if not out and not extra:
        raise ValueError("empty network definition")
    out["net_options"] = ",".join(extra) or None
    return out


_FEATURE_FLAGS = {
    "keyctl": "feature_keyctl",
    "nesting": "feature_nesting",
    "fuse": "feature_fuse",
}


def _parse_features(value: str) -> dict[str, Any]:
    """``keyctl=1,nesting=1,mount=nfs`` -> flags + overflow string."""
    out: dict[str, Any] = {}
    extra: list[str] = []
    for tok in _split_options(value):
        key, sep, val = tok.partition("=")
        if sep and key in _FEATURE_FLAGS and val in ("0", "1"):
            out[_FEATURE_FLAGS[key]] = val == "1"
        else:
            extra.append(tok)
    out["features_extra"] = ",".join(extra) or None
    return out


def _scalar(field: str, conv: Callable[[str], Any]) -> Callable[[str], dict[str, Any]]:
    return lambda value: {field: conv(value)}


_RECOGNIZED: dict[str, Callable[[str], dict[str, Any]]] = {
    "arch": _scalar("arch", _to_str),
    "cores": _scalar("cores", _to_int),
    "memory": _scalar("memory", _to_int),
    "hostname": _scalar("hostname", _to_str),
    "swap": _scalar("swap", _to_int),
    "onboot": _scalar("onboot", _to_flag),
    "ostype": _scalar("ostype", _to_str),
    "unprivileged": _scalar("unprivileged", _to_flag),
    "tags": _scalar("tags", _to_str),
    "rootfs": _parse_rootfs,
    "net0": _parse_net,
    "features": _parse_features,
}


# ---------------------------------------------------------------------------
# parse / reconstruct / hash
# ---------------------------------------------------------------------------

def parse(text: str) -> LXCConfig:
    """Parse raw LXC config text into an LXCConfig.

    Unrecognized lines (comments, ``lxc.*`` keys, extra NICs and mount
    points, values that do not convert) are kept verbatim in ``advanced``.
    A ``[snapshot]`` header and everything after it is also kept verbatim,
    so snapshot values never shadow the live ones.
    """
    fields: dict[str, Any] = {}
    advanced: list[str] = []
    in_snapshots = False

    for raw in text.splitlines():
        line = raw.rstrip("\r")
        if in_snapshots:
            advanced.append(line)
            continue
        if not line.strip():
            continue
        if _SECTION_RE.match(line):
            in_snapshots = True
            advanced.append(line)
            continue
        if line.lstrip().startswith("#"):
            advanced.append(line)
            continue

        m = _KEY_VALUE_RE.match(line)
        handler = _RECOGNIZED.get(m.group(1)) if m else None
        if handler is None:
            advanced.append(line)
            continue
        try:
            fields.update(handler(m.group(2)))
        except ValueError:
            advanced.append(line)

    # Trailing blank lines of the snapshot region carry no content
    while advanced and not advanced[-1].strip():
        advanced.pop()

    fields["advanced"] = "\n".join(advanced)
    return LXCConfig(**fields)


def _rootfs_line(cfg: LXCConfig) -> str | None:
    if not cfg.rootfs_storage:
        return None
    value = cfg.rootfs_storage
    if cfg.rootfs_size:
        value += f",size={cfg.rootfs_size}"
    return value


def _net_line(cfg: LXCConfig) -> str | None:
    parts: list[str] = []
    if cfg.net_name:
        parts.append(f"name={cfg.net_name}")
    if cfg.net_bridge:
        parts.append(f"bridge={cfg.net_bridge}")
    if cfg.net_gateway:
        parts.append(f"gw={cfg.net_gateway}")
    if cfg.net_hwaddr:
        parts.append(f"hwaddr={cfg.net_hwaddr}")
    if cfg.net_ip_type in ("dhcp", "manual"):
        parts.append(f"ip={cfg.net_ip_type}")
    elif cfg.net_ip:
        parts.append(f"ip={cfg.net_ip}")
    if cfg.net_vlan is not None:
        parts.append(f"tag={cfg.net_vlan}")
    if cfg.net_type:
        parts.append(f"type={cfg.net_type}")
    if cfg.net_options:
        parts.append(cfg.net_options)
    return ",".join(parts) or None


def _features_line(cfg: LXCConfig) -> str | None:
    parts: list[str] = []
    for key, attr in _FEATURE_FLAGS.items():
        flag = getattr(cfg, attr)
        if flag is not None:
            parts.append(f"{key}={_flag_text(flag)}")
    if cfg.features_extra:
        parts.append(cfg.features_extra)
    return ",".join(parts) or None


def reconstruct(cfg: LXCConfig) -> str:
    """Render an LXCConfig back to config text.

    Recognized keys come out in a fixed alphabetical order (the order
    ``pct`` itself writes), followed by the advanced block. Input order is
    not preserved, so compare configs by hash or field by field.
    """
    emitted: list[tuple[str, str | None]] = [
        ("arch", cfg.arch),
        ("cores", None if cfg.cores is None else str(cfg.cores)),
        ("features", _features_line(cfg)),
        ("hostname", cfg.hostname),
        ("memory", None if cfg.memory is None else str(cfg.memory)),
        ("net0", _net_line(cfg)),
        ("onboot", None if cfg.onboot is None else _flag_text(cfg.onboot)),
        ("ostype", cfg.ostype),
        ("rootfs", _rootfs_line(cfg)),
        ("swap", None if cfg.swap is None else str(cfg.swap)),
        ("tags", cfg.tags),
        (
            "unprivileged",
            None if cfg.unprivileged is None else _flag_text(cfg.unprivileged),
        ),
    ]
    lines = [f"{key}: {value}" for key, value in emitted if value is not None]

    for line in cfg.advanced.splitlines():
        # pct separates snapshot sections with a blank line
        if _SECTION_RE.match(line) and lines and lines[-1].strip():
            lines.append("")
        lines.append(line)

    return "\n".join(lines) + "\n"


def config_hash(text: str) -> str:
    """Content digest used for drift detection only."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Disk sizes
# ---------------------------------------------------------------------------

def size_to_bytes(size: str) -> int:
    """Convert a Proxmox size string (``8G``, ``512M``, ``4``) to bytes.

    A bare number is GiB, matching ``pct``.
    """
    m = _SIZE_RE.match(size)
    if not m:
        raise ValueError(f"Unrecognised disk size: {size!r}")
    unit = (m.group(2) or "G").upper()
    return int(float(m.group(1)) * _UNIT_BYTES[unit])


def rootfs_volume_storage(rootfs_storage: str | None) -> str | None:
    """``local-lvm:vm-100-disk-0`` -> ``local-lvm``."""
    if not rootfs_storage or ":" not in rootfs_storage:
        return None
    return rootfs_storage.split(":", 1)[0].strip() or None
