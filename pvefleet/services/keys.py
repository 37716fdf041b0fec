"""SSH key-pair generation for managed servers."""

from __future__ import annotations

import os
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from pvefleet.config import settings
from pvefleet.errors import KeyExistsError
from pvefleet.models.target import KeyPair
from pvefleet.utils.logging import get_logger

log = get_logger(__name__)


def key_path_for(owner_id: int, key_dir: str | None = None) -> Path:
    return Path(key_dir or settings.ssh_key_dir) / f"server_{owner_id}_key"


def generate_key_pair(owner_id: int, *, key_dir: str | None = None) -> KeyPair:
    """Create an Ed25519 key pair for *owner_id* and persist it.

    The private key is written with mode 0600 and is never overwritten:
    an existing file for the same owner raises ``KeyExistsError``.
    """
    path = key_path_for(owner_id, key_dir)
    path.parent.mkdir(parents=True, exist_ok=True)

    private = ed25519.Ed25519PrivateKey.generate()
    private_text = private.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.OpenSSH,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    public_text = private.public_key().public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    ).decode("ascii") + f" pvefleet-server-{owner_id}"

    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    except FileExistsError as exc:
        raise KeyExistsError(f"Key file already exists: {path}") from exc
    with os.fdopen(fd, "w") as fh:
        fh.write(private_text)
    Path(f"{path}.pub").write_text(public_text + "\n")

    log.info("keys.generated", owner_id=owner_id, path=str(path))
    return KeyPair(
        owner_id=owner_id,
        private_key=private_text,
        public_key=public_text,
        key_path=str(path),
    )
