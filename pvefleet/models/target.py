"""Remote host descriptors and command execution records."""

from __future__ import annotations

from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AuthMethod(str, Enum):
    password = "password"
    ssh_key = "ssh_key"


class RemoteTarget(BaseModel):
    """Connection details for one managed host.

    Exactly one credential must be present and it must match
    ``auth_method``. ``local`` targets run commands on this machine.
    """

    model_config = ConfigDict(frozen=True)

    host: str
    port: int = Field(default=22, ge=1, le=65535)
    username: str = "root"
    auth_method: AuthMethod = AuthMethod.password
    password: Optional[str] = Field(default=None, repr=False)
    ssh_key: Optional[str] = Field(default=None, repr=False)
    ssh_key_passphrase: Optional[str] = Field(default=None, repr=False)
    local: bool = False

    @model_validator(mode="after")
    def _one_credential(self) -> "RemoteTarget":
        if self.local:
            return self
        if self.auth_method == AuthMethod.password:
            if not self.password:
                raise ValueError("password auth requires a password")
            if self.ssh_key:
                raise ValueError("password auth must not carry an SSH key")
        else:
            if not self.ssh_key:
                raise ValueError("ssh_key auth requires a private key")
            if self.password:
                raise ValueError("ssh_key auth must not carry a password")
        return self


class OutputEvent(BaseModel):
    """One stdout/stderr fragment from a running command."""

    type: Literal["stdout", "stderr"]
    data: str


class ExitEvent(BaseModel):
    """Terminal event of a command stream; always last, always once."""

    type: Literal["exit"] = "exit"
    exit_code: int


StreamEvent = Union[OutputEvent, ExitEvent]


class CommandResult(BaseModel):
    """Collected result of one command execution."""

    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    elapsed_time: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ConnectionTestResult(BaseModel):
    ok: bool
    message: str


class KeyPair(BaseModel):
    owner_id: int
    private_key: str = Field(repr=False)
    public_key: str
    key_path: str


class ExecuteRequest(BaseModel):
    server_id: int
    command: str = Field(min_length=1)


class TestConnectionRequest(BaseModel):
    """Either a stored server id or an inline target."""

    server_id: Optional[int] = None
    target: Optional[RemoteTarget] = None

    @model_validator(mode="after")
    def _one_of(self) -> "TestConnectionRequest":
        if (self.server_id is None) == (self.target is None):
            raise ValueError("provide exactly one of server_id or target")
        return self
