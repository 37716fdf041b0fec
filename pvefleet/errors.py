"""Error taxonomy shared by services and routers."""

from __future__ import annotations

from pydantic import BaseModel


class PveFleetError(Exception):
    """Base class for every error raised by this package."""


class ConnectionError(PveFleetError):
    """Could not open a session to the target host.

    Raised before any command output is delivered: auth rejected, host
    unreachable or connect timeout.
    """

    def __init__(self, host: str, original_error: Exception | str):
        self.host = host
        self.original_error = original_error
        super().__init__(f"Cannot connect to {host}: {original_error}")


class CommandFailureError(PveFleetError):
    """A remote command exited non-zero."""

    def __init__(
        self,
        command: str,
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
    ):
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        detail = (stderr or stdout).strip()
        super().__init__(
            f"Command failed with exit code {exit_code}: {detail[-500:]}"
            if detail
            else f"Command failed with exit code {exit_code}",
        )

    @property
    def output_tail(self) -> str:
        text = (self.stderr or self.stdout).strip()
        return "\n".join(text.splitlines()[-20:])


class FieldError(BaseModel):
    field: str
    message: str


class ValidationError(PveFleetError):
    """A submitted config was rejected before any remote write."""

    def __init__(self, errors: list[FieldError]):
        self.errors = errors
        super().__init__("; ".join(f"{e.field}: {e.message}" for e in errors))


RATE_LIMIT_HINT = (
    "GitHub API rate limit exceeded. "
    "Please set a GITHUB_TOKEN for higher rate limits."
)


class RateLimitError(PveFleetError):
    """The upstream catalog source throttled us."""

    hint = RATE_LIMIT_HINT


class NotFoundError(PveFleetError):
    """A referenced server, container, backup or operation does not exist."""


class KeyExistsError(PveFleetError):
    """A key file for this owner id already exists and will not be overwritten."""


class OperationInProgressError(PveFleetError):
    """An operation with the same key is still running."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Operation {key} is already running")
