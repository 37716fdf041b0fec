"""Progress tracking models for long-running operations."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class OperationSnapshot(BaseModel):
    """What a polling client sees for one operation key."""

    key: str
    lines: list[str]
    is_complete: bool
    dropped_lines: int = 0
    # Bumped by every start of the same key
    generation: int = 0


class OperationOutcome(str, Enum):
    running = "running"
    success = "success"
    failure = "failure"


class OperationStatus(OperationSnapshot):
    """Snapshot plus the outcome read from its final lines."""

    outcome: OperationOutcome


class AppendLineRequest(BaseModel):
    line: str


class RestoreRequest(BaseModel):
    backup_id: int
    container_id: str = Field(pattern=r"^\d+$")
    server_id: int


class RestoreStarted(BaseModel):
    operation_key: str
