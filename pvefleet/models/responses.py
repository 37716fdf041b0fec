"""Common API response models."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel

from pvefleet.errors import FieldError


class HealthResponse(BaseModel):
    status: str
    version: str


class OkResponse(BaseModel):
    ok: bool = True


class ErrorResponse(BaseModel):
    detail: str
    # Tail of the host output when a command exited non-zero
    output: Optional[str] = None


class ValidationErrorResponse(BaseModel):
    detail: str
    errors: list[FieldError]


def error_responses(*codes: int) -> dict[int | str, dict[str, Any]]:
    """OpenAPI ``responses=`` entries for the error bodies ``main`` emits."""
    return {
        code: {"model": ValidationErrorResponse if code == 422 else ErrorResponse}
        for code in codes
    }
