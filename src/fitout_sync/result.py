"""
Success/failure values returned by record store writes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Store accepted the operation."""

    value: T = None  # type: ignore[assignment]

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Store rejected the operation with a human-readable reason."""

    error: str = ""

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


def from_envelope(payload: Any) -> Result[Any]:
    """Convert a remote `{success, data, error}` payload into a Result.

    Payloads without a `success` flag are treated as the confirmed value.
    """
    if isinstance(payload, dict) and "success" in payload:
        if payload.get("success"):
            return Ok(payload.get("data"))
        return Err(str(payload.get("error") or ""))
    return Ok(payload)
