"""Structured success/failure values returned by controller operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from .models import Checkpoint, ScaleStatus

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a controller call.

    Invariant violations and wrong-state calls come back as ``ok=False``
    with a human readable ``reason``; they never raise.
    """

    ok: bool
    reason: str
    value: Optional[T] = None

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, reason: str, value: Optional[T] = None) -> "Outcome[T]":
        return cls(True, reason, value)

    @classmethod
    def failure(cls, reason: str, value: Optional[T] = None) -> "Outcome[T]":
        return cls(False, reason, value)


@dataclass(frozen=True, slots=True)
class StepResult:
    """Outcome of advancing the active ramp by one step."""

    continued: bool
    reason: str
    checkpoint: Optional[Checkpoint] = None
    status: Optional[ScaleStatus] = None

    def __bool__(self) -> bool:
        return self.continued


__all__ = ["Outcome", "StepResult"]
