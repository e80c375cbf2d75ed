"""Active-slot state shared by the rollout controllers.

A controller is either :class:`Idle` or holds exactly one :class:`Active`
record, so "at most one active plan/ramp" is a property of the type rather
than of a nullable attribute.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Idle:
    """No record occupies the active slot."""


@dataclass(frozen=True)
class Active(Generic[T]):
    """The active slot holds ``record``."""

    record: T


ControllerState = Union[Idle, Active[T]]

IDLE = Idle()


def active_record(state: "ControllerState[T]") -> Optional[T]:
    if isinstance(state, Active):
        return state.record
    return None


def slot_for(record: Optional[T]) -> "ControllerState[T]":
    return IDLE if record is None else Active(record)


__all__ = ["Active", "ControllerState", "IDLE", "Idle", "active_record", "slot_for"]
