"""Interfaces for the external collaborators consulted by the controllers.

Every collaborator call is a coroutine. The controllers never catch the
exceptions these calls raise; they propagate to the caller untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Protocol, runtime_checkable

from .models import ContinuityStatus

UPGRADE_ACTION = "upgrade"
INFRASTRUCTURE_ACTION = "infrastructure_change"


@dataclass(frozen=True, slots=True)
class PolicyVerdict:
    approved: bool
    reason: str = ""

    @classmethod
    def from_payload(cls, payload: "PolicyVerdict | Mapping[str, Any]") -> "PolicyVerdict":
        if isinstance(payload, PolicyVerdict):
            return payload
        reason = payload.get("reason") or payload.get("recommendation") or ""
        return cls(approved=bool(payload.get("approved", False)), reason=str(reason))


@dataclass(frozen=True, slots=True)
class OperationsVerdict:
    allowed: bool
    reason: str = ""

    @classmethod
    def from_payload(cls, payload: "OperationsVerdict | Mapping[str, Any]") -> "OperationsVerdict":
        if isinstance(payload, OperationsVerdict):
            return payload
        reason = payload.get("reason") or payload.get("status") or ""
        return cls(allowed=bool(payload.get("allowed", False)), reason=str(reason))


@runtime_checkable
class MetricsProvider(Protocol):
    async def snapshot(self) -> Mapping[str, float]:
        """Return the current score (0..100) of every metric domain."""


@runtime_checkable
class PolicyGate(Protocol):
    async def check(self, action_kind: str, description: str) -> PolicyVerdict | Mapping[str, Any]:
        """Approve or veto an action by its description."""

    async def recent_violations(self) -> int:
        """Number of policy violations in the gate's recent window."""


@runtime_checkable
class OperationsGate(Protocol):
    async def check(self, action_kind: str, description: str) -> OperationsVerdict | Mapping[str, Any]:
        """Allow an action or hold it for human approval."""


@runtime_checkable
class ContinuityReporter(Protocol):
    async def status(self) -> ContinuityStatus | str:
        """Report the current continuity health."""


async def read_snapshot(provider: MetricsProvider) -> Dict[str, float]:
    """Query ``provider`` and normalise scores into the 0..100 range."""

    raw = await provider.snapshot()
    return {str(domain): min(100.0, max(0.0, float(score))) for domain, score in raw.items()}


async def read_continuity(reporter: ContinuityReporter) -> ContinuityStatus:
    return ContinuityStatus(await reporter.status())


__all__ = [
    "ContinuityReporter",
    "INFRASTRUCTURE_ACTION",
    "MetricsProvider",
    "OperationsGate",
    "OperationsVerdict",
    "PolicyGate",
    "PolicyVerdict",
    "UPGRADE_ACTION",
    "read_continuity",
    "read_snapshot",
]
