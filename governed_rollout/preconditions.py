"""Go/no-go gate evaluated before any scale ramp may start."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

from .gates import ContinuityReporter, PolicyGate, read_continuity
from .models import ContinuityStatus

LOGGER = logging.getLogger(__name__)

_HEALTHY_CONTINUITY = frozenset({ContinuityStatus.OK, ContinuityStatus.DEGRADED_MITIGATED})


class UpgradeLedger(Protocol):
    """Slice of the upgrade controller the precondition gate reads."""

    @property
    def has_active_upgrade(self) -> bool: ...

    @property
    def roi_record_count(self) -> int: ...


@dataclass(frozen=True, slots=True)
class PreconditionReport:
    sustained_improvement: bool
    no_violations: bool
    continuity_ok: bool
    roi_validated: bool
    details: Dict[str, str] = field(default_factory=dict)

    @property
    def all_passed(self) -> bool:
        return self.sustained_improvement and self.no_violations and self.continuity_ok and self.roi_validated

    def failures(self) -> list[str]:
        checks = {
            "sustained_improvement": self.sustained_improvement,
            "no_violations": self.no_violations,
            "continuity_ok": self.continuity_ok,
            "roi_validated": self.roi_validated,
        }
        return [self.details.get(name, name) for name, passed in checks.items() if not passed]

    def to_json(self) -> Dict[str, object]:
        return {
            "sustainedImprovement": self.sustained_improvement,
            "noViolations": self.no_violations,
            "continuityOK": self.continuity_ok,
            "roiValidated": self.roi_validated,
            "allPassed": self.all_passed,
            "details": dict(self.details),
        }


class ImprovementTracker:
    """Hysteresis counter of consecutive improving cycles.

    Any non-improving cycle resets the streak to zero; this is not a
    sliding window.
    """

    def __init__(self, required_cycles: int, sustained_cycles: int = 0) -> None:
        if required_cycles < 0:
            raise ValueError("required_cycles cannot be negative")
        self.required_cycles = required_cycles
        self.sustained_cycles = max(0, sustained_cycles)

    def record(self, improved: bool) -> int:
        if improved:
            self.sustained_cycles += 1
        else:
            self.sustained_cycles = 0
        return self.sustained_cycles

    @property
    def satisfied(self) -> bool:
        return self.sustained_cycles >= self.required_cycles


class PreconditionEvaluator:
    """Combines improvement streak, policy, continuity and upgrade state."""

    def __init__(
        self,
        tracker: ImprovementTracker,
        policy_gate: PolicyGate,
        continuity: ContinuityReporter,
        upgrades: Optional[UpgradeLedger] = None,
    ) -> None:
        self._tracker = tracker
        self._policy = policy_gate
        self._continuity = continuity
        self._upgrades = upgrades

    async def evaluate(self) -> PreconditionReport:
        violations = int(await self._policy.recent_violations())
        continuity = await read_continuity(self._continuity)

        details: Dict[str, str] = {}
        sustained = self._tracker.satisfied
        if not sustained:
            details["sustained_improvement"] = (
                f"Sustained improvement {self._tracker.sustained_cycles}/{self._tracker.required_cycles} cycles"
            )
        no_violations = violations == 0
        if not no_violations:
            details["no_violations"] = f"{violations} recent policy violation(s)"
        continuity_ok = continuity in _HEALTHY_CONTINUITY
        if not continuity_ok:
            details["continuity_ok"] = f"Continuity status {continuity.value}"
        roi_validated = True
        if self._upgrades is not None:
            # Only an active upgrade that has never been measured blocks scaling.
            roi_validated = self._upgrades.roi_record_count > 0 or not self._upgrades.has_active_upgrade
            if not roi_validated:
                details["roi_validated"] = "Active upgrade has no ROI evaluation yet"

        report = PreconditionReport(
            sustained_improvement=sustained,
            no_violations=no_violations,
            continuity_ok=continuity_ok,
            roi_validated=roi_validated,
            details=details,
        )
        LOGGER.debug("Scale preconditions evaluated: %s", report.to_json())
        return report


__all__ = ["ImprovementTracker", "PreconditionEvaluator", "PreconditionReport", "UpgradeLedger"]
