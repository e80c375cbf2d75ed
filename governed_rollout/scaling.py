"""Governed scale controller: staged ramps with checkpointed rollback.

A ramp moves one dimension from its current value toward a target in fixed
increments. After every increment the full metric snapshot is compared with
the pre-ramp baseline; any domain falling more than the tolerance below its
baseline rolls the dimension straight back to where the ramp started.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from .alerts import AlertDispatcher
from .config import RolloutConfig, load_config
from .gates import (
    INFRASTRUCTURE_ACTION,
    ContinuityReporter,
    MetricsProvider,
    OperationsGate,
    OperationsVerdict,
    PolicyGate,
    read_snapshot,
)
from .history import BoundedHistory
from .models import (
    Checkpoint,
    DimensionLimit,
    ScaleControllerState,
    ScaleDimension,
    ScaleRamp,
    ScaleReport,
    ScaleStatus,
    utcnow,
)
from .preconditions import ImprovementTracker, PreconditionEvaluator, PreconditionReport, UpgradeLedger
from .reports import build_scale_report
from .results import Outcome, StepResult
from .state import IDLE, ControllerState, active_record, slot_for

LOGGER = logging.getLogger(__name__)

REGRESSION_REASON = "Metric regression detected"


@dataclass(frozen=True, slots=True)
class StepPlan:
    start_value: int
    target_value: int
    step_size: int
    steps: int


def plan_steps(current: int, hard_cap: int, target_value: int, step_size: int | None, divisions: int) -> Outcome[StepPlan]:
    """Work out the clamped target, increment and step count of a ramp.

    Targets above ``hard_cap`` are clamped silently. A ramp that would take
    zero steps, or move downwards, is refused.
    """

    target = min(int(target_value), hard_cap)
    span = target - current
    if span == 0:
        return Outcome.failure(f"Target {target} equals current value; ramp would take zero steps")
    if span < 0:
        return Outcome.failure(f"Target {target} is below current value {current}; ramps only scale up")
    if step_size is not None and step_size < 1:
        return Outcome.failure("Step size must be at least 1")
    increment = int(step_size) if step_size is not None else math.ceil(span / divisions)
    steps = max(1, math.ceil(span / increment))
    return Outcome.success("Step plan ready", StepPlan(current, target, increment, steps))


class ScaleController:
    """Owns the single active ramp, the dimension limits and scale reports."""

    def __init__(
        self,
        metrics: MetricsProvider,
        policy_gate: PolicyGate,
        ops_gate: OperationsGate,
        continuity: ContinuityReporter,
        upgrades: UpgradeLedger | None = None,
        config: RolloutConfig | None = None,
        *,
        alerts: AlertDispatcher | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._metrics = metrics
        self._ops = ops_gate
        self._config = config or load_config()
        self._alerts = alerts or AlertDispatcher(self._config.alert_channels, self._config.alert_log_path)
        self._logger = logger or LOGGER
        self._tracker = ImprovementTracker(self._config.required_improvement_cycles)
        self._preconditions = PreconditionEvaluator(self._tracker, policy_gate, continuity, upgrades)
        self._limits: Dict[ScaleDimension, DimensionLimit] = {
            ScaleDimension(name): DimensionLimit(current=limit.current, hard_cap=limit.hard_cap)
            for name, limit in self._config.dimension_limits.items()
        }
        self._slot: ControllerState[ScaleRamp] = IDLE
        self._completed: BoundedHistory[ScaleRamp] = BoundedHistory(self._config.max_completed_ramps)
        self._reports: BoundedHistory[ScaleReport] = BoundedHistory(self._config.max_scale_reports)
        self._enabled = True
        self._last_attempt_at: Optional[datetime] = None
        self._logger.info("Scale controller initialised (required_cycles=%d)", self._tracker.required_cycles)

    # ------------------------------------------------------------------
    # Preconditions
    def record_improvement_cycle(self, improved: bool) -> int:
        cycles = self._tracker.record(improved)
        self._logger.debug("Improvement cycle recorded improved=%s sustained=%d", improved, cycles)
        return cycles

    async def check_preconditions(self) -> PreconditionReport:
        return await self._preconditions.evaluate()

    # ------------------------------------------------------------------
    # Lifecycle
    async def start_scale_ramp(
        self,
        dimension: ScaleDimension | str,
        target_value: int,
        step_size: int | None = None,
    ) -> Outcome[ScaleRamp]:
        """Open a ramp once preconditions and the operations gate clear it."""

        if not self._enabled:
            return Outcome.failure("Governed scaling is disabled")
        current_ramp = active_record(self._slot)
        if current_ramp is not None:
            self._logger.warning("Cannot start ramp - %s ramp already active", current_ramp.dimension.value)
            return Outcome.failure(f"Ramp {current_ramp.id} already active")
        try:
            resolved = ScaleDimension(dimension)
        except ValueError:
            return Outcome.failure(f"Unknown scale dimension: {dimension}")
        limit = self._limits.get(resolved)
        if limit is None:
            return Outcome.failure(f"No limits configured for {resolved.value}")
        planned = plan_steps(
            limit.current, limit.hard_cap, target_value, step_size, self._config.default_step_divisions
        )
        if not planned or planned.value is None:
            self._logger.warning("Ramp for %s refused: %s", resolved.value, planned.reason)
            return Outcome.failure(planned.reason)
        step_plan = planned.value

        preconditions = await self._preconditions.evaluate()
        if not preconditions.all_passed:
            reason = "Preconditions not met: " + "; ".join(preconditions.failures())
            self._logger.warning("%s", reason)
            return Outcome.failure(reason)

        ops = OperationsVerdict.from_payload(
            await self._ops.check(INFRASTRUCTURE_ACTION, f"Scale {resolved.value} to {step_plan.target_value}")
        )
        if not ops.allowed:
            reason = "Operations gate refused scale change"
            if ops.reason:
                reason = f"{reason} ({ops.reason})"
            self._logger.warning("%s", reason)
            return Outcome.failure(reason)

        snapshot = await read_snapshot(self._metrics)

        ramp = ScaleRamp(
            dimension=resolved,
            start_value=step_plan.start_value,
            current_value=step_plan.start_value,
            target_value=step_plan.target_value,
            step_size=step_plan.step_size,
            steps=step_plan.steps,
            tolerance=self._config.tolerance_for(resolved.value),
            pre_scale_snapshot=snapshot,
        )
        self._slot = slot_for(ramp)
        self._last_attempt_at = ramp.started_at
        self._logger.info(
            "Ramp started: %s %d -> %d in %d step(s) of %d",
            resolved.value,
            ramp.start_value,
            ramp.target_value,
            ramp.steps,
            ramp.step_size,
        )
        return Outcome.success("Ramp started", ramp.model_copy(deep=True))

    async def step_ramp(self) -> StepResult:
        """Advance the active ramp by one increment and validate a checkpoint."""

        ramp = active_record(self._slot)
        if ramp is None or ramp.status is not ScaleStatus.RAMPING:
            return StepResult(continued=False, reason="No ramp in progress")

        previous = self._limits[ramp.dimension]
        new_value = min(ramp.current_value + ramp.step_size, ramp.target_value)
        self._limits[ramp.dimension] = previous.model_copy(update={"current": new_value})
        try:
            metrics = await read_snapshot(self._metrics)
        except BaseException:
            self._limits[ramp.dimension] = previous
            raise

        ramp.current_value = new_value
        ramp.current_step += 1
        regressions = [
            domain
            for domain, baseline in ramp.pre_scale_snapshot.items()
            if domain not in metrics or metrics[domain] < baseline - ramp.tolerance
        ]
        checkpoint = Checkpoint(
            step=ramp.current_step,
            value=new_value,
            metrics=metrics,
            passed=not regressions,
            regressions=regressions,
        )
        ramp.checkpoints.append(checkpoint)

        if regressions:
            self._logger.warning(
                "Checkpoint failed at step %d of %d: %s", ramp.current_step, ramp.steps, ", ".join(regressions)
            )
            await self._rollback(ramp, REGRESSION_REASON, metrics)
            return StepResult(
                continued=False,
                reason=REGRESSION_REASON,
                checkpoint=checkpoint.model_copy(deep=True),
                status=ScaleStatus.FAILED,
            )

        self._logger.debug("Checkpoint %d passed at %s=%d", ramp.current_step, ramp.dimension.value, new_value)
        if ramp.current_value >= ramp.target_value:
            ramp.status = ScaleStatus.STABLE
            ramp.result = "success"
            ramp.completed_at = utcnow()
            report = build_scale_report(ramp, metrics, lesson_threshold=self._config.lesson_delta_threshold)
            self._archive(ramp, report)
            self._logger.info("Scale complete: %s at %d", ramp.dimension.value, ramp.current_value)
            await self._alerts.send(
                source="scaling",
                severity="info",
                message=f"{ramp.dimension.value} scaled to {ramp.current_value}",
                ramp_id=ramp.id,
            )
            return StepResult(
                continued=False,
                reason="Ramp reached target and is stable",
                checkpoint=checkpoint.model_copy(deep=True),
                status=ScaleStatus.STABLE,
            )

        return StepResult(
            continued=True,
            reason=f"Step {ramp.current_step} of {ramp.steps} passed",
            checkpoint=checkpoint.model_copy(deep=True),
            status=ScaleStatus.RAMPING,
        )

    async def rollback(self, reason: str) -> Outcome[ScaleReport]:
        """Abort the active ramp and restore its dimension to the start value."""

        ramp = active_record(self._slot)
        if ramp is None:
            return Outcome.failure("No active ramp to roll back")
        post_metrics = await read_snapshot(self._metrics)
        report = await self._rollback(ramp, reason, post_metrics)
        return Outcome.success("Ramp rolled back", report.model_copy(deep=True))

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = bool(enabled)
        self._logger.info("Governed scaling %s", "enabled" if self._enabled else "disabled")

    # ------------------------------------------------------------------
    # Read-only accessors
    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def has_active_ramp(self) -> bool:
        return active_record(self._slot) is not None

    @property
    def sustained_improvement_cycles(self) -> int:
        return self._tracker.sustained_cycles

    @property
    def required_improvement_cycles(self) -> int:
        return self._tracker.required_cycles

    def active_ramp(self) -> Optional[ScaleRamp]:
        ramp = active_record(self._slot)
        return ramp.model_copy(deep=True) if ramp is not None else None

    def dimension_limit(self, dimension: ScaleDimension | str) -> DimensionLimit:
        return self._limits[ScaleDimension(dimension)]

    def dimension_status(self) -> Dict[str, Dict[str, int]]:
        return {
            dimension.value: {
                "current": limit.current,
                "hardCap": limit.hard_cap,
                "percentUsed": limit.percent_used,
            }
            for dimension, limit in self._limits.items()
        }

    def completed_ramps(self) -> List[ScaleRamp]:
        return [ramp.model_copy(deep=True) for ramp in self._completed]

    def recent_reports(self, limit: int = 10) -> List[ScaleReport]:
        return [report.model_copy(deep=True) for report in self._reports.recent(limit)]

    def latest_report(self) -> Optional[ScaleReport]:
        report = self._reports.latest()
        return report.model_copy(deep=True) if report is not None else None

    async def status(self) -> Dict[str, Any]:
        """Operator summary, including a fresh precondition evaluation."""

        ramp = self.active_ramp()
        preconditions = await self._preconditions.evaluate()
        return {
            "enabled": self._enabled,
            "hasActiveRamp": ramp is not None,
            "activeRamp": ramp.model_dump(mode="json") if ramp is not None else None,
            "preconditions": preconditions.to_json(),
            "dimensionStatus": self.dimension_status(),
            "sustainedImprovementCycles": self._tracker.sustained_cycles,
            "requiredSustainedCycles": self._tracker.required_cycles,
            "completedRampsCount": len(self._completed),
            "reportsCount": len(self._reports),
            "lastScaleAttempt": self._last_attempt_at.isoformat() if self._last_attempt_at else None,
        }

    # ------------------------------------------------------------------
    # Export / restore
    def export_state(self) -> ScaleControllerState:
        return ScaleControllerState(
            enabled=self._enabled,
            active_ramp=active_record(self._slot),
            completed_ramps=self._completed.snapshot(),
            scale_reports=self._reports.snapshot(),
            dimension_limits=dict(self._limits),
            sustained_improvement_cycles=self._tracker.sustained_cycles,
            last_scale_attempt_at=self._last_attempt_at,
        ).model_copy(deep=True)

    def restore(self, state: ScaleControllerState | Mapping[str, Any]) -> None:
        """Replace every owned record with the contents of an exported state."""

        if not isinstance(state, ScaleControllerState):
            state = ScaleControllerState.model_validate(state)
        state = state.model_copy(deep=True)
        active = state.active_ramp
        if active is not None and active.status is not ScaleStatus.RAMPING:
            raise ValueError("Exported active ramp is not ramping")
        limits = dict(self._limits)
        limits.update(state.dimension_limits)
        self._limits = limits
        self._slot = slot_for(active)
        self._completed = BoundedHistory(self._config.max_completed_ramps, state.completed_ramps)
        self._reports = BoundedHistory(self._config.max_scale_reports, state.scale_reports)
        self._enabled = state.enabled
        self._tracker.sustained_cycles = state.sustained_improvement_cycles
        self._last_attempt_at = state.last_scale_attempt_at
        self._logger.info(
            "Scale controller restored (active=%s, reports=%d)", active.id if active else None, len(self._reports)
        )

    # ------------------------------------------------------------------
    # Internal helpers
    async def _rollback(self, ramp: ScaleRamp, reason: str, post_metrics: Mapping[str, float]) -> ScaleReport:
        ramp.status = ScaleStatus.ROLLING_BACK
        limit = self._limits[ramp.dimension]
        self._limits[ramp.dimension] = limit.model_copy(update={"current": ramp.start_value})
        ramp.current_value = ramp.start_value
        ramp.status = ScaleStatus.FAILED
        ramp.result = "rollback"
        ramp.reason = reason
        ramp.completed_at = utcnow()
        report = build_scale_report(ramp, post_metrics, lesson_threshold=self._config.lesson_delta_threshold)
        self._archive(ramp, report)
        self._logger.warning("Rolled back %s to %d: %s", ramp.dimension.value, ramp.start_value, reason)
        await self._alerts.send(
            source="scaling",
            severity="critical",
            message=f"{ramp.dimension.value} ramp rolled back: {reason}",
            ramp_id=ramp.id,
            restored_value=ramp.start_value,
        )
        return report

    def _archive(self, ramp: ScaleRamp, report: ScaleReport) -> None:
        self._reports.append(report)
        self._completed.append(ramp)
        self._slot = IDLE


__all__ = ["REGRESSION_REASON", "ScaleController", "StepPlan", "plan_steps"]
