"""Selective upgrade controller: one improvement axis at a time.

An upgrade starts as a hypothesis with declared success metrics, is cleared
by the policy and operations gates, rehearsed in a dry run, activated behind
its feature flag and finally kept or rolled back on measured ROI.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from .alerts import AlertDispatcher
from .config import RolloutConfig, load_config
from .gates import (
    INFRASTRUCTURE_ACTION,
    UPGRADE_ACTION,
    MetricsProvider,
    OperationsGate,
    OperationsVerdict,
    PolicyGate,
    PolicyVerdict,
    read_snapshot,
)
from .history import BoundedHistory
from .models import (
    AXIS_PRIORITY,
    FeatureFlag,
    ROIRecord,
    SuccessMetric,
    SuccessMetricIn,
    UpgradeAxis,
    UpgradeControllerState,
    UpgradePlan,
    UpgradeStatus,
    utcnow,
)
from .results import Outcome
from .state import IDLE, ControllerState, active_record, slot_for

LOGGER = logging.getLogger(__name__)

_BASE_ROLLBACK_STEPS = (
    "Disable feature flag immediately",
    "Revert configuration changes",
    "Restore previous baseline metrics",
)

_AXIS_ROLLBACK_STEPS: Dict[UpgradeAxis, tuple[str, ...]] = {
    UpgradeAxis.COMPUTE: (
        "Restore original batch sizes",
        "Clear new caches",
        "Revert async optimizations",
    ),
    UpgradeAxis.PROVIDER: (
        "Switch back to original provider",
        "Remove new provider configuration",
        "Verify continuity with original provider",
    ),
    UpgradeAxis.DATA: (
        "Disable new data source ingestion",
        "Remove unvalidated data entries",
        "Restore original data filters",
    ),
}

# Statuses from which rollback() may still be called.
_ROLLBACK_ELIGIBLE = frozenset({
    UpgradeStatus.PROPOSED,
    UpgradeStatus.APPROVED,
    UpgradeStatus.DRY_RUN,
    UpgradeStatus.LIVE,
})


def rollback_checklist(axis: UpgradeAxis, scope: Sequence[str] = ()) -> List[str]:
    """Return the canned rollback steps for ``axis``.

    Scope entries are appended as explicit verification steps so operators
    can tick off every touched component.
    """

    steps = [*_BASE_ROLLBACK_STEPS, *_AXIS_ROLLBACK_STEPS[axis]]
    steps.extend(f"Verify {item} matches pre-upgrade behaviour" for item in scope)
    return steps


def _coerce_metric(entry: SuccessMetricIn | Mapping[str, Any]) -> SuccessMetricIn:
    if isinstance(entry, SuccessMetricIn):
        return entry
    payload = dict(entry)
    if "targetDelta" in payload and "target_delta" not in payload:
        payload["target_delta"] = payload.pop("targetDelta")
    return SuccessMetricIn.model_validate(payload)


class UpgradeController:
    """Owns the single active upgrade plan, its feature flag and ROI ledger."""

    def __init__(
        self,
        metrics: MetricsProvider,
        policy_gate: PolicyGate,
        ops_gate: OperationsGate,
        config: RolloutConfig | None = None,
        *,
        alerts: AlertDispatcher | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._metrics = metrics
        self._policy = policy_gate
        self._ops = ops_gate
        self._config = config or load_config()
        self._alerts = alerts or AlertDispatcher(self._config.alert_channels, self._config.alert_log_path)
        self._logger = logger or LOGGER
        self._slot: ControllerState[UpgradePlan] = IDLE
        self._completed: BoundedHistory[UpgradePlan] = BoundedHistory(self._config.max_completed_upgrades)
        self._roi_records: BoundedHistory[ROIRecord] = BoundedHistory(self._config.max_roi_records)
        self._flags: Dict[str, FeatureFlag] = {}
        self._axis_usage: Dict[UpgradeAxis, int] = {axis: 0 for axis in UpgradeAxis}
        self._roi_threshold = self._config.roi_threshold
        self._last_upgrade_at = utcnow()
        self._logger.info("Upgrade controller initialised (roi_threshold=%.2f)", self._roi_threshold)

    # ------------------------------------------------------------------
    # Lifecycle
    def can_start_upgrade(self) -> Outcome[None]:
        plan = active_record(self._slot)
        if plan is not None:
            return Outcome.failure(f"Active upgrade in progress: {plan.name}")
        return Outcome.success("No active upgrade")

    async def propose(
        self,
        axis: UpgradeAxis | str,
        name: str,
        hypothesis: str,
        scope: Sequence[str],
        success_metrics: Iterable[SuccessMetricIn | Mapping[str, Any]],
    ) -> Outcome[UpgradePlan]:
        """Open a new plan in ``proposed`` with baselines from a fresh snapshot."""

        allowed = self.can_start_upgrade()
        if not allowed:
            self._logger.warning("Cannot propose upgrade %s: %s", name, allowed.reason)
            return Outcome.failure(allowed.reason)
        try:
            resolved_axis = UpgradeAxis(axis)
        except ValueError:
            return Outcome.failure(f"Unknown upgrade axis: {axis}")
        try:
            declared = [_coerce_metric(entry) for entry in success_metrics]
        except ValidationError as exc:
            self._logger.warning("Upgrade %s has invalid success metrics: %s", name, exc)
            return Outcome.failure(f"Invalid success metric: {exc}")
        if not declared:
            return Outcome.failure("At least one success metric is required")
        if not str(name).strip():
            return Outcome.failure("Upgrade name is required")

        snapshot = await read_snapshot(self._metrics)

        criteria = []
        for entry in declared:
            baseline = snapshot.get(entry.metric, self._config.missing_metric_baseline)
            criteria.append(
                SuccessMetric(
                    metric=entry.metric,
                    baseline_value=baseline,
                    target_value=baseline + entry.target_delta,
                )
            )
        threshold = self._config.axis_roi_thresholds.get(resolved_axis.value, self._roi_threshold)
        try:
            plan = UpgradePlan(
                axis=resolved_axis,
                name=name,
                hypothesis=hypothesis,
                scope=list(scope),
                success_metrics=criteria,
                rollback_plan=rollback_checklist(resolved_axis, scope),
                feature_flag=f"flag_{resolved_axis.value.lower()}_{uuid.uuid4().hex[:8]}",
                roi_threshold=min(100.0, max(0.0, threshold)),
            )
        except ValidationError as exc:
            self._logger.warning("Upgrade %s could not be planned: %s", name, exc)
            return Outcome.failure(f"Invalid upgrade plan: {exc}")
        self._flags[plan.feature_flag] = FeatureFlag(name=plan.feature_flag, upgrade_id=plan.id)
        self._slot = slot_for(plan)
        self._logger.info("Upgrade proposed: %s on %s axis", plan.name, plan.axis.value)
        return Outcome.success("Upgrade proposed", plan.model_copy(deep=True))

    async def approve(self, plan_id: str) -> Outcome[UpgradePlan]:
        """Run the plan past the policy gate and, for infrastructure axes, operations."""

        plan = active_record(self._slot)
        if plan is None or plan.id != plan_id:
            return Outcome.failure(f"Upgrade {plan_id} is not the active plan")
        if plan.status not in (UpgradeStatus.PROPOSED, UpgradeStatus.APPROVED):
            return Outcome.failure(f"Cannot approve upgrade in status {plan.status.value}")

        verdict = PolicyVerdict.from_payload(
            await self._policy.check(UPGRADE_ACTION, f"Approve {plan.axis.value} upgrade: {plan.name}")
        )
        if not verdict.approved:
            lesson = f"Rejected by governance: {verdict.reason or 'no reason given'}"
            await self._reject(plan, lesson)
            return Outcome.failure(lesson, plan.model_copy(deep=True))

        if plan.axis.value in self._config.infrastructure_axes:
            ops = OperationsVerdict.from_payload(
                await self._ops.check(INFRASTRUCTURE_ACTION, f"Selective upgrade: {plan.name}")
            )
            if not ops.allowed:
                lesson = "Requires manual approval from operations"
                if ops.reason:
                    lesson = f"{lesson} ({ops.reason})"
                await self._reject(plan, lesson)
                return Outcome.failure(lesson, plan.model_copy(deep=True))

        plan.status = UpgradeStatus.APPROVED
        self._logger.info("Upgrade approved: %s", plan.name)
        return Outcome.success("Upgrade approved", plan.model_copy(deep=True))

    async def start_dry_run(self, plan_id: str) -> Outcome[UpgradePlan]:
        plan = self._plan_in(plan_id, UpgradeStatus.APPROVED)
        if isinstance(plan, Outcome):
            return plan
        plan.status = UpgradeStatus.DRY_RUN
        plan.started_at = utcnow()
        self._logger.info("Dry-run started: %s", plan.name)
        return Outcome.success("Dry run started", plan.model_copy(deep=True))

    async def go_live(self, plan_id: str) -> Outcome[UpgradePlan]:
        plan = self._plan_in(plan_id, UpgradeStatus.DRY_RUN)
        if isinstance(plan, Outcome):
            return plan
        self._toggle_flag(plan.feature_flag, True)
        plan.status = UpgradeStatus.LIVE
        self._logger.info("Upgrade live: %s (flag %s enabled)", plan.name, plan.feature_flag)
        return Outcome.success("Upgrade live", plan.model_copy(deep=True))

    async def evaluate_roi(self) -> Outcome[ROIRecord]:
        """Measure the live plan against its baselines and recommend keep or rollback."""

        plan = active_record(self._slot)
        if plan is None or plan.status is not UpgradeStatus.LIVE:
            return Outcome.failure("ROI can only be evaluated for a live upgrade")

        snapshot = await read_snapshot(self._metrics)

        before: Dict[str, float] = {}
        after: Dict[str, float] = {}
        delta: Dict[str, float] = {}
        for criterion in plan.success_metrics:
            before[criterion.metric] = criterion.baseline_value
            after[criterion.metric] = snapshot.get(criterion.metric, criterion.baseline_value)
            delta[criterion.metric] = after[criterion.metric] - criterion.baseline_value
        roi_score = round(sum(delta.values()) / len(delta), 4)
        passed = roi_score >= plan.roi_threshold
        if passed:
            notes = f"ROI {roi_score:g} meets threshold {plan.roi_threshold:g}"
        else:
            notes = f"ROI {roi_score:g} below threshold {plan.roi_threshold:g} - rollback recommended"
        record = ROIRecord(
            upgrade_id=plan.id,
            upgrade_name=plan.name,
            axis=plan.axis,
            before_metrics=before,
            after_metrics=after,
            delta_metrics=delta,
            roi_score=roi_score,
            threshold=plan.roi_threshold,
            passed=passed,
            decision="keep" if passed else "rollback",
            notes=notes,
        )

        for criterion in plan.success_metrics:
            criterion.current_value = after[criterion.metric]
        plan.roi_calculated = roi_score
        self._roi_records.append(record)
        self._logger.info("ROI evaluated for %s: %s (threshold %s)", plan.name, roi_score, plan.roi_threshold)
        return Outcome.success(notes, record.model_copy(deep=True))

    async def complete(self, lessons: Sequence[str] = ()) -> Outcome[UpgradePlan]:
        plan = active_record(self._slot)
        if plan is None or plan.status is not UpgradeStatus.LIVE:
            return Outcome.failure("Only a live upgrade can be completed")
        plan.status = UpgradeStatus.COMPLETED
        plan.completed_at = utcnow()
        plan.lessons.extend(lessons)
        self._axis_usage[plan.axis] += 1
        self._last_upgrade_at = plan.completed_at
        self._archive(plan)
        self._logger.info("Upgrade completed: %s", plan.name)
        return Outcome.success("Upgrade completed", plan.model_copy(deep=True))

    async def rollback(self, reason: str) -> Outcome[UpgradePlan]:
        """Disable the flag and archive the active plan as ``rolled_back``."""

        plan = active_record(self._slot)
        if plan is None:
            return Outcome.failure("No active upgrade to roll back")
        if plan.status not in _ROLLBACK_ELIGIBLE:  # pragma: no cover - terminal plans never stay active
            return Outcome.failure(f"Cannot roll back upgrade in status {plan.status.value}")
        self._toggle_flag(plan.feature_flag, False)
        plan.status = UpgradeStatus.ROLLED_BACK
        plan.completed_at = utcnow()
        plan.lessons.append(f"Rolled back: {reason}")
        self._archive(plan)
        self._logger.warning("Upgrade rolled back: %s - %s", plan.name, reason)
        await self._alerts.send(
            source="upgrades",
            severity="warning",
            message=f"Upgrade {plan.name} rolled back: {reason}",
            upgrade_id=plan.id,
            axis=plan.axis.value,
        )
        return Outcome.success("Upgrade rolled back", plan.model_copy(deep=True))

    # ------------------------------------------------------------------
    # Read-only accessors
    @property
    def has_active_upgrade(self) -> bool:
        return active_record(self._slot) is not None

    @property
    def roi_record_count(self) -> int:
        return len(self._roi_records)

    @property
    def roi_threshold(self) -> float:
        return self._roi_threshold

    def active_upgrade(self) -> Optional[UpgradePlan]:
        plan = active_record(self._slot)
        return plan.model_copy(deep=True) if plan is not None else None

    def history(self) -> List[UpgradePlan]:
        return [plan.model_copy(deep=True) for plan in self._completed]

    def recent_roi_records(self, limit: int = 10) -> List[ROIRecord]:
        return [record.model_copy(deep=True) for record in self._roi_records.recent(limit)]

    def feature_flags(self) -> List[FeatureFlag]:
        return [flag.model_copy() for flag in self._flags.values()]

    def is_feature_flag_enabled(self, name: str) -> bool:
        """Unknown and retired flags report ``False``."""

        flag = self._flags.get(name)
        return flag.enabled if flag is not None else False

    def axis_balance(self) -> Dict[UpgradeAxis, int]:
        return dict(self._axis_usage)

    def suggest_next_axis(self) -> UpgradeAxis:
        """Least used axis, ties resolved COMPUTE, PROVIDER, DATA."""

        lowest = min(self._axis_usage.values())
        for axis in AXIS_PRIORITY:
            if self._axis_usage[axis] == lowest:
                return axis
        raise AssertionError("unreachable")  # pragma: no cover

    def set_roi_threshold(self, threshold: float) -> float:
        """Set the threshold used by future proposals, clamped into [0, 100]."""

        self._roi_threshold = min(100.0, max(0.0, float(threshold)))
        self._logger.info("ROI threshold set to %.2f", self._roi_threshold)
        return self._roi_threshold

    def status(self) -> Dict[str, Any]:
        """Operator summary of the controller."""

        plan = self.active_upgrade()
        return {
            "hasActiveUpgrade": plan is not None,
            "activeUpgrade": plan.model_dump(mode="json") if plan is not None else None,
            "completedCount": len(self._completed),
            "roiLogsCount": len(self._roi_records),
            "axisBalance": {axis.value: count for axis, count in self._axis_usage.items()},
            "suggestedNextAxis": self.suggest_next_axis().value,
            "roiThreshold": self._roi_threshold,
            "featureFlagsCount": len(self._flags),
            "enabledFlags": [name for name, flag in self._flags.items() if flag.enabled],
            "lastUpgrade": self._last_upgrade_at.isoformat(),
        }

    # ------------------------------------------------------------------
    # Export / restore
    def export_state(self) -> UpgradeControllerState:
        return UpgradeControllerState(
            active_upgrade=active_record(self._slot),
            completed_upgrades=self._completed.snapshot(),
            feature_flags=list(self._flags.values()),
            roi_records=self._roi_records.snapshot(),
            axis_usage=dict(self._axis_usage),
            roi_threshold=self._roi_threshold,
            last_upgrade_at=self._last_upgrade_at,
        ).model_copy(deep=True)

    def restore(self, state: UpgradeControllerState | Mapping[str, Any]) -> None:
        """Replace every owned record with the contents of an exported state."""

        if not isinstance(state, UpgradeControllerState):
            state = UpgradeControllerState.model_validate(state)
        state = state.model_copy(deep=True)
        if state.active_upgrade is not None and state.active_upgrade.is_terminal:
            raise ValueError("Exported active upgrade is already terminal")
        self._slot = slot_for(state.active_upgrade)
        self._completed = BoundedHistory(self._config.max_completed_upgrades, state.completed_upgrades)
        self._roi_records = BoundedHistory(self._config.max_roi_records, state.roi_records)
        self._flags = {flag.name: flag for flag in state.feature_flags}
        self._axis_usage = {axis: state.axis_usage.get(axis, 0) for axis in UpgradeAxis}
        self._roi_threshold = state.roi_threshold
        self._last_upgrade_at = state.last_upgrade_at
        self._logger.info(
            "Upgrade controller restored (active=%s, completed=%d)",
            state.active_upgrade.id if state.active_upgrade else None,
            len(self._completed),
        )

    @classmethod
    def from_state(
        cls,
        state: UpgradeControllerState | Mapping[str, Any],
        metrics: MetricsProvider,
        policy_gate: PolicyGate,
        ops_gate: OperationsGate,
        config: RolloutConfig | None = None,
        **kwargs: Any,
    ) -> "UpgradeController":
        controller = cls(metrics, policy_gate, ops_gate, config, **kwargs)
        controller.restore(state)
        return controller

    # ------------------------------------------------------------------
    # Internal helpers
    def _plan_in(self, plan_id: str, required: UpgradeStatus) -> UpgradePlan | Outcome[UpgradePlan]:
        plan = active_record(self._slot)
        if plan is None or plan.id != plan_id:
            return Outcome.failure(f"Upgrade {plan_id} is not the active plan")
        if plan.status is not required:
            return Outcome.failure(
                f"Upgrade must be {required.value}, currently {plan.status.value}"
            )
        return plan

    def _toggle_flag(self, name: str, enabled: bool) -> None:
        flag = self._flags.get(name)
        if flag is None:
            return
        flag.enabled = enabled
        flag.toggled_at = utcnow()

    def _archive(self, plan: UpgradePlan) -> None:
        evicted = self._completed.append(plan)
        if evicted is not None:
            # A flag lives as long as its plan is in history; a kept upgrade
            # evicted from history is part of the baseline and is no longer gated.
            flag = self._flags.pop(evicted.feature_flag, None)
            if flag is not None:
                self._logger.info("Feature flag %s retired with upgrade %s", flag.name, evicted.name)
        self._slot = IDLE

    async def _reject(self, plan: UpgradePlan, lesson: str) -> None:
        plan.status = UpgradeStatus.REJECTED
        plan.completed_at = utcnow()
        plan.lessons.append(lesson)
        self._archive(plan)
        self._logger.warning("Upgrade %s rejected: %s", plan.name, lesson)
        await self._alerts.send(
            source="upgrades",
            severity="warning",
            message=f"Upgrade {plan.name} rejected",
            upgrade_id=plan.id,
            reason=lesson,
        )


__all__ = ["UpgradeController", "rollback_checklist"]
