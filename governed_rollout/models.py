"""Shared Pydantic models for the governed rollout controllers."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:10]}"


class UpgradeAxis(str, Enum):
    """Independent improvement categories an upgrade may touch."""

    COMPUTE = "COMPUTE"
    PROVIDER = "PROVIDER"
    DATA = "DATA"


# Tie-break order used when several axes share the lowest usage count.
AXIS_PRIORITY: tuple[UpgradeAxis, ...] = (UpgradeAxis.COMPUTE, UpgradeAxis.PROVIDER, UpgradeAxis.DATA)


class UpgradeStatus(str, Enum):
    PROPOSED = "proposed"
    APPROVED = "approved"
    DRY_RUN = "dry_run"
    LIVE = "live"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"
    REJECTED = "rejected"


TERMINAL_UPGRADE_STATUSES = frozenset({
    UpgradeStatus.COMPLETED,
    UpgradeStatus.ROLLED_BACK,
    UpgradeStatus.REJECTED,
})


class ScaleDimension(str, Enum):
    """Bounded operating parameters that may be ramped."""

    THROUGHPUT = "THROUGHPUT"
    SCOPE = "SCOPE"
    FREQUENCY = "FREQUENCY"


class ScaleStatus(str, Enum):
    IDLE = "idle"
    RAMPING = "ramping"
    STABLE = "stable"
    ROLLING_BACK = "rolling_back"
    FAILED = "failed"


class ContinuityStatus(str, Enum):
    """Health states reported by the continuity collaborator."""

    OK = "OK"
    DEGRADED_MITIGATED = "DEGRADED_MITIGATED"
    DEGRADED_UNMITIGATED = "DEGRADED_UNMITIGATED"
    FAILED = "FAILED"


class SuccessMetricIn(BaseModel):
    """Declared success criterion supplied when proposing an upgrade."""

    metric: str = Field(..., min_length=1)
    target_delta: float


class SuccessMetric(BaseModel):
    metric: str
    baseline_value: float
    target_value: float
    current_value: Optional[float] = None


class UpgradePlan(BaseModel):
    """Hypothesis-driven improvement tracked through its lifecycle."""

    id: str = Field(default_factory=lambda: new_id("upgrade"))
    axis: UpgradeAxis
    name: str = Field(..., min_length=1)
    hypothesis: str
    scope: List[str] = Field(default_factory=list)
    success_metrics: List[SuccessMetric] = Field(default_factory=list)
    rollback_plan: List[str] = Field(default_factory=list)
    feature_flag: str
    status: UpgradeStatus = UpgradeStatus.PROPOSED
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    roi_threshold: float = Field(default=10.0, ge=0, le=100)
    roi_calculated: Optional[float] = None
    lessons: List[str] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_UPGRADE_STATUSES


class FeatureFlag(BaseModel):
    name: str
    enabled: bool = False
    upgrade_id: str
    created_at: datetime = Field(default_factory=utcnow)
    toggled_at: Optional[datetime] = None


class ROIRecord(BaseModel):
    """Immutable before/after comparison for a live upgrade."""

    model_config = ConfigDict(frozen=True)

    upgrade_id: str
    upgrade_name: str
    axis: UpgradeAxis
    timestamp: datetime = Field(default_factory=utcnow)
    before_metrics: Dict[str, float]
    after_metrics: Dict[str, float]
    delta_metrics: Dict[str, float]
    roi_score: float
    threshold: float
    passed: bool
    decision: Literal["keep", "rollback"]
    notes: str = ""


class Checkpoint(BaseModel):
    """Metric validation captured after a single ramp step."""

    model_config = ConfigDict(frozen=True)

    step: int = Field(..., ge=1)
    value: int
    metrics: Dict[str, float]
    timestamp: datetime = Field(default_factory=utcnow)
    passed: bool
    regressions: List[str] = Field(default_factory=list)


class DimensionLimit(BaseModel):
    """Current value and hard cap of a dimension; replaced, never edited."""

    model_config = ConfigDict(frozen=True)

    current: int = Field(..., ge=0)
    hard_cap: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _within_cap(self) -> "DimensionLimit":
        if self.current > self.hard_cap:
            raise ValueError("current cannot exceed hard_cap")
        return self

    @property
    def percent_used(self) -> int:
        if self.hard_cap <= 0:
            return 0
        return round(self.current / self.hard_cap * 100)


class ScaleRamp(BaseModel):
    """Staged ramp of one dimension toward a target value."""

    id: str = Field(default_factory=lambda: new_id("ramp"))
    dimension: ScaleDimension
    start_value: int
    current_value: int
    target_value: int
    step_size: int = Field(..., ge=1)
    steps: int = Field(..., ge=1)
    current_step: int = 0
    status: ScaleStatus = ScaleStatus.RAMPING
    tolerance: float = Field(default=10.0, ge=0)
    pre_scale_snapshot: Dict[str, float] = Field(default_factory=dict)
    checkpoints: List[Checkpoint] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    result: Optional[Literal["success", "rollback", "failed"]] = None
    reason: Optional[str] = None

    @property
    def peak_value(self) -> int:
        values = [checkpoint.value for checkpoint in self.checkpoints]
        return max([self.start_value, *values])


class ScaleReport(BaseModel):
    """Terminal summary produced when a ramp stabilises or rolls back."""

    model_config = ConfigDict(frozen=True)

    ramp_id: str
    dimension: ScaleDimension
    start_value: int
    final_value: int
    target_value: int
    peak_value: int
    pre_metrics: Dict[str, float]
    post_metrics: Dict[str, float]
    delta_metrics: Dict[str, float]
    result: Literal["success", "rollback", "failed"]
    reason: Optional[str] = None
    duration_seconds: float = Field(default=0.0, ge=0)
    lessons: List[str] = Field(default_factory=list)


class UpgradeControllerState(BaseModel):
    """Exported form of everything the upgrade controller owns."""

    active_upgrade: Optional[UpgradePlan] = None
    completed_upgrades: List[UpgradePlan] = Field(default_factory=list)
    feature_flags: List[FeatureFlag] = Field(default_factory=list)
    roi_records: List[ROIRecord] = Field(default_factory=list)
    axis_usage: Dict[UpgradeAxis, int] = Field(
        default_factory=lambda: {axis: 0 for axis in UpgradeAxis}
    )
    roi_threshold: float = Field(default=10.0, ge=0, le=100)
    last_upgrade_at: datetime = Field(default_factory=utcnow)


class ScaleControllerState(BaseModel):
    """Exported form of everything the scale controller owns."""

    enabled: bool = True
    active_ramp: Optional[ScaleRamp] = None
    completed_ramps: List[ScaleRamp] = Field(default_factory=list)
    scale_reports: List[ScaleReport] = Field(default_factory=list)
    dimension_limits: Dict[ScaleDimension, DimensionLimit] = Field(default_factory=dict)
    sustained_improvement_cycles: int = Field(default=0, ge=0)
    last_scale_attempt_at: Optional[datetime] = None


__all__ = [
    "AXIS_PRIORITY",
    "Checkpoint",
    "ContinuityStatus",
    "DimensionLimit",
    "FeatureFlag",
    "ROIRecord",
    "ScaleControllerState",
    "ScaleDimension",
    "ScaleRamp",
    "ScaleReport",
    "ScaleStatus",
    "SuccessMetric",
    "SuccessMetricIn",
    "TERMINAL_UPGRADE_STATUSES",
    "UpgradeAxis",
    "UpgradeControllerState",
    "UpgradePlan",
    "UpgradeStatus",
    "new_id",
    "utcnow",
]
