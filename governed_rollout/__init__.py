"""Governed rollout controllers.

Two cooperating controllers keep an autonomous system honest while it
improves itself: :class:`UpgradeController` runs one selective upgrade at a
time through governance gates and an ROI decision, and
:class:`ScaleController` ramps capacity in checkpointed steps that roll
back on any metric regression.
"""

from .alerts import Alert, AlertDispatcher
from .config import RolloutConfig, load_config
from .context import RolloutContext, RolloutSnapshot, build_context
from .models import (
    Checkpoint,
    ContinuityStatus,
    DimensionLimit,
    FeatureFlag,
    ROIRecord,
    ScaleDimension,
    ScaleRamp,
    ScaleReport,
    ScaleStatus,
    SuccessMetric,
    SuccessMetricIn,
    UpgradeAxis,
    UpgradePlan,
    UpgradeStatus,
)
from .preconditions import PreconditionReport
from .results import Outcome, StepResult
from .scaling import ScaleController
from .upgrades import UpgradeController

__all__ = [
    "Alert",
    "AlertDispatcher",
    "Checkpoint",
    "ContinuityStatus",
    "DimensionLimit",
    "FeatureFlag",
    "Outcome",
    "PreconditionReport",
    "ROIRecord",
    "RolloutConfig",
    "RolloutContext",
    "RolloutSnapshot",
    "ScaleController",
    "ScaleDimension",
    "ScaleRamp",
    "ScaleReport",
    "ScaleStatus",
    "StepResult",
    "SuccessMetric",
    "SuccessMetricIn",
    "UpgradeAxis",
    "UpgradeController",
    "UpgradePlan",
    "UpgradeStatus",
    "build_context",
    "load_config",
]
