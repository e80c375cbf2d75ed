"""Configuration loader for the governed rollout controllers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Sequence, TypeVar

LOGGER = logging.getLogger(__name__)

_DEFAULT_PATH = Path(__file__).resolve().parents[1] / "config" / "rollout.json"

UPGRADE_AXES: tuple[str, ...] = ("COMPUTE", "PROVIDER", "DATA")
SCALE_DIMENSIONS: tuple[str, ...] = ("THROUGHPUT", "SCOPE", "FREQUENCY")


@dataclass(slots=True)
class DimensionLimitConfig:
    """Starting value and hard cap for a scalable dimension."""

    current: int
    hard_cap: int

    def __post_init__(self) -> None:
        if self.hard_cap < 0:
            raise ValueError("hard_cap cannot be negative")
        if not (0 <= self.current <= self.hard_cap):
            raise ValueError("current must lie between 0 and hard_cap")


def _default_limits() -> Dict[str, DimensionLimitConfig]:
    return {
        "THROUGHPUT": DimensionLimitConfig(current=100, hard_cap=1000),
        "SCOPE": DimensionLimitConfig(current=1, hard_cap=10),
        "FREQUENCY": DimensionLimitConfig(current=1, hard_cap=6),
    }


@dataclass(slots=True)
class RolloutConfig:
    """Runtime configuration shared by the upgrade and scale controllers."""

    roi_threshold: float = 10.0
    axis_roi_thresholds: Dict[str, float] = field(default_factory=dict)
    checkpoint_tolerance: float = 10.0
    dimension_tolerances: Dict[str, float] = field(default_factory=dict)
    lesson_delta_threshold: float = 5.0
    required_improvement_cycles: int = 3
    default_step_divisions: int = 5
    missing_metric_baseline: float = 50.0
    infrastructure_axes: Sequence[str] = UPGRADE_AXES
    max_completed_upgrades: int = 50
    max_roi_records: int = 100
    max_completed_ramps: int = 50
    max_scale_reports: int = 50
    dimension_limits: Dict[str, DimensionLimitConfig] = field(default_factory=_default_limits)
    alert_channels: Sequence[str] = field(default_factory=lambda: ("log",))
    alert_log_path: Path | None = None

    def __post_init__(self) -> None:
        if not (0 <= self.roi_threshold <= 100):
            raise ValueError("roi_threshold must be between 0 and 100")
        if self.checkpoint_tolerance < 0:
            raise ValueError("checkpoint_tolerance cannot be negative")
        if self.lesson_delta_threshold < 0:
            raise ValueError("lesson_delta_threshold cannot be negative")
        if self.required_improvement_cycles < 0:
            raise ValueError("required_improvement_cycles cannot be negative")
        if self.default_step_divisions <= 0:
            raise ValueError("default_step_divisions must be positive")
        for name in ("max_completed_upgrades", "max_roi_records", "max_completed_ramps", "max_scale_reports"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        for axis in (*self.axis_roi_thresholds, *self.infrastructure_axes):
            if axis not in UPGRADE_AXES:
                raise ValueError(f"Unknown upgrade axis {axis!r}")
        for dimension in (*self.dimension_tolerances, *self.dimension_limits):
            if dimension not in SCALE_DIMENSIONS:
                raise ValueError(f"Unknown scale dimension {dimension!r}")
        if any(value < 0 for value in self.dimension_tolerances.values()):
            raise ValueError("dimension tolerances cannot be negative")

    def roi_threshold_for(self, axis: str) -> float:
        return self.axis_roi_thresholds.get(axis, self.roi_threshold)

    def tolerance_for(self, dimension: str) -> float:
        return self.dimension_tolerances.get(dimension, self.checkpoint_tolerance)

    def to_json(self) -> Dict[str, object]:
        """Return the camelCase payload understood by :func:`load_config`."""

        return {
            "roiThreshold": self.roi_threshold,
            "axisRoiThresholds": dict(self.axis_roi_thresholds),
            "checkpointTolerance": self.checkpoint_tolerance,
            "dimensionTolerances": dict(self.dimension_tolerances),
            "lessonDeltaThreshold": self.lesson_delta_threshold,
            "requiredImprovementCycles": self.required_improvement_cycles,
            "defaultStepDivisions": self.default_step_divisions,
            "missingMetricBaseline": self.missing_metric_baseline,
            "infrastructureAxes": list(self.infrastructure_axes),
            "maxCompletedUpgrades": self.max_completed_upgrades,
            "maxRoiRecords": self.max_roi_records,
            "maxCompletedRamps": self.max_completed_ramps,
            "maxScaleReports": self.max_scale_reports,
            "dimensionLimits": {
                name: {"current": limit.current, "hardCap": limit.hard_cap}
                for name, limit in self.dimension_limits.items()
            },
            "alertChannels": list(self.alert_channels),
            "alertLogPath": str(self.alert_log_path) if self.alert_log_path else None,
        }


_CONFIG_PATH_ENV = ("ROLLOUT_CONFIG", "ROLLOUT_CONFIG_PATH")

Number = TypeVar("Number", int, float)


def _number(
    raw: object,
    key: str,
    default: Number,
    kind: Callable[[Any], Number],
    *,
    low: Number | None = None,
    high: Number | None = None,
) -> Number:
    """Parse ``raw`` for ``key``, falling back to ``default`` and clamping into [low, high].

    Absent keys fall back silently; unparseable values are logged with the
    offending key so a typo in the rollout JSON is visible at startup.
    """

    if raw is None or raw == "":
        value = default
    else:
        try:
            value = kind(raw)
        except (TypeError, ValueError):
            LOGGER.warning("Ignoring invalid rollout setting %s=%r; using %s", key, raw, default)
            value = default
    if low is not None and value < low:
        value = low
    if high is not None and value > high:
        value = high
    return value


def _load_payload() -> dict[str, object]:
    """Return the first non-empty JSON object among the env paths and the shipped default."""

    explicit = [Path(os.environ[key]).expanduser() for key in _CONFIG_PATH_ENV if os.environ.get(key)]
    for path in (*explicit, _DEFAULT_PATH):
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            if path != _DEFAULT_PATH:
                LOGGER.warning("Rollout config %s does not exist; trying next candidate", path)
            continue
        if not isinstance(payload, dict):
            raise ValueError(f"Rollout config {path} must hold a JSON object")
        if payload:
            LOGGER.debug("Rollout config loaded from %s", path)
            return payload
    return {}


def _threshold_map(payload: object, key: str, allowed: Sequence[str]) -> Dict[str, float]:
    if not isinstance(payload, Mapping):
        return {}
    result: Dict[str, float] = {}
    for name, value in payload.items():
        upper = str(name).upper()
        if upper not in allowed:
            LOGGER.warning("Ignoring %s entry for unknown name %r", key, name)
            continue
        result[upper] = _number(value, f"{key}.{upper}", 0.0, float, low=0.0)
    return result


def _dimension_limits(payload: object) -> Dict[str, DimensionLimitConfig]:
    limits = _default_limits()
    if not isinstance(payload, Mapping):
        return limits
    for name, entry in payload.items():
        upper = str(name).upper()
        if upper not in limits or not isinstance(entry, Mapping):
            LOGGER.warning("Ignoring dimensionLimits entry %r", name)
            continue
        default = limits[upper]
        prefix = f"dimensionLimits.{upper}"
        hard_cap = _number(entry.get("hardCap"), f"{prefix}.hardCap", default.hard_cap, int, low=0)
        current = _number(entry.get("current"), f"{prefix}.current", default.current, int, low=0, high=hard_cap)
        limits[upper] = DimensionLimitConfig(current=current, hard_cap=hard_cap)
    return limits


_HISTORY_KEYS = (
    ("maxCompletedUpgrades", "max_completed_upgrades"),
    ("maxRoiRecords", "max_roi_records"),
    ("maxCompletedRamps", "max_completed_ramps"),
    ("maxScaleReports", "max_scale_reports"),
)


def config_from_payload(payload: Mapping[str, object]) -> RolloutConfig:
    """Build a :class:`RolloutConfig` from a camelCase JSON payload."""

    config = RolloutConfig()
    get = payload.get
    config.roi_threshold = _number(get("roiThreshold"), "roiThreshold", config.roi_threshold, float, low=0.0, high=100.0)
    config.axis_roi_thresholds = _threshold_map(get("axisRoiThresholds"), "axisRoiThresholds", UPGRADE_AXES)
    config.checkpoint_tolerance = _number(
        get("checkpointTolerance"), "checkpointTolerance", config.checkpoint_tolerance, float, low=0.0
    )
    config.dimension_tolerances = _threshold_map(get("dimensionTolerances"), "dimensionTolerances", SCALE_DIMENSIONS)
    config.lesson_delta_threshold = _number(
        get("lessonDeltaThreshold"), "lessonDeltaThreshold", config.lesson_delta_threshold, float, low=0.0
    )
    config.required_improvement_cycles = _number(
        get("requiredImprovementCycles"), "requiredImprovementCycles", config.required_improvement_cycles, int, low=0
    )
    config.default_step_divisions = _number(
        get("defaultStepDivisions"), "defaultStepDivisions", config.default_step_divisions, int, low=1
    )
    config.missing_metric_baseline = _number(
        get("missingMetricBaseline"), "missingMetricBaseline", config.missing_metric_baseline, float, low=0.0, high=100.0
    )
    axes = get("infrastructureAxes")
    if isinstance(axes, list):
        config.infrastructure_axes = tuple(
            str(axis).upper() for axis in axes if str(axis).upper() in UPGRADE_AXES
        )
    for key, attr in _HISTORY_KEYS:
        setattr(config, attr, _number(get(key), key, getattr(config, attr), int, low=1))
    config.dimension_limits = _dimension_limits(get("dimensionLimits"))
    channels = get("alertChannels")
    if isinstance(channels, list):
        config.alert_channels = tuple(str(channel) for channel in channels if channel)
    log_path = get("alertLogPath")
    if isinstance(log_path, str) and log_path.strip():
        config.alert_log_path = Path(log_path).expanduser()
    return config


def _apply_env_overrides(config: RolloutConfig) -> RolloutConfig:
    env = os.environ
    config.roi_threshold = _number(
        env.get("ROLLOUT_ROI_THRESHOLD"), "ROLLOUT_ROI_THRESHOLD", config.roi_threshold, float, low=0.0, high=100.0
    )
    config.checkpoint_tolerance = _number(
        env.get("ROLLOUT_CHECKPOINT_TOLERANCE"), "ROLLOUT_CHECKPOINT_TOLERANCE", config.checkpoint_tolerance, float, low=0.0
    )
    return config


@lru_cache(maxsize=1)
def load_config() -> RolloutConfig:
    """Load configuration from JSON and environment overrides."""

    return _apply_env_overrides(config_from_payload(_load_payload()))


__all__ = [
    "DimensionLimitConfig",
    "RolloutConfig",
    "SCALE_DIMENSIONS",
    "UPGRADE_AXES",
    "config_from_payload",
    "load_config",
]
