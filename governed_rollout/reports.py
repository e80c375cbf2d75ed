"""Terminal scale reports and the lessons derived from them."""

from __future__ import annotations

from typing import Dict, List, Mapping

from .models import ScaleRamp, ScaleReport, utcnow


def metric_deltas(baseline: Mapping[str, float], current: Mapping[str, float]) -> Dict[str, float]:
    """Per-domain change relative to ``baseline``; absent domains count as zero."""

    return {domain: current.get(domain, 0.0) - value for domain, value in baseline.items()}


def _points(value: float) -> str:
    return f"{value:g}"


def extract_lessons(ramp: ScaleRamp, deltas: Mapping[str, float], threshold: float = 5.0) -> List[str]:
    lessons: List[str] = []
    if ramp.result == "success":
        lessons.append(
            f"Successfully scaled {ramp.dimension.value} from {ramp.start_value} to {ramp.current_value}"
        )
    else:
        lessons.append(f"Scale failed at step {ramp.current_step} of {ramp.steps}")

    for domain, delta in deltas.items():
        if delta < -threshold:
            lessons.append(f"{domain} regressed by {_points(abs(delta))} points during scale")
        elif delta > threshold:
            lessons.append(f"{domain} improved by {_points(delta)} points during scale")
    return lessons


def build_scale_report(
    ramp: ScaleRamp,
    post_metrics: Mapping[str, float],
    *,
    lesson_threshold: float = 5.0,
) -> ScaleReport:
    """Summarise a ramp that has just reached a terminal status."""

    deltas = metric_deltas(ramp.pre_scale_snapshot, post_metrics)
    completed_at = ramp.completed_at or utcnow()
    duration = max(0.0, (completed_at - ramp.started_at).total_seconds())
    return ScaleReport(
        ramp_id=ramp.id,
        dimension=ramp.dimension,
        start_value=ramp.start_value,
        final_value=ramp.current_value,
        target_value=ramp.target_value,
        peak_value=ramp.peak_value,
        pre_metrics=dict(ramp.pre_scale_snapshot),
        post_metrics=dict(post_metrics),
        delta_metrics=deltas,
        result=ramp.result or "failed",
        reason=ramp.reason,
        duration_seconds=duration,
        lessons=extract_lessons(ramp, deltas, lesson_threshold),
    )


__all__ = ["build_scale_report", "extract_lessons", "metric_deltas"]
