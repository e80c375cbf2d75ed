import asyncio

from governed_rollout.models import ContinuityStatus
from governed_rollout.preconditions import ImprovementTracker, PreconditionEvaluator
from governed_rollout.simulation import StaticContinuity, StaticPolicyGate


class _Ledger:
    def __init__(self, active: bool, roi_records: int) -> None:
        self.has_active_upgrade = active
        self.roi_record_count = roi_records


def _evaluate(tracker, *, violations=0, continuity=ContinuityStatus.OK, ledger=None):
    evaluator = PreconditionEvaluator(
        tracker,
        StaticPolicyGate(violations=violations),
        StaticContinuity(continuity),
        ledger,
    )
    return asyncio.run(evaluator.evaluate())


def test_all_preconditions_pass():
    report = _evaluate(ImprovementTracker(3, 3))
    assert report.all_passed
    assert report.failures() == []
    assert report.to_json()["allPassed"] is True


def test_policy_violations_fail_the_gate():
    report = _evaluate(ImprovementTracker(3, 5), violations=2)
    assert not report.no_violations
    assert report.failures() == ["2 recent policy violation(s)"]


def test_mitigated_degradation_is_acceptable():
    assert _evaluate(ImprovementTracker(0), continuity=ContinuityStatus.DEGRADED_MITIGATED).continuity_ok
    assert not _evaluate(ImprovementTracker(0), continuity="FAILED").continuity_ok


def test_unmeasured_active_upgrade_blocks_scaling():
    blocked = _evaluate(ImprovementTracker(0), ledger=_Ledger(active=True, roi_records=0))
    assert not blocked.roi_validated
    assert _evaluate(ImprovementTracker(0), ledger=_Ledger(active=True, roi_records=1)).roi_validated
    assert _evaluate(ImprovementTracker(0), ledger=_Ledger(active=False, roi_records=0)).roi_validated


def test_tracker_resets_on_any_non_improving_cycle():
    tracker = ImprovementTracker(3)
    for improved in (True, True, False, True):
        tracker.record(improved)
    assert tracker.sustained_cycles == 1
    assert not tracker.satisfied
    tracker.record(True)
    tracker.record(True)
    assert tracker.satisfied
