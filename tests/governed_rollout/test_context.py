import asyncio
import json

import pytest

from governed_rollout.config import RolloutConfig
from governed_rollout.context import RolloutSnapshot, build_context
from governed_rollout.models import ScaleStatus, UpgradeStatus
from governed_rollout.simulation import (
    StaticContinuity,
    StaticOperationsGate,
    StaticPolicyGate,
    SyntheticMetrics,
)


def _context(metrics=None, snapshot=None):
    return build_context(
        metrics or SyntheticMetrics(),
        StaticPolicyGate(),
        StaticOperationsGate(),
        StaticContinuity(),
        RolloutConfig(),
        snapshot=snapshot,
    )


def test_contexts_are_independent():
    async def scenario() -> None:
        first = _context()
        second = _context()
        await first.upgrades.propose("DATA", "Corpus", "More data", [], [{"metric": "memory", "target_delta": 5}])
        assert first.upgrades.has_active_upgrade
        assert not second.upgrades.has_active_upgrade

    asyncio.run(scenario())


def test_unmeasured_upgrade_blocks_scaling_in_same_context():
    async def scenario() -> None:
        context = _context()
        for _ in range(3):
            context.scaling.record_improvement_cycle(True)
        await context.upgrades.propose("COMPUTE", "Cache", "Caching", [], [{"metric": "reasoning", "target_delta": 5}])
        started = await context.scaling.start_scale_ramp("SCOPE", 4)
        assert not started.ok
        assert "no ROI evaluation" in started.reason

    asyncio.run(scenario())


def test_export_and_restore_round_trip_through_json():
    async def scenario() -> None:
        context = _context()
        for _ in range(3):
            context.scaling.record_improvement_cycle(True)
        started = await context.scaling.start_scale_ramp("THROUGHPUT", 600)
        await context.scaling.step_ramp()
        await context.upgrades.propose("PROVIDER", "Fallback", "Second vendor", ["router"], [{"metric": "language", "target_delta": 3}])
        context.upgrades.set_roi_threshold(15)

        payload = json.loads(json.dumps(context.export_state().model_dump(mode="json")))
        restored = _context(snapshot=payload)

        ramp = restored.scaling.active_ramp()
        assert ramp.id == started.value.id
        assert ramp.status is ScaleStatus.RAMPING
        assert ramp.current_value == 200
        assert restored.scaling.dimension_limit("THROUGHPUT").current == 200
        assert restored.scaling.sustained_improvement_cycles == 3
        assert restored.upgrades.active_upgrade().status is UpgradeStatus.PROPOSED
        assert restored.upgrades.roi_threshold == 15.0

        result = await restored.scaling.step_ramp()
        assert result.continued
        assert restored.scaling.dimension_limit("THROUGHPUT").current == 300

    asyncio.run(scenario())


def test_restore_rejects_terminal_active_records():
    context = _context()
    snapshot = RolloutSnapshot.model_validate(
        {
            "scaling": {
                "active_ramp": {
                    "dimension": "SCOPE",
                    "start_value": 1,
                    "current_value": 1,
                    "target_value": 3,
                    "step_size": 1,
                    "steps": 2,
                    "status": "stable",
                }
            }
        }
    )
    with pytest.raises(ValueError, match="not ramping"):
        context.restore(snapshot)
