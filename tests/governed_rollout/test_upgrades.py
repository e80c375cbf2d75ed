import asyncio

from governed_rollout.config import RolloutConfig
from governed_rollout.models import UpgradeAxis, UpgradeStatus
from governed_rollout.simulation import StaticOperationsGate, StaticPolicyGate, SyntheticMetrics
from governed_rollout.upgrades import UpgradeController, rollback_checklist


def _controller(*, config=None, policy=None, ops=None, metrics=None):
    metrics = metrics or SyntheticMetrics()
    controller = UpgradeController(
        metrics,
        policy or StaticPolicyGate(),
        ops or StaticOperationsGate(),
        config or RolloutConfig(),
    )
    return controller, metrics


async def _propose(controller, axis="COMPUTE", name="Batch inference", metric="reasoning", delta=10.0):
    return await controller.propose(
        axis,
        name,
        "Batching raises throughput",
        ["inference-worker"],
        [{"metric": metric, "target_delta": delta}],
    )


async def _go_live(controller, plan_id):
    for step in (controller.approve, controller.start_dry_run, controller.go_live):
        outcome = await step(plan_id)
        assert outcome.ok, outcome.reason


def test_full_lifecycle_keeps_upgrade_with_sufficient_roi():
    async def scenario() -> None:
        controller, metrics = _controller()
        proposed = await _propose(controller)
        plan = proposed.value
        assert plan.status is UpgradeStatus.PROPOSED
        assert plan.success_metrics[0].baseline_value == 72.0
        assert plan.success_metrics[0].target_value == 82.0
        assert plan.feature_flag.startswith("flag_compute_")
        assert not controller.is_feature_flag_enabled(plan.feature_flag)

        await _go_live(controller, plan.id)
        assert controller.is_feature_flag_enabled(plan.feature_flag)
        assert controller.active_upgrade().started_at is not None

        metrics.shift("reasoning", 15.0)
        evaluated = await controller.evaluate_roi()
        record = evaluated.value
        assert record.roi_score == 15.0
        assert record.passed
        assert record.decision == "keep"

        completed = await controller.complete(["batching works"])
        assert completed.value.status is UpgradeStatus.COMPLETED
        assert completed.value.roi_calculated == 15.0
        assert completed.value.lessons == ["batching works"]
        assert not controller.has_active_upgrade
        assert controller.axis_balance()[UpgradeAxis.COMPUTE] == 1
        assert controller.history()[-1].id == plan.id

    asyncio.run(scenario())


def test_propose_is_refused_while_another_plan_is_active():
    async def scenario() -> None:
        controller, _ = _controller()
        first = await _propose(controller)
        second = await _propose(controller, axis="DATA", name="New corpus")
        assert not second.ok
        assert second.value is None
        assert "Batch inference" in second.reason
        assert controller.active_upgrade() == first.value

    asyncio.run(scenario())


def test_roi_exactly_at_threshold_is_kept():
    async def scenario() -> None:
        controller, metrics = _controller()
        plan = (await _propose(controller)).value
        await _go_live(controller, plan.id)
        metrics.shift("reasoning", 10.0)
        record = (await controller.evaluate_roi()).value
        assert record.roi_score == 10.0
        assert record.passed is True
        assert record.decision == "keep"

    asyncio.run(scenario())


def test_roi_below_threshold_recommends_rollback():
    async def scenario() -> None:
        controller, metrics = _controller()
        plan = (await _propose(controller)).value
        await _go_live(controller, plan.id)
        metrics.shift("reasoning", 4.0)
        record = (await controller.evaluate_roi()).value
        assert not record.passed
        assert record.decision == "rollback"

        rolled = await controller.rollback(record.notes)
        assert rolled.value.status is UpgradeStatus.ROLLED_BACK
        assert rolled.value.lessons[-1].startswith("Rolled back: ROI 4")
        assert not controller.is_feature_flag_enabled(plan.feature_flag)
        assert controller.can_start_upgrade().ok
        assert controller.axis_balance()[UpgradeAxis.COMPUTE] == 0

    asyncio.run(scenario())


def test_policy_veto_rejects_and_frees_the_slot():
    async def scenario() -> None:
        policy = StaticPolicyGate(approved=False, reason="outside mandate")
        controller, _ = _controller(policy=policy)
        plan = (await _propose(controller)).value
        outcome = await controller.approve(plan.id)
        assert not outcome.ok
        assert outcome.value.status is UpgradeStatus.REJECTED
        assert outcome.value.lessons == ["Rejected by governance: outside mandate"]
        assert not controller.has_active_upgrade
        assert controller.history()[-1].status is UpgradeStatus.REJECTED
        assert policy.checks[0][0] == "upgrade"

    asyncio.run(scenario())


def test_operations_hold_rejects_infrastructure_upgrade():
    async def scenario() -> None:
        ops = StaticOperationsGate(allowed=False, reason="blocked_pending_approval")
        controller, _ = _controller(ops=ops)
        plan = (await _propose(controller, axis="PROVIDER", name="Second provider")).value
        outcome = await controller.approve(plan.id)
        assert not outcome.ok
        assert outcome.reason == "Requires manual approval from operations (blocked_pending_approval)"
        assert ops.checks == [("infrastructure_change", "Selective upgrade: Second provider")]

    asyncio.run(scenario())


def test_operations_gate_skipped_for_non_infrastructure_axis():
    async def scenario() -> None:
        ops = StaticOperationsGate(allowed=False)
        controller, _ = _controller(config=RolloutConfig(infrastructure_axes=("COMPUTE",)), ops=ops)
        plan = (await _propose(controller, axis="DATA", name="Curated corpus")).value
        assert (await controller.approve(plan.id)).ok
        assert ops.checks == []

    asyncio.run(scenario())


def test_transitions_out_of_order_are_refused():
    async def scenario() -> None:
        controller, _ = _controller()
        plan = (await _propose(controller)).value
        assert not (await controller.go_live(plan.id)).ok
        assert not (await controller.evaluate_roi()).ok
        assert not (await controller.complete()).ok
        assert not (await controller.start_dry_run("upgrade_missing")).ok
        assert controller.active_upgrade().status is UpgradeStatus.PROPOSED

    asyncio.run(scenario())


def test_rollback_from_proposed_archives_plan():
    async def scenario() -> None:
        controller, _ = _controller()
        plan = (await _propose(controller)).value
        outcome = await controller.rollback("changed priorities")
        assert outcome.ok
        assert controller.history()[-1].lessons == ["Rolled back: changed priorities"]
        assert not (await controller.rollback("again")).ok

    asyncio.run(scenario())


def test_missing_metric_uses_configured_baseline():
    async def scenario() -> None:
        controller, _ = _controller(config=RolloutConfig(missing_metric_baseline=40.0))
        plan = (await _propose(controller, metric="latency_score", delta=5.0)).value
        assert plan.success_metrics[0].baseline_value == 40.0
        await _go_live(controller, plan.id)
        record = (await controller.evaluate_roi()).value
        assert record.delta_metrics == {"latency_score": 0.0}
        assert record.decision == "rollback"

    asyncio.run(scenario())


def test_invalid_proposals_are_refused():
    async def scenario() -> None:
        controller, _ = _controller()
        assert not (await _propose(controller, axis="MEMORY")).ok
        empty = await controller.propose("DATA", "Nothing", "none", [], [])
        assert empty.reason == "At least one success metric is required"
        unnamed = await controller.propose("COMPUTE", "", "none", [], [{"metric": "reasoning", "target_delta": 1}])
        assert not unnamed.ok
        assert unnamed.reason == "Upgrade name is required"
        blank_metric = await controller.propose("COMPUTE", "Cache", "none", [], [{"metric": "", "target_delta": 1}])
        assert not blank_metric.ok
        assert blank_metric.reason.startswith("Invalid success metric")
        no_delta = await controller.propose("COMPUTE", "Cache", "none", [], [{"metric": "reasoning"}])
        assert not no_delta.ok
        assert controller.can_start_upgrade().ok

    asyncio.run(scenario())


def test_suggest_next_axis_prefers_least_used_with_priority_ties():
    async def scenario() -> None:
        controller, metrics = _controller()
        assert controller.suggest_next_axis() is UpgradeAxis.COMPUTE
        for axis in ("COMPUTE", "PROVIDER"):
            plan = (await _propose(controller, axis=axis, name=f"{axis} upgrade")).value
            await _go_live(controller, plan.id)
            metrics.shift("reasoning", 20.0)
            await controller.evaluate_roi()
            await controller.complete()
        assert controller.suggest_next_axis() is UpgradeAxis.DATA
        assert controller.status()["suggestedNextAxis"] == "DATA"

    asyncio.run(scenario())


def test_per_axis_roi_threshold_and_override():
    async def scenario() -> None:
        controller, _ = _controller(config=RolloutConfig(axis_roi_thresholds={"DATA": 2.0}))
        plan = (await _propose(controller, axis="DATA", name="Dataset")).value
        assert plan.roi_threshold == 2.0
        await controller.rollback("test")
        assert controller.set_roi_threshold(250) == 100.0
        plan = (await _propose(controller)).value
        assert plan.roi_threshold == 100.0

    asyncio.run(scenario())


def test_completed_history_is_bounded():
    async def scenario() -> None:
        controller, _ = _controller(config=RolloutConfig(max_completed_upgrades=2))
        names = []
        for index in range(3):
            plan = (await _propose(controller, name=f"plan-{index}")).value
            names.append(plan.feature_flag)
            await controller.rollback("cycle")
        history = controller.history()
        assert [plan.name for plan in history] == ["plan-1", "plan-2"]
        flags = {flag.name for flag in controller.feature_flags()}
        assert names[0] not in flags
        assert names[2] in flags

    asyncio.run(scenario())


def test_rollback_checklist_covers_axis_and_scope():
    steps = rollback_checklist(UpgradeAxis.PROVIDER, ["router"])
    assert steps[0] == "Disable feature flag immediately"
    assert "Switch back to original provider" in steps
    assert steps[-1] == "Verify router matches pre-upgrade behaviour"


def test_returned_roi_records_are_copies():
    async def scenario() -> None:
        controller, metrics = _controller()
        plan = (await _propose(controller)).value
        await _go_live(controller, plan.id)
        metrics.shift("reasoning", 12.0)
        evaluated = (await controller.evaluate_roi()).value
        evaluated.delta_metrics["reasoning"] = 0.0
        controller.recent_roi_records()[-1].after_metrics["reasoning"] = -1.0

        stored = controller.recent_roi_records()[-1]
        assert stored.delta_metrics["reasoning"] == 12.0
        assert stored.after_metrics["reasoning"] == 84.0

    asyncio.run(scenario())


def test_flags_of_evicted_upgrades_are_retired():
    async def scenario() -> None:
        controller, metrics = _controller(config=RolloutConfig(max_completed_upgrades=2))
        flags = []
        for index in range(4):
            plan = (await _propose(controller, name=f"kept-{index}")).value
            flags.append(plan.feature_flag)
            await _go_live(controller, plan.id)
            await controller.complete()
        live = {flag.name for flag in controller.feature_flags()}
        assert live == set(flags[2:])
        assert all(controller.is_feature_flag_enabled(name) for name in flags[2:])
        assert not controller.is_feature_flag_enabled(flags[0])

    asyncio.run(scenario())
