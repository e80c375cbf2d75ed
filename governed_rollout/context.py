"""Explicit wiring of the rollout controllers.

The orchestration layer builds one :class:`RolloutContext` per tenant (or
per test) instead of relying on process-wide singletons.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from pydantic import BaseModel, Field

from .alerts import AlertDispatcher
from .config import RolloutConfig, load_config
from .gates import ContinuityReporter, MetricsProvider, OperationsGate, PolicyGate
from .models import ScaleControllerState, UpgradeControllerState
from .scaling import ScaleController
from .upgrades import UpgradeController

LOGGER = logging.getLogger(__name__)


class RolloutSnapshot(BaseModel):
    """Everything needed to rebuild a context's in-memory state."""

    upgrades: UpgradeControllerState = Field(default_factory=UpgradeControllerState)
    scaling: ScaleControllerState = Field(default_factory=ScaleControllerState)


@dataclass
class RolloutContext:
    config: RolloutConfig
    alerts: AlertDispatcher
    upgrades: UpgradeController
    scaling: ScaleController

    def export_state(self) -> RolloutSnapshot:
        return RolloutSnapshot(upgrades=self.upgrades.export_state(), scaling=self.scaling.export_state())

    def restore(self, snapshot: RolloutSnapshot | Mapping[str, Any]) -> None:
        if not isinstance(snapshot, RolloutSnapshot):
            snapshot = RolloutSnapshot.model_validate(snapshot)
        self.upgrades.restore(snapshot.upgrades)
        self.scaling.restore(snapshot.scaling)


def build_context(
    metrics: MetricsProvider,
    policy_gate: PolicyGate,
    ops_gate: OperationsGate,
    continuity: ContinuityReporter,
    config: RolloutConfig | None = None,
    *,
    snapshot: RolloutSnapshot | Mapping[str, Any] | None = None,
) -> RolloutContext:
    """Wire both controllers around shared collaborators and configuration."""

    config = config or load_config()
    alerts = AlertDispatcher(config.alert_channels, config.alert_log_path)
    upgrades = UpgradeController(metrics, policy_gate, ops_gate, config, alerts=alerts)
    scaling = ScaleController(metrics, policy_gate, ops_gate, continuity, upgrades, config, alerts=alerts)
    context = RolloutContext(config=config, alerts=alerts, upgrades=upgrades, scaling=scaling)
    if snapshot is not None:
        context.restore(snapshot)
        LOGGER.info("Rollout context rebuilt from exported snapshot")
    return context


__all__ = ["RolloutContext", "RolloutSnapshot", "build_context"]
