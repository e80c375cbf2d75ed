"""Operator CLI for rehearsing governed upgrades and scale ramps."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

from rich.console import Console
from rich.table import Table

from .config import SCALE_DIMENSIONS, UPGRADE_AXES, RolloutConfig, load_config
from .context import RolloutContext, build_context
from .models import Checkpoint, ROIRecord, ScaleReport
from .simulation import (
    StaticContinuity,
    StaticOperationsGate,
    StaticPolicyGate,
    SyntheticMetrics,
    load_frames,
)

LOGGER = logging.getLogger("governed_rollout.cli")

console = Console()


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _context(metrics: SyntheticMetrics, config: RolloutConfig) -> RolloutContext:
    return build_context(
        metrics,
        StaticPolicyGate(),
        StaticOperationsGate(),
        StaticContinuity(),
        config,
    )


def _warm_up(context: RolloutContext) -> None:
    for _ in range(context.scaling.required_improvement_cycles):
        context.scaling.record_improvement_cycle(True)


def _checkpoint_table(checkpoints: Iterable[Checkpoint]) -> Table:
    table = Table(title="Checkpoints", style="bold")
    table.add_column("Step", justify="right")
    table.add_column("Value", justify="right")
    table.add_column("Passed", justify="center")
    table.add_column("Regressions", justify="left")
    for checkpoint in checkpoints:
        table.add_row(
            str(checkpoint.step),
            str(checkpoint.value),
            "[green]yes[/]" if checkpoint.passed else "[red]no[/]",
            ", ".join(checkpoint.regressions) or "-",
        )
    return table


def _report_table(report: ScaleReport) -> Table:
    table = Table(title=f"Scale report {report.ramp_id} ({report.result})", style="bold")
    table.add_column("Domain", justify="left")
    table.add_column("Before", justify="right")
    table.add_column("After", justify="right")
    table.add_column("Delta", justify="right")
    for domain, before in report.pre_metrics.items():
        after = report.post_metrics.get(domain)
        table.add_row(
            domain,
            f"{before:.1f}",
            f"{after:.1f}" if after is not None else "n/a",
            f"{report.delta_metrics.get(domain, 0.0):+.1f}",
        )
    return table


def _roi_table(record: ROIRecord) -> Table:
    table = Table(title=f"ROI for {record.upgrade_name}", style="bold")
    table.add_column("Metric", justify="left")
    table.add_column("Before", justify="right")
    table.add_column("After", justify="right")
    table.add_column("Delta", justify="right")
    for metric, before in record.before_metrics.items():
        table.add_row(
            metric,
            f"{before:.1f}",
            f"{record.after_metrics[metric]:.1f}",
            f"{record.delta_metrics[metric]:+.1f}",
        )
    return table


async def _drive_ramp(
    context: RolloutContext,
    metrics: SyntheticMetrics,
    dimension: str,
    target: int,
    step: Optional[int],
    regress_at: Optional[int] = None,
    regress_domain: str = "stability",
    regress_by: float = 0.0,
) -> Optional[ScaleReport]:
    started = await context.scaling.start_scale_ramp(dimension, target, step)
    if not started or started.value is None:
        console.print(f"Ramp refused: {started.reason}", style="red")
        return None
    ramp = started.value
    console.print(
        f"Ramping {ramp.dimension.value} {ramp.start_value} -> {ramp.target_value} "
        f"in {ramp.steps} step(s) of {ramp.step_size}",
        style="cyan",
    )
    checkpoints: list[Checkpoint] = []
    step_index = 0
    while True:
        step_index += 1
        if regress_at is not None and step_index == regress_at:
            metrics.shift(regress_domain, -regress_by)
        result = await context.scaling.step_ramp()
        if result.checkpoint is not None:
            checkpoints.append(result.checkpoint)
        LOGGER.info("Step %d: %s", step_index, result.reason)
        if not result.continued:
            break
    console.print(_checkpoint_table(checkpoints))
    report = context.scaling.latest_report()
    if report is not None:
        console.print(_report_table(report))
        for lesson in report.lessons:
            console.print(f"• {lesson}")
    return report


async def handle_simulate_ramp(args: argparse.Namespace) -> int:
    metrics = SyntheticMetrics()
    context = _context(metrics, load_config())
    _warm_up(context)
    report = await _drive_ramp(
        context,
        metrics,
        args.dimension,
        args.target,
        args.step,
        regress_at=args.regress_at,
        regress_domain=args.regress_domain,
        regress_by=args.regress_by,
    )
    return 0 if report is not None and report.result == "success" else 1


async def handle_replay(args: argparse.Namespace) -> int:
    frames = load_frames(Path(args.path))
    if not frames:
        console.print(f"No metric frames found in {args.path}", style="red")
        return 1
    metrics = SyntheticMetrics(scores={}, frames=frames)
    context = _context(metrics, load_config())
    _warm_up(context)
    report = await _drive_ramp(context, metrics, args.dimension, args.target, args.step)
    return 0 if report is not None and report.result == "success" else 1


async def handle_simulate_upgrade(args: argparse.Namespace) -> int:
    metrics = SyntheticMetrics()
    context = _context(metrics, load_config())
    upgrades = context.upgrades
    console.rule(f"[bold magenta]{args.axis} upgrade rehearsal")
    proposed = await upgrades.propose(
        args.axis,
        args.name,
        args.hypothesis,
        args.scope or [],
        [{"metric": args.metric, "target_delta": args.delta}],
    )
    if not proposed or proposed.value is None:
        console.print(f"Proposal refused: {proposed.reason}", style="red")
        return 1
    plan_id = proposed.value.id
    for step in (upgrades.approve, upgrades.start_dry_run, upgrades.go_live):
        outcome = await step(plan_id)
        console.print(f"{outcome.reason}", style="green" if outcome else "red")
        if not outcome:
            return 1
    metrics.shift(args.metric, args.uplift)
    evaluated = await upgrades.evaluate_roi()
    if evaluated.value is None:
        console.print(f"ROI evaluation failed: {evaluated.reason}", style="red")
        return 1
    record = evaluated.value
    console.print(_roi_table(record))
    console.print(record.notes, style="green" if record.passed else "yellow")
    if record.decision == "keep":
        await upgrades.complete([f"ROI {record.roi_score:g} accepted"])
    else:
        await upgrades.rollback(record.notes)
    console.print(f"Next suggested axis: [bold]{upgrades.suggest_next_axis().value}[/]")
    return 0 if record.passed else 1


def handle_config(args: argparse.Namespace) -> int:
    console.print_json(data=load_config().to_json())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Governed rollout operator toolkit")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    sub = parser.add_subparsers(dest="command", required=True)

    ramp = argparse.ArgumentParser(add_help=False)
    ramp.add_argument("--dimension", choices=SCALE_DIMENSIONS, default="THROUGHPUT")
    ramp.add_argument("--target", type=int, required=True, help="Requested target value (clamped to the hard cap)")
    ramp.add_argument("--step", type=int, default=None, help="Increment per step (default: span / 5)")

    simulate = sub.add_parser("simulate-ramp", parents=[ramp], help="Rehearse a ramp against synthetic metrics")
    simulate.add_argument("--regress-at", type=int, default=None, help="Step at which a regression is injected")
    simulate.add_argument("--regress-domain", default="stability", help="Domain that regresses")
    simulate.add_argument("--regress-by", type=float, default=15.0, help="Points the domain drops by")

    replay = sub.add_parser("replay", parents=[ramp], help="Replay metric snapshots from a JSON/NDJSON file")
    replay.add_argument("path", help="Path to the metrics file")

    upgrade = sub.add_parser("simulate-upgrade", help="Rehearse an upgrade from proposal to ROI decision")
    upgrade.add_argument("--axis", choices=UPGRADE_AXES, default="COMPUTE")
    upgrade.add_argument("--name", default="Batch inference")
    upgrade.add_argument("--hypothesis", default="Batching requests raises reasoning throughput")
    upgrade.add_argument("--scope", nargs="*", default=None)
    upgrade.add_argument("--metric", default="reasoning")
    upgrade.add_argument("--delta", type=float, default=10.0, help="Declared target improvement")
    upgrade.add_argument("--uplift", type=float, default=12.0, help="Simulated improvement after go-live")

    sub.add_parser("config", help="Print the effective configuration")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    command = args.command
    if command == "simulate-ramp":
        return asyncio.run(handle_simulate_ramp(args))
    if command == "replay":
        return asyncio.run(handle_replay(args))
    if command == "simulate-upgrade":
        return asyncio.run(handle_simulate_upgrade(args))
    if command == "config":
        return handle_config(args)
    parser.error(f"Unsupported command {command}")  # pragma: no cover - argparse enforces valid subcommands
    return 2  # pragma: no cover


if __name__ == "__main__":  # pragma: no cover - manual execution
    sys.exit(main())
