"""In-memory collaborators for dry runs, the operator CLI and tests."""

from __future__ import annotations

import json
from collections import deque
from pathlib import Path
from typing import Deque, Dict, Iterable, List, Mapping, Optional, Tuple

from .gates import OperationsVerdict, PolicyVerdict
from .models import ContinuityStatus

DEFAULT_SCORES: Dict[str, float] = {
    "reasoning": 72.0,
    "language": 75.0,
    "memory": 68.0,
    "autonomy": 64.0,
    "evolution": 60.0,
    "stability": 80.0,
}


class SyntheticMetrics:
    """Metric provider backed by a mutable score table.

    When ``frames`` are supplied each ``snapshot()`` call consumes the next
    frame (merged over the current scores); once exhausted the last scores
    keep being reported.
    """

    def __init__(
        self,
        scores: Optional[Mapping[str, float]] = None,
        frames: Iterable[Mapping[str, float]] = (),
    ) -> None:
        self.scores: Dict[str, float] = dict(DEFAULT_SCORES if scores is None else scores)
        self._frames: Deque[Mapping[str, float]] = deque(frames)
        self.calls = 0

    def set(self, domain: str, score: float) -> None:
        self.scores[domain] = float(score)

    def shift(self, domain: str, delta: float) -> None:
        self.scores[domain] = self.scores.get(domain, 0.0) + float(delta)

    def queue(self, frame: Mapping[str, float]) -> None:
        self._frames.append(frame)

    async def snapshot(self) -> Mapping[str, float]:
        self.calls += 1
        if self._frames:
            self.scores.update({domain: float(score) for domain, score in self._frames.popleft().items()})
        return dict(self.scores)


class StaticPolicyGate:
    """Policy gate returning a fixed verdict and violation count."""

    def __init__(self, approved: bool = True, reason: str = "", violations: int = 0) -> None:
        self.approved = approved
        self.reason = reason
        self.violations = violations
        self.checks: List[Tuple[str, str]] = []

    async def check(self, action_kind: str, description: str) -> PolicyVerdict:
        self.checks.append((action_kind, description))
        return PolicyVerdict(approved=self.approved, reason=self.reason or ("approved" if self.approved else "vetoed"))

    async def recent_violations(self) -> int:
        return self.violations


class StaticOperationsGate:
    """Operations gate allowing everything except ``blocked`` action kinds."""

    def __init__(self, allowed: bool = True, reason: str = "", blocked: Iterable[str] = ()) -> None:
        self.allowed = allowed
        self.reason = reason
        self.blocked = set(blocked)
        self.checks: List[Tuple[str, str]] = []

    async def check(self, action_kind: str, description: str) -> OperationsVerdict:
        self.checks.append((action_kind, description))
        allowed = self.allowed and action_kind not in self.blocked
        reason = self.reason or ("allowed" if allowed else "blocked_pending_approval")
        return OperationsVerdict(allowed=allowed, reason=reason)


class StaticContinuity:
    def __init__(self, status: ContinuityStatus | str = ContinuityStatus.OK) -> None:
        self.current = ContinuityStatus(status)

    async def status(self) -> ContinuityStatus:
        return self.current


def load_frames(path: Path) -> List[Dict[str, float]]:
    """Load metric snapshots from a JSON list or NDJSON file."""

    text = path.read_text(encoding="utf-8")
    frames: List[Dict[str, float]] = []
    stripped = text.strip()
    if stripped.startswith("["):
        payload = json.loads(stripped)
        if not isinstance(payload, list):  # pragma: no cover - guarded by the prefix check
            raise ValueError(f"Unsupported payload structure in {path}")
        entries = payload
    else:
        entries = [json.loads(line) for line in stripped.splitlines() if line.strip()]
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValueError(f"Metric frame must be an object, got {type(entry).__name__}")
        scores = entry.get("scores", entry)
        frames.append({str(domain): float(score) for domain, score in scores.items()})
    return frames


__all__ = [
    "DEFAULT_SCORES",
    "StaticContinuity",
    "StaticOperationsGate",
    "StaticPolicyGate",
    "SyntheticMetrics",
    "load_frames",
]
