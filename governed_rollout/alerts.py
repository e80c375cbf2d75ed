"""Operator alerts emitted on rejections, rollbacks and completed ramps."""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Collection, Deque, Dict, Sequence

from .models import utcnow

_LOGGER = logging.getLogger(__name__)

LOG_CHANNEL = "log"
FILE_CHANNEL = "file"
KNOWN_CHANNELS = frozenset({LOG_CHANNEL, FILE_CHANNEL})

_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "critical": logging.CRITICAL,
}


@dataclass(frozen=True, slots=True)
class Alert:
    """Rollout event raised by a controller (``source`` is ``upgrades`` or ``scaling``)."""

    source: str
    severity: str
    message: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    raised_at: datetime = field(default_factory=utcnow)

    @property
    def level(self) -> int:
        return _LEVELS.get(self.severity, logging.WARNING)

    def to_record(self) -> Dict[str, Any]:
        """JSON-line form written to the alert log."""

        return {
            "raisedAt": self.raised_at.isoformat(),
            "source": self.source,
            "severity": self.severity,
            "message": self.message,
            "metadata": dict(self.metadata),
        }


def _append_line(alert: Alert, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(alert.to_record(), ensure_ascii=False, default=str) + "\n")


async def emit(alert: Alert, *, channels: Collection[str] = (LOG_CHANNEL,), log_path: Path | None = None) -> None:
    """Deliver ``alert`` to the logger and/or the JSON-lines file."""

    if LOG_CHANNEL in channels:
        _LOGGER.log(alert.level, "[%s] %s: %s", alert.severity.upper(), alert.source, alert.message)
    if FILE_CHANNEL in channels and log_path is not None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _append_line, alert, log_path)


class AlertDispatcher:
    """Routes controller alerts to the configured channels and keeps the last 100."""

    def __init__(self, channels: Sequence[str], log_path: Path | None = None) -> None:
        unknown = sorted(set(channels) - KNOWN_CHANNELS)
        if unknown:
            _LOGGER.warning("Ignoring unknown alert channel(s): %s", ", ".join(unknown))
        self._channels = frozenset(channels) & KNOWN_CHANNELS
        if FILE_CHANNEL in self._channels and log_path is None:
            _LOGGER.warning("File alert channel configured without alertLogPath; file delivery disabled")
        self._log_path = log_path
        self.sent: Deque[Alert] = deque(maxlen=100)

    @property
    def channels(self) -> frozenset[str]:
        return self._channels

    async def send(self, *, source: str, severity: str, message: str, **metadata: Any) -> None:
        if not self._channels:
            _LOGGER.debug("Alert suppressed because no channels configured: %s", message)
            return
        alert = Alert(source=source, severity=severity, message=message, metadata=dict(metadata))
        self.sent.append(alert)
        await emit(alert, channels=self._channels, log_path=self._log_path)


__all__ = ["Alert", "AlertDispatcher", "FILE_CHANNEL", "KNOWN_CHANNELS", "LOG_CHANNEL", "emit"]
