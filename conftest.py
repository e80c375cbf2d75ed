"""Repository-wide pytest configuration.

Pins the repository root onto ``sys.path`` and keeps rollout configuration
from leaking between tests through the environment or the loader cache.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from governed_rollout.config import load_config  # noqa: E402

_ROLLOUT_ENV = (
    "ROLLOUT_CONFIG",
    "ROLLOUT_CONFIG_PATH",
    "ROLLOUT_ROI_THRESHOLD",
    "ROLLOUT_CHECKPOINT_TOLERANCE",
)


@pytest.fixture(autouse=True)
def _reset_rollout_config(monkeypatch):
    """Drop configuration env vars and the cached loader result around each test."""

    for key in _ROLLOUT_ENV:
        monkeypatch.delenv(key, raising=False)
    load_config.cache_clear()
    yield
    load_config.cache_clear()
