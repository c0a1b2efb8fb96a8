from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "autocontrol" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)


class _Handle:
    def __init__(self, delay: float, fn) -> None:
        self.delay = delay
        self.fn = fn
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Stands in for threading.Timer; tests fire reconnects explicitly."""

    def __init__(self) -> None:
        self.handles: list[_Handle] = []
        self.delays: list[float] = []

    def __call__(self, delay: float, fn) -> _Handle:
        h = _Handle(delay, fn)
        self.handles.append(h)
        self.delays.append(delay)
        return h

    def run_next(self) -> None:
        h = self.handles.pop(0)
        if not h.cancelled:
            h.fn()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture(autouse=True)
def _reset_metrics():
    from autocontrol.runtime import metrics

    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def root_logging():
    """Snapshot and restore the root logger around tests that call configure_logging()."""
    import logging

    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    saved_flag = getattr(root, "_autocontrol_configured", None)
    if saved_flag is not None:
        delattr(root, "_autocontrol_configured")
    yield root
    root.handlers = saved_handlers
    root.setLevel(saved_level)
    if hasattr(root, "_autocontrol_configured"):
        delattr(root, "_autocontrol_configured")
    if saved_flag is not None:
        setattr(root, "_autocontrol_configured", saved_flag)
