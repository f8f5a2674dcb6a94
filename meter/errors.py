"""
Exception taxonomy for the measurement engine.

Per-source and per-chunk problems surface as ``TransferError`` and are
recovered inside a phase.  Everything else terminates a phase or a run.
"""
from __future__ import annotations

import threading
from typing import Optional


class SpeedTestError(Exception):
    """Base class for every error raised by the engine."""


class InvalidDuration(SpeedTestError, ValueError):
    """A rate was requested for a non-positive duration."""

    def __init__(self, seconds: float) -> None:
        super().__init__(f"Duration must be positive, got {seconds!r}")
        self.seconds = seconds


class TransferError(SpeedTestError):
    """A single request failed (bad status or transport error)."""

    def __init__(self, url: str, message: str, status: Optional[int] = None) -> None:
        super().__init__(f"{url}: {message}")
        self.url = url
        self.status = status


class AllProbesFailed(SpeedTestError):
    """No latency round trip succeeded on any endpoint."""


class AllTransfersFailed(SpeedTestError):
    """Every download source, or every upload chunk, failed."""


class TestAlreadyInProgress(SpeedTestError):
    """A run is already active for this session."""

    __test__ = False

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Test already in progress for session {session_id}")
        self.session_id = session_id


class RunCancelled(SpeedTestError):
    """Raised at a checkpoint after ``cancel()`` was requested."""


def raise_if_cancelled(cancel: Optional[threading.Event]) -> None:
    """Cancellation checkpoint used at chunk, source and phase boundaries."""
    if cancel is not None and cancel.is_set():
        raise RunCancelled("Run cancelled")
