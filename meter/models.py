"""
Data model for a speed test run and the events it emits.

``Sample`` and ``Measurement`` are frozen.  ``TestRun`` is filled in phase
by phase and locks itself once ``completed_at`` is set.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from .stats import estimate_mbps


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Phase(str, Enum):
    PING = "ping"
    DOWNLOAD = "download"
    UPLOAD = "upload"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TransferState(str, Enum):
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureReason(str, Enum):
    DOWNLOAD_FAILED = "download_failed"
    UPLOAD_FAILED = "upload_failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Samples and measurements
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Sample:
    """Cumulative bytes moved after ``elapsed_seconds`` of one transfer."""

    elapsed_seconds: float
    bytes: int

    @property
    def mbps(self) -> float:
        return estimate_mbps(self.bytes, self.elapsed_seconds)

    def to_dict(self) -> dict:
        return {
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "bytes": self.bytes,
            "mbps": round(self.mbps, 2) if self.elapsed_seconds > 0 else None,
        }


@dataclass(frozen=True)
class Measurement:
    """Outcome of one phase."""

    kind: Phase
    speed_mbps: float = 0.0
    duration_seconds: float = 0.0
    sample_count: int = 0
    latency_ms: Optional[int] = None
    jitter_ms: Optional[float] = None
    peak_mbps: Optional[float] = None
    bytes_total: Optional[int] = None

    def to_dict(self) -> dict:
        result: Dict[str, Any] = {
            "kind": self.kind.value,
            "speed_mbps": round(self.speed_mbps, 2),
            "duration_seconds": round(self.duration_seconds, 3),
            "sample_count": self.sample_count,
        }
        if self.latency_ms is not None:
            result["latency_ms"] = self.latency_ms
        if self.jitter_ms is not None:
            result["jitter_ms"] = round(self.jitter_ms, 3)
        if self.peak_mbps is not None:
            result["peak_mbps"] = round(self.peak_mbps, 2)
        if self.bytes_total is not None:
            result["bytes_total"] = self.bytes_total
        return result


# ---------------------------------------------------------------------------
# Test run
# ---------------------------------------------------------------------------

def _new_run_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TestRun:
    """One ping -> download -> upload sequence."""

    __test__ = False

    id: str = field(default_factory=_new_run_id)
    started_at: datetime = field(default_factory=_utcnow)
    ping: Optional[Measurement] = None
    download: Optional[Measurement] = None
    upload: Optional[Measurement] = None
    status: RunStatus = RunStatus.RUNNING
    failure_reason: Optional[FailureReason] = None
    completed_at: Optional[datetime] = None

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "completed_at", None) is not None:
            raise AttributeError(f"TestRun {self.id} is complete; cannot set {name!r}")
        super().__setattr__(name, value)

    @property
    def is_complete(self) -> bool:
        return self.completed_at is not None

    def record(self, measurement: Measurement) -> None:
        setattr(self, measurement.kind.value, measurement)

    def finish(self) -> None:
        self.status = RunStatus.COMPLETED
        self.completed_at = _utcnow()

    def fail(self, reason: FailureReason, discard: bool = False) -> None:
        """Mark the run failed; *discard* drops any partial measurements."""
        if discard:
            self.ping = None
            self.download = None
            self.upload = None
        self.status = RunStatus.FAILED
        self.failure_reason = reason
        self.completed_at = _utcnow()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "ping": self.ping.to_dict() if self.ping else None,
            "download": self.download.to_dict() if self.download else None,
            "upload": self.upload.to_dict() if self.upload else None,
        }


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PhaseStarted:
    phase: Phase


@dataclass(frozen=True)
class Progress:
    phase: Phase
    sample: Sample
    fraction: Optional[float] = None  # 0..1 when the total size is known


@dataclass(frozen=True)
class PhaseCompleted:
    phase: Phase
    measurement: Measurement


@dataclass(frozen=True)
class PhaseFailed:
    """A phase failed but the run carries on (ping only)."""

    phase: Phase
    message: str


@dataclass(frozen=True)
class RunCompleted:
    test_run: TestRun


@dataclass(frozen=True)
class RunFailed:
    reason: FailureReason
    message: str = ""
    phase: Optional[Phase] = None


Event = Union[PhaseStarted, Progress, PhaseCompleted, PhaseFailed, RunCompleted, RunFailed]
