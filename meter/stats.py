"""
Network measurement arithmetic.

Pure functions -- no I/O, no side effects.  Everything here is
deterministic and easy to unit-test.
"""
from __future__ import annotations

import statistics
from typing import List, Sequence

from .constants import MEGABIT
from .errors import InvalidDuration


# ---------------------------------------------------------------------------
# Bandwidth
# ---------------------------------------------------------------------------

def estimate_mbps(bytes_count: int, seconds: float) -> float:
    """
    Megabits per second for *bytes_count* transferred in *seconds*.

    A megabit is 1024 * 1024 bits here, matching every rate the engine
    reports.  Raises ``InvalidDuration`` unless *seconds* is positive.
    """
    if bytes_count < 0:
        raise ValueError(f"Byte count must be non-negative, got {bytes_count!r}")
    if not seconds > 0:
        raise InvalidDuration(seconds)
    return (bytes_count * 8) / MEGABIT / seconds


# ---------------------------------------------------------------------------
# Latency helpers
# ---------------------------------------------------------------------------

def middle_sample(samples: Sequence[float]) -> float:
    """Element at ``n // 2`` of the sorted samples (upper-middle for even n)."""
    if not samples:
        raise ValueError("middle_sample() requires at least one sample")
    ordered = sorted(samples)
    return ordered[len(ordered) // 2]


def calculate_jitter(samples: List[float]) -> float:
    """Mean absolute difference between consecutive samples."""
    if len(samples) < 2:
        return 0.0
    diffs = [abs(samples[i] - samples[i - 1]) for i in range(1, len(samples))]
    return statistics.mean(diffs)


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def format_speed(speed_mbps: float) -> str:
    """Human-readable speed string."""
    if speed_mbps >= 1000:
        return f"{speed_mbps / 1000:.2f} Gbps"
    return f"{speed_mbps:.2f} Mbps"


def format_latency(latency_ms: float) -> str:
    """Human-readable latency string."""
    if latency_ms >= 1000:
        return f"{latency_ms / 1000:.2f} s"
    return f"{latency_ms:.1f} ms"
