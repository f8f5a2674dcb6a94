"""Monotonic timing primitive shared by all testers."""
from __future__ import annotations

import time


class SampleClock:
    """
    Hands out opaque marks and measures seconds elapsed since them.

    Backed by ``time.perf_counter`` so wall-clock adjustments never leak
    into a measurement.
    """

    def mark(self) -> float:
        return time.perf_counter()

    def elapsed(self, mark: float) -> float:
        return time.perf_counter() - mark
