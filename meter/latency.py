"""
HTTP round-trip latency measurement.

Each endpoint gets a fixed number of HEAD requests.  Every successful
round trip lands in one flat list across all endpoints and the reported
latency is the median of that list, so one slow endpoint cannot drag the
result the way a mean would.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .constants import PING_ATTEMPTS, PING_DELAY, PING_TIMEOUT
from .errors import AllProbesFailed, TransferError, raise_if_cancelled
from .stats import calculate_jitter, middle_sample
from .timing import SampleClock
from .transport import HttpTransport

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class LatencyResult:
    """Aggregated latency data across every probed endpoint."""

    samples: List[float] = field(default_factory=list)
    latency_ms: int = 0
    jitter_ms: float = 0.0
    attempts: int = 0
    failures: int = 0
    duration_seconds: float = 0.0

    def calculate(self) -> None:
        """Derive the median latency and jitter from collected samples."""
        if self.samples:
            self.latency_ms = int(round(middle_sample(self.samples)))
            self.jitter_ms = calculate_jitter(self.samples)

    def to_dict(self) -> dict:
        return {
            "samples": [round(s, 1) for s in self.samples],
            "latency_ms": self.latency_ms,
            "jitter_ms": round(self.jitter_ms, 3),
            "attempts": self.attempts,
            "failures": self.failures,
        }


# ---------------------------------------------------------------------------
# Tester
# ---------------------------------------------------------------------------

class LatencyTester:
    """Probe a list of endpoints sequentially and report the median RTT."""

    def __init__(
        self,
        transport: HttpTransport,
        attempts_per_endpoint: int = PING_ATTEMPTS,
        timeout: float = PING_TIMEOUT,
        delay: float = PING_DELAY,
        clock: Optional[SampleClock] = None,
    ) -> None:
        self.transport = transport
        self.attempts_per_endpoint = attempts_per_endpoint
        self.timeout = timeout
        self.delay = delay
        self.clock = clock or SampleClock()

    async def measure(
        self,
        endpoints: Sequence[str],
        cancel: Optional[threading.Event] = None,
    ) -> LatencyResult:
        """Return the median latency over all endpoints.

        Raises ``AllProbesFailed`` if no attempt on any endpoint succeeds.
        """
        result = LatencyResult()
        start = self.clock.mark()

        for url in endpoints:
            for attempt in range(1, self.attempts_per_endpoint + 1):
                raise_if_cancelled(cancel)

                result.attempts += 1
                rtt = await self._probe_once(url, attempt)
                if rtt is None:
                    result.failures += 1
                else:
                    result.samples.append(rtt)

                if self.delay > 0:
                    await asyncio.sleep(self.delay)

        result.duration_seconds = self.clock.elapsed(start)

        if not result.samples:
            raise AllProbesFailed(
                f"All {result.attempts} latency probes failed "
                f"across {len(endpoints)} endpoint(s)"
            )

        result.calculate()
        logger.info(
            "Latency %d ms from %d/%d probes (jitter %.2f ms)",
            result.latency_ms, len(result.samples), result.attempts, result.jitter_ms,
        )
        return result

    async def _probe_once(self, url: str, attempt: int) -> Optional[float]:
        """One HEAD round trip in milliseconds, or None on failure/timeout."""
        mark = self.clock.mark()
        try:
            await asyncio.wait_for(self.transport.head(url), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Ping attempt %d timed out for %s", attempt, url)
            return None
        except TransferError as exc:
            logger.warning("Ping attempt %d failed for %s: %s", attempt, url, exc)
            return None
        return self.clock.elapsed(mark) * 1000
