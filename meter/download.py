"""
Download speed test module.

Streams each configured source in turn on a single connection.  Progress
samples are taken at chunk boundaries once ``progress_interval`` has
passed since the previous one; the final speed is the mean of the
per-source speeds, and the peak is the best instantaneous sample.
"""
from __future__ import annotations

import logging
import statistics
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from .constants import DOWNLOAD_CHUNK_SIZE, PROGRESS_INTERVAL
from .errors import AllTransfersFailed, TransferError, raise_if_cancelled
from .models import Sample, TransferState
from .stats import estimate_mbps
from .timing import SampleClock
from .transport import HttpTransport

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Sample], None]


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class DownloadResult:
    """Download test result."""

    speed_mbps: float = 0.0
    peak_mbps: float = 0.0
    successful_sources: int = 0
    failed_sources: int = 0
    bytes_total: int = 0
    duration_seconds: float = 0.0
    source_speeds: List[float] = field(default_factory=list)
    samples: List[float] = field(default_factory=list)

    def calculate(self) -> None:
        """Average per-source speeds; peak from samples, else best source."""
        if self.source_speeds:
            self.speed_mbps = statistics.mean(self.source_speeds)
        if self.samples:
            self.peak_mbps = max(self.samples)
        elif self.source_speeds:
            self.peak_mbps = max(self.source_speeds)

    def to_dict(self) -> dict:
        return {
            "speed_mbps": round(self.speed_mbps, 2),
            "peak_mbps": round(self.peak_mbps, 2),
            "successful_sources": self.successful_sources,
            "failed_sources": self.failed_sources,
            "bytes_total": self.bytes_total,
            "duration_seconds": round(self.duration_seconds, 3),
            "source_speeds": [round(s, 2) for s in self.source_speeds],
            "samples": [round(s, 2) for s in self.samples],
        }


# ---------------------------------------------------------------------------
# Tester
# ---------------------------------------------------------------------------

class DownloadTester:
    """
    Sequential multi-source download tester.

    Sources are fetched one after another, never in parallel, since
    concurrent transfers on the same link would skew each other's samples.
    A failing source is logged and skipped; only when every source fails
    does the test raise ``AllTransfersFailed``.
    """

    def __init__(
        self,
        transport: HttpTransport,
        progress_interval: float = PROGRESS_INTERVAL,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
        clock: Optional[SampleClock] = None,
    ) -> None:
        self.transport = transport
        self.progress_interval = progress_interval
        self.chunk_size = chunk_size
        self.clock = clock or SampleClock()
        self.state = TransferState.IDLE

    async def measure(
        self,
        sources: Sequence[str],
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[threading.Event] = None,
    ) -> DownloadResult:
        self.state = TransferState.IN_PROGRESS
        result = DownloadResult()

        try:
            for index, url in enumerate(sources, start=1):
                raise_if_cancelled(cancel)
                logger.info("Download source %d/%d: %s", index, len(sources), url)
                try:
                    received, elapsed = await self._transfer(
                        url, result.samples, on_progress, cancel,
                    )
                except TransferError as exc:
                    result.failed_sources += 1
                    logger.warning("Download source %d failed: %s", index, exc)
                    continue

                if elapsed <= 0:
                    result.failed_sources += 1
                    logger.warning("Download source %d finished in zero time; ignored", index)
                    continue

                speed = estimate_mbps(received, elapsed)
                result.source_speeds.append(speed)
                result.bytes_total += received
                result.duration_seconds += elapsed
                result.successful_sources += 1
                logger.info("Download source %d: %.2f Mbps", index, speed)

            if not result.successful_sources:
                raise AllTransfersFailed(
                    f"All {len(sources)} download source(s) failed"
                )
        except BaseException:
            self.state = TransferState.FAILED
            raise

        result.calculate()
        self.state = TransferState.COMPLETED
        return result

    async def _transfer(
        self,
        url: str,
        peak_samples: List[float],
        on_progress: Optional[ProgressCallback],
        cancel: Optional[threading.Event],
    ) -> Tuple[int, float]:
        """Stream one source; returns ``(bytes_received, elapsed_seconds)``."""
        start = self.clock.mark()
        last_emit = 0.0
        received = 0

        chunks = self.transport.fetch(url, self.chunk_size)
        try:
            async for chunk in chunks:
                raise_if_cancelled(cancel)
                received += len(chunk)

                elapsed = self.clock.elapsed(start)
                if elapsed > 0 and elapsed - last_emit > self.progress_interval:
                    sample = Sample(elapsed_seconds=elapsed, bytes=received)
                    peak_samples.append(sample.mbps)
                    last_emit = elapsed
                    if on_progress:
                        on_progress(sample)
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

        return received, self.clock.elapsed(start)
