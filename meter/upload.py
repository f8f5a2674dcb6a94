"""
Upload speed test module.

Generates a random payload, splits it into fixed-size chunks and POSTs
them one by one to a single sink.  A failed chunk is logged and skipped:
it is not retried and its bytes do not count toward the uploaded total.
"""
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .constants import PROGRESS_INTERVAL, UPLOAD_CHUNK_SIZE, UPLOAD_PAYLOAD_SIZE
from .errors import AllTransfersFailed, TransferError, raise_if_cancelled
from .models import Sample, TransferState
from .stats import estimate_mbps
from .timing import SampleClock
from .transport import HttpTransport

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Sample], None]


@dataclass
class UploadResult:
    """Upload test result."""

    speed_mbps: float = 0.0
    peak_mbps: float = 0.0
    duration_seconds: float = 0.0
    uploaded_bytes: int = 0
    payload_bytes: int = 0
    chunks_attempted: int = 0
    chunks_failed: int = 0
    samples: List[float] = field(default_factory=list)

    def calculate(self) -> None:
        """Derive speed from uploaded bytes and wall-clock duration."""
        if self.duration_seconds > 0:
            self.speed_mbps = estimate_mbps(self.uploaded_bytes, self.duration_seconds)
        self.peak_mbps = max(self.samples) if self.samples else self.speed_mbps

    def to_dict(self) -> dict:
        return {
            "speed_mbps": round(self.speed_mbps, 2),
            "peak_mbps": round(self.peak_mbps, 2),
            "duration_seconds": round(self.duration_seconds, 3),
            "uploaded_bytes": self.uploaded_bytes,
            "payload_bytes": self.payload_bytes,
            "chunks_attempted": self.chunks_attempted,
            "chunks_failed": self.chunks_failed,
            "samples": [round(s, 2) for s in self.samples],
        }


def generate_payload(size: int) -> bytes:
    """Random bytes so no hop can compress the upload."""
    return os.urandom(size)


class UploadTester:
    """
    Sequential chunked upload tester.

    ``on_progress`` receives the cumulative ``Sample``.  It fires whenever
    ``progress_interval`` has passed since the previous call, and always
    after the last chunk.
    """

    def __init__(
        self,
        transport: HttpTransport,
        progress_interval: float = PROGRESS_INTERVAL,
        chunk_size: int = UPLOAD_CHUNK_SIZE,
        clock: Optional[SampleClock] = None,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.transport = transport
        self.progress_interval = progress_interval
        self.chunk_size = chunk_size
        self.clock = clock or SampleClock()
        self.state = TransferState.IDLE

    async def measure(
        self,
        sink: str,
        payload_size: int = UPLOAD_PAYLOAD_SIZE,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[threading.Event] = None,
    ) -> UploadResult:
        self.state = TransferState.IN_PROGRESS
        try:
            result = await self._upload(sink, payload_size, on_progress, cancel)
        except BaseException:
            self.state = TransferState.FAILED
            raise
        self.state = TransferState.COMPLETED
        return result

    async def _upload(
        self,
        sink: str,
        payload_size: int,
        on_progress: Optional[ProgressCallback],
        cancel: Optional[threading.Event],
    ) -> UploadResult:
        payload = memoryview(generate_payload(payload_size))
        total_chunks = -(-payload_size // self.chunk_size)
        result = UploadResult(payload_bytes=payload_size)

        logger.info(
            "Uploading %d bytes to %s in %d chunk(s)", payload_size, sink, total_chunks,
        )

        start = self.clock.mark()
        last_emit = 0.0

        for i in range(total_chunks):
            raise_if_cancelled(cancel)
            chunk = payload[i * self.chunk_size:(i + 1) * self.chunk_size]
            result.chunks_attempted += 1

            try:
                await self.transport.post(sink, bytes(chunk))
            except TransferError as exc:
                result.chunks_failed += 1
                logger.warning("Upload chunk %d/%d failed: %s", i + 1, total_chunks, exc)
            else:
                result.uploaded_bytes += len(chunk)

            elapsed = self.clock.elapsed(start)
            is_last = i == total_chunks - 1
            if elapsed > 0 and (is_last or elapsed - last_emit > self.progress_interval):
                sample = Sample(elapsed_seconds=elapsed, bytes=result.uploaded_bytes)
                result.samples.append(sample.mbps)
                last_emit = elapsed
                if on_progress:
                    on_progress(sample)

        result.duration_seconds = self.clock.elapsed(start)

        if result.uploaded_bytes == 0:
            raise AllTransfersFailed(
                f"All {result.chunks_attempted} upload chunk(s) failed"
            )

        result.calculate()
        logger.info(
            "Upload: %.2f Mbps (%d bytes, %d failed chunk(s))",
            result.speed_mbps, result.uploaded_bytes, result.chunks_failed,
        )
        return result
