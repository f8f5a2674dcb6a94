"""
Run sequencing: ping -> download -> upload.

``SpeedTestOrchestrator.run`` drives the three testers strictly one after
another, turns their results into ``Measurement`` objects on a
``TestRun`` and pushes typed events to the caller through a non-blocking
``EventSink``.  A ping failure is tolerated; an exhausted download or
upload ends the run.  The whole run is bounded by a watchdog.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Optional

from .config import SpeedTestConfig
from .download import DownloadTester
from .errors import (
    AllProbesFailed,
    AllTransfersFailed,
    RunCancelled,
    SpeedTestError,
    TestAlreadyInProgress,
    raise_if_cancelled,
)
from .events import EmitCallback, EventSink
from .latency import LatencyTester
from .models import (
    FailureReason,
    Measurement,
    Phase,
    PhaseCompleted,
    PhaseFailed,
    PhaseStarted,
    Progress,
    RunCompleted,
    RunFailed,
    Sample,
    TestRun,
)
from .session import ActiveRunRegistry
from .timing import SampleClock
from .transport import HttpTransport
from .upload import UploadTester

logger = logging.getLogger(__name__)


class _PhaseAborted(SpeedTestError):
    """A phase exhausted every source; the run cannot continue."""

    def __init__(self, phase: Phase, reason: FailureReason, message: str) -> None:
        super().__init__(message)
        self.phase = phase
        self.reason = reason


class SpeedTestOrchestrator:
    """
    Runs one speed test at a time for a single logical session.

    *registry* is shared by whoever owns the sessions (e.g. the WebSocket
    server); when omitted the orchestrator keeps a private one, which
    still rejects overlapping ``run()`` calls on this instance.
    ``cancel()`` may be called from any thread.
    """

    def __init__(
        self,
        transport: HttpTransport,
        config: Optional[SpeedTestConfig] = None,
        registry: Optional[ActiveRunRegistry] = None,
        session_id: str = "default",
        clock: Optional[SampleClock] = None,
    ) -> None:
        self.transport = transport
        self.config = config or SpeedTestConfig()
        self.registry = registry if registry is not None else ActiveRunRegistry()
        self.session_id = session_id
        self.clock = clock or SampleClock()
        self._cancel = threading.Event()

    @property
    def active(self) -> bool:
        return self.registry.is_active(self.session_id)

    def cancel(self) -> None:
        """Ask the active run to stop at its next checkpoint."""
        self._cancel.set()

    # -- Public entry point ---------------------------------------------------

    async def run(self, emit: EmitCallback) -> TestRun:
        """Execute a full test, pushing events to *emit*.

        Raises ``TestAlreadyInProgress`` (without side effects) when this
        session already has a run in flight.  Failures after the start are
        reported through a single ``RunFailed`` event and reflected on the
        returned ``TestRun``.
        """
        if not self.registry.try_acquire(self.session_id):
            raise TestAlreadyInProgress(self.session_id)

        self._cancel.clear()
        test_run = TestRun()
        sink = EventSink(emit, max_pending=self.config.max_pending_events)
        sink.start()
        logger.info("Run %s started for session %s", test_run.id, self.session_id)

        try:
            await asyncio.wait_for(
                self._run_phases(test_run, sink),
                timeout=self.config.watchdog_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                "Run %s exceeded the %.0fs watchdog; aborting",
                test_run.id, self.config.watchdog_seconds,
            )
            self._fail(test_run, sink, FailureReason.TIMEOUT,
                       f"Test exceeded {self.config.watchdog_seconds:.0f}s", discard=True)
        except _PhaseAborted as exc:
            logger.error("Run %s failed during %s: %s", test_run.id, exc.phase.value, exc)
            self._fail(test_run, sink, exc.reason, str(exc), phase=exc.phase)
        except RunCancelled:
            logger.info("Run %s cancelled", test_run.id)
            self._fail(test_run, sink, FailureReason.CANCELLED, "Test cancelled")
        except asyncio.CancelledError:
            self._fail(test_run, sink, FailureReason.CANCELLED, "Test cancelled")
            raise
        except Exception as exc:
            logger.exception("Run %s crashed", test_run.id)
            self._fail(test_run, sink, FailureReason.ERROR, str(exc))
            raise
        finally:
            try:
                await sink.close()
            finally:
                self.registry.release(self.session_id)

        return test_run

    # -- Phases -------------------------------------------------------------

    async def _run_phases(self, test_run: TestRun, sink: EventSink) -> None:
        cfg = self.config

        # -- Ping (best effort) ---------------------------------------------
        sink.push(PhaseStarted(Phase.PING))
        latency_tester = LatencyTester(
            self.transport,
            attempts_per_endpoint=cfg.attempts_per_endpoint,
            timeout=cfg.timeout_seconds,
            delay=cfg.ping_delay,
            clock=self.clock,
        )
        try:
            latency = await latency_tester.measure(cfg.ping_endpoints, cancel=self._cancel)
        except AllProbesFailed as exc:
            logger.warning("Ping phase failed, continuing without latency: %s", exc)
            sink.push(PhaseFailed(Phase.PING, str(exc)))
        else:
            ping = Measurement(
                kind=Phase.PING,
                duration_seconds=latency.duration_seconds,
                sample_count=len(latency.samples),
                latency_ms=latency.latency_ms,
                jitter_ms=latency.jitter_ms,
            )
            test_run.record(ping)
            sink.push(PhaseCompleted(Phase.PING, ping))

        raise_if_cancelled(self._cancel)

        # -- Download -------------------------------------------------------
        sink.push(PhaseStarted(Phase.DOWNLOAD))
        downloader = DownloadTester(
            self.transport,
            progress_interval=cfg.progress_interval,
            chunk_size=cfg.download_chunk_size,
            clock=self.clock,
        )

        def _download_progress(sample: Sample) -> None:
            sink.push(Progress(Phase.DOWNLOAD, sample))

        try:
            dl = await downloader.measure(
                cfg.download_sources, on_progress=_download_progress, cancel=self._cancel,
            )
        except AllTransfersFailed as exc:
            raise _PhaseAborted(Phase.DOWNLOAD, FailureReason.DOWNLOAD_FAILED, str(exc)) from exc

        download = Measurement(
            kind=Phase.DOWNLOAD,
            speed_mbps=dl.speed_mbps,
            duration_seconds=dl.duration_seconds,
            sample_count=len(dl.samples),
            peak_mbps=dl.peak_mbps,
            bytes_total=dl.bytes_total,
        )
        test_run.record(download)
        sink.push(PhaseCompleted(Phase.DOWNLOAD, download))

        raise_if_cancelled(self._cancel)

        # -- Upload ---------------------------------------------------------
        sink.push(PhaseStarted(Phase.UPLOAD))
        uploader = UploadTester(
            self.transport,
            progress_interval=cfg.progress_interval,
            chunk_size=cfg.chunk_size,
            clock=self.clock,
        )

        def _upload_progress(sample: Sample) -> None:
            fraction = min(sample.bytes / cfg.payload_size, 1.0)
            sink.push(Progress(Phase.UPLOAD, sample, fraction=fraction))

        try:
            ul = await uploader.measure(
                cfg.upload_sink, cfg.payload_size,
                on_progress=_upload_progress, cancel=self._cancel,
            )
        except AllTransfersFailed as exc:
            raise _PhaseAborted(Phase.UPLOAD, FailureReason.UPLOAD_FAILED, str(exc)) from exc

        upload = Measurement(
            kind=Phase.UPLOAD,
            speed_mbps=ul.speed_mbps,
            duration_seconds=ul.duration_seconds,
            sample_count=len(ul.samples),
            peak_mbps=ul.peak_mbps,
            bytes_total=ul.uploaded_bytes,
        )
        test_run.record(upload)
        sink.push(PhaseCompleted(Phase.UPLOAD, upload))

        test_run.finish()
        sink.push(RunCompleted(test_run))
        logger.info(
            "Run %s complete: ping=%s dl=%.2f Mbps ul=%.2f Mbps",
            test_run.id,
            test_run.ping.latency_ms if test_run.ping else "n/a",
            download.speed_mbps,
            upload.speed_mbps,
        )

    @staticmethod
    def _fail(
        test_run: TestRun,
        sink: EventSink,
        reason: FailureReason,
        message: str,
        phase: Optional[Phase] = None,
        discard: bool = False,
    ) -> None:
        if not test_run.is_complete:
            test_run.fail(reason, discard=discard)
        sink.push(RunFailed(reason=reason, message=message, phase=phase))
