"""Speed measurement engine -- latency, throughput, and run sequencing."""

from .config import SpeedTestConfig, load_config
from .download import DownloadResult, DownloadTester
from .errors import (
    AllProbesFailed,
    AllTransfersFailed,
    InvalidDuration,
    RunCancelled,
    SpeedTestError,
    TestAlreadyInProgress,
    TransferError,
)
from .latency import LatencyResult, LatencyTester
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
    RunStatus,
    Sample,
    TestRun,
)
from .orchestrator import SpeedTestOrchestrator
from .session import ActiveRunRegistry
from .stats import estimate_mbps, format_latency, format_speed
from .timing import SampleClock
from .transport import AiohttpTransport, HttpTransport
from .upload import UploadResult, UploadTester

__all__ = [
    "ActiveRunRegistry",
    "AiohttpTransport",
    "AllProbesFailed",
    "AllTransfersFailed",
    "DownloadResult",
    "DownloadTester",
    "FailureReason",
    "HttpTransport",
    "InvalidDuration",
    "LatencyResult",
    "LatencyTester",
    "Measurement",
    "Phase",
    "PhaseCompleted",
    "PhaseFailed",
    "PhaseStarted",
    "Progress",
    "RunCancelled",
    "RunCompleted",
    "RunFailed",
    "RunStatus",
    "Sample",
    "SampleClock",
    "SpeedTestConfig",
    "SpeedTestError",
    "SpeedTestOrchestrator",
    "TestAlreadyInProgress",
    "TestRun",
    "TransferError",
    "UploadResult",
    "UploadTester",
    "estimate_mbps",
    "format_latency",
    "format_speed",
    "load_config",
]
