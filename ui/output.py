"""
Output formatting -- wire-format events, JSON export, plain text, and CSV.
"""
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from meter.models import (
    Event,
    PhaseCompleted,
    PhaseFailed,
    PhaseStarted,
    Progress,
    RunCompleted,
    RunFailed,
    TestRun,
)


# ---------------------------------------------------------------------------
# Wire format (tagged JSON objects with a ``type`` discriminator)
# ---------------------------------------------------------------------------

def event_to_dict(event: Event) -> Dict[str, Any]:
    """Serialise an engine event for a browser client."""
    if isinstance(event, PhaseStarted):
        return {
            "type": "phase-started",
            "phase": event.phase.value,
            "message": f"Testing {event.phase.value}...",
        }

    if isinstance(event, Progress):
        sample = event.sample
        payload: Dict[str, Any] = {
            "type": "progress",
            "phase": event.phase.value,
            "speed": round(sample.mbps, 2),
            "bytes": sample.bytes,
            "elapsed": round(sample.elapsed_seconds, 3),
        }
        if event.fraction is not None:
            payload["progress"] = round(event.fraction * 100, 1)
        return payload

    if isinstance(event, PhaseCompleted):
        return {
            "type": "phase-completed",
            "phase": event.phase.value,
            "measurement": event.measurement.to_dict(),
        }

    if isinstance(event, PhaseFailed):
        return {
            "type": "phase-failed",
            "phase": event.phase.value,
            "message": event.message,
        }

    if isinstance(event, RunCompleted):
        return {"type": "complete", "results": run_to_dict(event.test_run)}

    if isinstance(event, RunFailed):
        return {
            "type": "error",
            "reason": event.reason.value,
            "phase": event.phase.value if event.phase else None,
            "message": event.message,
        }

    raise TypeError(f"Unknown event type: {type(event).__name__}")


def run_to_dict(test_run: TestRun) -> Dict[str, Any]:
    """Flat, JSON-serialisable view of a run (also the history record)."""
    result = test_run.to_dict()
    result["timestamp"] = (test_run.completed_at or test_run.started_at).isoformat()
    return result


def save_json(result: Dict[str, Any], filepath: str) -> None:
    """Write *result* to *filepath* atomically (write-tmp then rename)."""
    dir_path = os.path.dirname(filepath) or "."
    tmp = os.path.join(dir_path, f".tmp_{os.path.basename(filepath)}")

    try:
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(result, fh, indent=2, ensure_ascii=False)
        os.replace(tmp, filepath)
    except (IOError, OSError) as exc:
        # Clean up partial temp file
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise IOError(f"Failed to save JSON to {filepath}: {exc}") from exc


# ---------------------------------------------------------------------------
# Plain-text / CSV helpers
# ---------------------------------------------------------------------------

def format_text_result(
    ping_ms: Optional[int],
    download_mbps: float,
    upload_mbps: float,
    peak_download_mbps: float = 0.0,
) -> str:
    sep = "=" * 50
    ping = f"{ping_ms} ms" if ping_ms is not None else "n/a"
    return (
        f"{sep}\n"
        f"Speed Test Results\n"
        f"{sep}\n"
        f"Ping: {ping}\n"
        f"Download: {download_mbps:.2f} Mbps (peak {peak_download_mbps:.2f} Mbps)\n"
        f"Upload: {upload_mbps:.2f} Mbps\n"
        f"{sep}"
    )


def _csv_escape(value: str) -> str:
    """Quote a CSV field when it contains a separator, quote, or newline."""
    if any(ch in value for ch in (",", '"', "\n", "\r")):
        return '"' + value.replace('"', '""') + '"'
    return value


def format_csv_header() -> str:
    return "timestamp,run_id,status,ping_ms,download_mbps,peak_download_mbps,upload_mbps"


def format_csv_row(test_run: TestRun) -> str:
    ts = (test_run.completed_at or datetime.now(timezone.utc)).isoformat()
    ping = str(test_run.ping.latency_ms) if test_run.ping and test_run.ping.latency_ms is not None else ""
    dl = test_run.download
    ul = test_run.upload
    fields = [
        ts,
        test_run.id,
        test_run.status.value,
        ping,
        f"{dl.speed_mbps:.2f}" if dl else "",
        f"{dl.peak_mbps or 0.0:.2f}" if dl else "",
        f"{ul.speed_mbps:.2f}" if ul else "",
    ]
    return ",".join(_csv_escape(f) for f in fields)
