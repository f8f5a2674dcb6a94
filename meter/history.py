"""
Run history.

Every finished run (completed or failed) is appended as one JSON object per
line to ``~/.speedmeter/history.jsonl``.  Appending never rewrites earlier
records, and a damaged line only loses that one run.
"""
from __future__ import annotations

import json
import logging
import os
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from .constants import HISTORY_LIMIT

logger = logging.getLogger(__name__)

_HISTORY_DIR = os.path.join(Path.home(), ".speedmeter")
_HISTORY_FILE = "history.jsonl"


def _history_path() -> str:
    return os.path.join(_HISTORY_DIR, _HISTORY_FILE)


def save_result(result: Dict[str, Any], path: Optional[str] = None) -> str:
    """Append a copy of *result*, stamped with the current time if unstamped."""
    path = path or _history_path()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    record = {"timestamp": datetime.now(timezone.utc).isoformat(), **result}
    line = json.dumps(record, ensure_ascii=False)

    with open(path, "a", encoding="utf-8") as fh:
        fh.write(line + "\n")
    return path


def load_history(limit: int = HISTORY_LIMIT, path: Optional[str] = None) -> List[Dict[str, Any]]:
    """The newest *limit* records, oldest first."""
    path = path or _history_path()
    if limit <= 0 or not os.path.isfile(path):
        return []

    newest: Deque[Dict[str, Any]] = deque(maxlen=limit)
    with open(path, encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            try:
                newest.append(json.loads(line))
            except json.JSONDecodeError:
                logger.debug("Skipping unreadable history line %d in %s", lineno, path)
    return list(newest)


def _short_time(raw: Any) -> str:
    if not raw:
        return "?"
    try:
        return datetime.fromisoformat(raw).strftime("%Y-%m-%d %H:%M")
    except (ValueError, TypeError):
        return str(raw)[:16]


def _section(entry: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = entry.get(name)
    return value if isinstance(value, dict) else {}


def format_history_table(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """One display row per record: timestamp, status, ping, download, upload."""
    return [
        {
            "timestamp": _short_time(e.get("timestamp")),
            "status": e.get("status", "?"),
            "ping": _section(e, "ping").get("latency_ms"),
            "download": _section(e, "download").get("speed_mbps", 0),
            "upload": _section(e, "upload").get("speed_mbps", 0),
        }
        for e in entries
    ]


def summarize_history(entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Averages over the completed runs in *entries*.

    Failed runs are counted but contribute no speeds; averages are None
    when no completed run carries that measurement.
    """
    completed = [e for e in entries if e.get("status") == "completed"]

    def _mean(section: str, key: str) -> Optional[float]:
        values = [_section(e, section)[key] for e in completed if key in _section(e, section)]
        return sum(values) / len(values) if values else None

    return {
        "runs": len(entries),
        "completed": len(completed),
        "ping_ms": _mean("ping", "latency_ms"),
        "download_mbps": _mean("download", "speed_mbps"),
        "upload_mbps": _mean("upload", "speed_mbps"),
    }
