"""
User configuration file support.

Reads/writes ``~/.speedmeter/config.json``.  Missing keys fall back to
``DEFAULTS``; a corrupt file yields the defaults.

Supported keys::

    download_sources = [...]       # streamed in order
    upload_sink = "https://..."    # POST target for upload chunks
    chunk_size = 65536             # upload chunk size in bytes
    payload_size = 5242880         # total upload payload in bytes
    download_chunk_size = 65536
    progress_interval = 0.1        # seconds between progress samples
    ping_endpoints = [...]
    attempts_per_endpoint = 3
    timeout_seconds = 5.0          # per ping attempt
    ping_delay = 0.1               # pause between ping attempts
    watchdog_seconds = 60.0        # bound on a whole run
    max_pending_events = 256
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from .constants import (
    DOWNLOAD_CHUNK_SIZE,
    DOWNLOAD_SOURCES,
    MAX_CHUNK_SIZE,
    MAX_PENDING_EVENTS,
    MAX_PING_ATTEMPTS,
    MAX_WATCHDOG,
    MIN_CHUNK_SIZE,
    MIN_PING_ATTEMPTS,
    MIN_WATCHDOG,
    PING_ATTEMPTS,
    PING_DELAY,
    PING_ENDPOINTS,
    PING_TIMEOUT,
    PROGRESS_INTERVAL,
    UPLOAD_CHUNK_SIZE,
    UPLOAD_PAYLOAD_SIZE,
    UPLOAD_SINK,
    WATCHDOG_SECONDS,
)

logger = logging.getLogger(__name__)

_CONFIG_DIR = os.path.join(Path.home(), ".speedmeter")
_CONFIG_FILE = "config.json"


def _config_path() -> str:
    return os.path.join(_CONFIG_DIR, _CONFIG_FILE)


# ---------------------------------------------------------------------------
# Config object
# ---------------------------------------------------------------------------

@dataclass
class SpeedTestConfig:
    """Everything a run needs to know about endpoints and tunables."""

    download_sources: List[str] = field(default_factory=lambda: list(DOWNLOAD_SOURCES))
    upload_sink: str = UPLOAD_SINK
    chunk_size: int = UPLOAD_CHUNK_SIZE
    payload_size: int = UPLOAD_PAYLOAD_SIZE
    download_chunk_size: int = DOWNLOAD_CHUNK_SIZE
    progress_interval: float = PROGRESS_INTERVAL
    ping_endpoints: List[str] = field(default_factory=lambda: list(PING_ENDPOINTS))
    attempts_per_endpoint: int = PING_ATTEMPTS
    timeout_seconds: float = PING_TIMEOUT
    ping_delay: float = PING_DELAY
    watchdog_seconds: float = WATCHDOG_SECONDS
    max_pending_events: int = MAX_PENDING_EVENTS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SpeedTestConfig:
        """Build from a plain dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown config key(s): %s", ", ".join(unknown))
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> None:
        """Raise ``ValueError`` if any value is out of range."""
        if not self.download_sources:
            raise ValueError("At least one download source is required")
        if not self.upload_sink:
            raise ValueError("An upload sink is required")
        if not MIN_CHUNK_SIZE <= self.chunk_size <= MAX_CHUNK_SIZE:
            raise ValueError(f"Chunk size must be between {MIN_CHUNK_SIZE} and {MAX_CHUNK_SIZE} bytes")
        if not MIN_CHUNK_SIZE <= self.download_chunk_size <= MAX_CHUNK_SIZE:
            raise ValueError(f"Download chunk size must be between {MIN_CHUNK_SIZE} and {MAX_CHUNK_SIZE} bytes")
        if self.payload_size < self.chunk_size:
            raise ValueError("Payload size must be at least one chunk")
        if self.progress_interval < 0:
            raise ValueError("Progress interval must not be negative")
        if not MIN_PING_ATTEMPTS <= self.attempts_per_endpoint <= MAX_PING_ATTEMPTS:
            raise ValueError(f"Ping attempts must be between {MIN_PING_ATTEMPTS} and {MAX_PING_ATTEMPTS}")
        if self.timeout_seconds <= 0:
            raise ValueError("Ping timeout must be positive")
        if self.ping_delay < 0:
            raise ValueError("Ping delay must not be negative")
        if not MIN_WATCHDOG <= self.watchdog_seconds <= MAX_WATCHDOG:
            raise ValueError(f"Watchdog must be between {MIN_WATCHDOG} and {MAX_WATCHDOG} s")
        if self.max_pending_events < 1:
            raise ValueError("max_pending_events must be at least 1")


DEFAULTS: Dict[str, Any] = SpeedTestConfig().to_dict()


# ---------------------------------------------------------------------------
# Read / Write
# ---------------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> SpeedTestConfig:
    """Load config from disk, returning defaults for missing keys."""
    path = path or _config_path()
    values = dict(DEFAULTS)

    if not os.path.isfile(path):
        return SpeedTestConfig.from_dict(values)

    try:
        with open(path, encoding="utf-8") as fh:
            user = json.load(fh)
        if isinstance(user, dict):
            values.update(user)
        else:
            logger.warning("Config %s is not a JSON object; using defaults", path)
    except (json.JSONDecodeError, IOError) as exc:
        logger.warning("Could not read config %s (%s); using defaults", path, exc)

    return SpeedTestConfig.from_dict(values)


def save_config(config: SpeedTestConfig, path: Optional[str] = None) -> str:
    """Write *config* to disk.  Returns the file path."""
    path = path or _config_path()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    with open(path, "w", encoding="utf-8") as fh:
        json.dump(config.to_dict(), fh, indent=2, ensure_ascii=False)

    return path


def config_path() -> str:
    """Return the config file path (for display purposes)."""
    return _config_path()
