"""
Shared constants used across all meter modules.

Centralises reference endpoints, default headers, and tunables so they
live in exactly one place.
"""

# ---------------------------------------------------------------------------
# HTTP headers (browser-like, some endpoints reject bare clients)
# ---------------------------------------------------------------------------

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36"
)

COMMON_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    # Compressed bodies would inflate the measured throughput.
    "Accept-Encoding": "identity",
}

UPLOAD_CONTENT_TYPE = "application/octet-stream"

# ---------------------------------------------------------------------------
# Reference endpoints
# ---------------------------------------------------------------------------

DOWNLOAD_SOURCES = [
    "https://speed.cloudflare.com/__down?bytes=25000000",  # 25 MB
    "https://speed.cloudflare.com/__down?bytes=10000000",  # 10 MB
    "https://speed.cloudflare.com/__down?bytes=5000000",   # 5 MB
]

UPLOAD_SINK = "https://httpbin.org/post"

PING_ENDPOINTS = [
    "https://www.google.com",
    "https://www.cloudflare.com",
    "https://www.github.com",
]

# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

PROGRESS_INTERVAL = 0.1         # seconds between progress samples
PING_ATTEMPTS = 3               # round trips per endpoint
PING_TIMEOUT = 5.0              # per-attempt abort
PING_DELAY = 0.1                # pause between attempts
WATCHDOG_SECONDS = 60.0         # bound on a whole run
DRAIN_TIMEOUT = 2.0             # max wait for pending events at run end

MIN_WATCHDOG = 1.0
MAX_WATCHDOG = 600.0
MIN_PING_ATTEMPTS = 1
MAX_PING_ATTEMPTS = 20

# ---------------------------------------------------------------------------
# Data transfer
# ---------------------------------------------------------------------------

MEGABIT = 1024 * 1024            # bits per "megabit" in every rate
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # read size for streamed bodies
UPLOAD_CHUNK_SIZE = 64 * 1024    # one POST per chunk
UPLOAD_PAYLOAD_SIZE = 5 * 1024 * 1024

MIN_CHUNK_SIZE = 1024
MAX_CHUNK_SIZE = 16 * 1024 * 1024

# ---------------------------------------------------------------------------
# Event delivery
# ---------------------------------------------------------------------------

MAX_PENDING_EVENTS = 256         # progress events beyond this are dropped
HISTORY_LIMIT = 10               # runs kept for display
