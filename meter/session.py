"""
Per-session active-run bookkeeping.

The transport layer owns one ``ActiveRunRegistry`` for all of its
sessions; each orchestrator asks it before starting a run.  The
check-and-set is guarded by a lock so two near-simultaneous start
requests, even from different threads, cannot both win.
"""
from __future__ import annotations

import threading
from typing import Set


class ActiveRunRegistry:
    """Tracks which sessions currently have a run in flight."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: Set[str] = set()

    def try_acquire(self, session_id: str) -> bool:
        """Mark *session_id* active.  Returns False if it already was."""
        with self._lock:
            if session_id in self._active:
                return False
            self._active.add(session_id)
            return True

    def release(self, session_id: str) -> None:
        with self._lock:
            self._active.discard(session_id)

    def is_active(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._active

    def __len__(self) -> int:
        with self._lock:
            return len(self._active)
