"""
Bounded, non-blocking event delivery.

The measurement loop calls ``EventSink.push`` and moves on; a separate
task hands queued events to the consumer callback in order.  When the
consumer falls behind by more than ``max_pending`` events, further
``Progress`` events are dropped.  Lifecycle events are always queued.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Union

from .constants import DRAIN_TIMEOUT, MAX_PENDING_EVENTS
from .models import Event, Progress

logger = logging.getLogger(__name__)

EmitCallback = Callable[[Event], Union[None, Awaitable[Any]]]


class EventSink:
    """Ordered fire-and-forget delivery of events to one consumer."""

    def __init__(self, emit: EmitCallback, max_pending: int = MAX_PENDING_EVENTS) -> None:
        self._emit = emit
        self._max_pending = max_pending
        self._queue: Deque[Event] = deque()
        self._wakeup = asyncio.Event()
        self._closed = False
        self._task: Optional[asyncio.Task] = None
        self.dropped = 0

    # -- Lifecycle ----------------------------------------------------------

    def start(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._deliver())

    async def close(self, timeout: float = DRAIN_TIMEOUT) -> None:
        """Stop accepting events and wait up to *timeout* for the backlog."""
        self._closed = True
        self._wakeup.set()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.CancelledError:
            self._task.cancel()
            raise
        except asyncio.TimeoutError:
            logger.warning(
                "Event consumer did not drain in %.1fs; %d event(s) discarded",
                timeout, len(self._queue),
            )
            self._task.cancel()
        if self.dropped:
            logger.debug("Dropped %d progress event(s) for a slow consumer", self.dropped)

    # -- Producer side ------------------------------------------------------

    def push(self, event: Event) -> None:
        if self._closed:
            return
        if isinstance(event, Progress) and len(self._queue) >= self._max_pending:
            self.dropped += 1
            return
        self._queue.append(event)
        self._wakeup.set()

    # -- Consumer side ------------------------------------------------------

    async def _deliver(self) -> None:
        while True:
            while self._queue:
                event = self._queue.popleft()
                try:
                    outcome = self._emit(event)
                    if inspect.isawaitable(outcome):
                        await outcome
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Event consumer raised on %s", type(event).__name__)
            if self._closed:
                return
            self._wakeup.clear()
            await self._wakeup.wait()
