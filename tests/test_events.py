"""Tests for meter.events -- ordered, bounded event delivery."""

import asyncio
import unittest

from meter.events import EventSink
from meter.models import FailureReason, Phase, PhaseCompleted, PhaseStarted, Progress, RunFailed, Sample


def _progress(n):
    return Progress(Phase.DOWNLOAD, Sample(elapsed_seconds=0.1 * n, bytes=1000 * n))


class TestEventSink(unittest.IsolatedAsyncioTestCase):
    async def test_delivers_in_order(self):
        received = []
        sink = EventSink(received.append)
        sink.start()
        events = [PhaseStarted(Phase.DOWNLOAD), _progress(1), _progress(2), PhaseStarted(Phase.UPLOAD)]
        for e in events:
            sink.push(e)
        await sink.close()
        self.assertEqual(received, events)
        self.assertEqual(sink.dropped, 0)

    async def test_push_does_not_wait_for_consumer(self):
        received = []
        sink = EventSink(received.append)
        sink.start()
        sink.push(PhaseStarted(Phase.PING))
        # Nothing is delivered until the loop gets a chance to run.
        self.assertEqual(received, [])
        await sink.close()
        self.assertEqual(len(received), 1)

    async def test_slow_consumer_drops_progress_only(self):
        gate = asyncio.Event()
        received = []

        async def emit(event):
            received.append(event)
            await gate.wait()

        sink = EventSink(emit, max_pending=2)
        sink.start()
        sink.push(PhaseStarted(Phase.DOWNLOAD))
        await asyncio.sleep(0)  # consumer takes the first event and blocks

        for n in range(5):
            sink.push(_progress(n))
        sink.push(PhaseCompleted(Phase.DOWNLOAD, None))
        sink.push(RunFailed(FailureReason.ERROR, "boom"))

        gate.set()
        await sink.close()

        self.assertEqual(sink.dropped, 3)
        self.assertEqual(
            [type(e).__name__ for e in received],
            ["PhaseStarted", "Progress", "Progress", "PhaseCompleted", "RunFailed"],
        )
        self.assertEqual(received[1].sample.bytes, 0)
        self.assertEqual(received[2].sample.bytes, 1000)

    async def test_push_after_close_ignored(self):
        received = []
        sink = EventSink(received.append)
        sink.start()
        await sink.close()
        sink.push(PhaseStarted(Phase.PING))
        await asyncio.sleep(0)
        self.assertEqual(received, [])

    async def test_async_consumer(self):
        received = []

        async def emit(event):
            await asyncio.sleep(0)
            received.append(event)

        sink = EventSink(emit)
        sink.start()
        sink.push(PhaseStarted(Phase.PING))
        sink.push(PhaseStarted(Phase.DOWNLOAD))
        await sink.close()
        self.assertEqual([e.phase for e in received], [Phase.PING, Phase.DOWNLOAD])

    async def test_consumer_error_is_logged_and_delivery_continues(self):
        calls = []

        def emit(event):
            calls.append(event)
            raise RuntimeError("boom")

        sink = EventSink(emit)
        sink.start()
        with self.assertLogs("meter.events", level="ERROR"):
            sink.push(PhaseStarted(Phase.PING))
            sink.push(PhaseStarted(Phase.DOWNLOAD))
            await sink.close()
        self.assertEqual(len(calls), 2)

    async def test_cancelled_close_stops_consumer(self):
        started = asyncio.Event()

        async def emit(event):
            started.set()
            await asyncio.sleep(3600)

        sink = EventSink(emit)
        sink.start()
        sink.push(PhaseStarted(Phase.PING))
        await started.wait()

        closing = asyncio.create_task(sink.close())
        await asyncio.sleep(0)
        closing.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await closing
        await asyncio.sleep(0)
        self.assertTrue(sink._task.done())

    async def test_close_is_bounded(self):
        async def emit(event):
            await asyncio.sleep(3600)

        sink = EventSink(emit)
        sink.start()
        sink.push(PhaseStarted(Phase.PING))
        sink.push(PhaseStarted(Phase.DOWNLOAD))
        with self.assertLogs("meter.events", level="WARNING"):
            await asyncio.wait_for(sink.close(timeout=0.05), timeout=1.0)
        self.assertTrue(sink._task.cancelled() or sink._task.done())


if __name__ == "__main__":
    unittest.main()
