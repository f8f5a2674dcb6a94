"""Tests for ui.server -- message routing and per-connection sessions."""

import asyncio
import json
import unittest

from websockets.exceptions import ConnectionClosed

from meter.config import SpeedTestConfig
from ui.server import SpeedTestServer

from fakes import FakeClock, FakeTransport, source_for_speed

PING = "https://p.example"
SOURCE = "https://dl.example/1"
SINK = "https://ul.example/post"


class FakeWebSocket:
    """Records JSON sent to it and replays scripted incoming messages."""

    def __init__(self, incoming=()):
        self.sent = []
        self._incoming = list(incoming)

    async def send(self, message):
        self.sent.append(json.loads(message))

    def __aiter__(self):
        return self._receive()

    async def _receive(self):
        for message in self._incoming:
            yield message

    def types(self):
        return [m["type"] for m in self.sent]


class ClosedWebSocket(FakeWebSocket):
    async def send(self, message):
        raise ConnectionClosed(None, None)


class ServerTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.transport = FakeTransport(self.clock)
        self.transport.heads[PING] = [12.0]
        self.transport.sources[SOURCE] = source_for_speed(40, pieces=8)
        config = SpeedTestConfig(
            download_sources=[SOURCE],
            upload_sink=SINK,
            payload_size=4 * 64 * 1024,
            ping_endpoints=[PING],
            ping_delay=0,
            watchdog_seconds=5.0,
        )
        self.server = SpeedTestServer(config, transport=self.transport)

    def _connect(self, ws=None):
        ws = ws or FakeWebSocket()
        client_id = self.server.register(ws)
        self.server._orchestrators[client_id].clock = self.clock
        return client_id, ws

    async def _wait_until_active(self, client_id):
        orchestrator = self.server._orchestrators[client_id]
        for _ in range(100):
            if orchestrator.active:
                return
            await asyncio.sleep(0)
        self.fail("run never started")


class TestMessages(ServerTestCase):
    async def test_ping_pong(self):
        cid, ws = self._connect()
        await self.server.dispatch(cid, json.dumps({"type": "ping"}))
        self.assertEqual(ws.types(), ["pong"])
        self.assertIn("timestamp", ws.sent[0])

    async def test_status(self):
        cid, ws = self._connect()
        self._connect()
        await self.server.dispatch(cid, json.dumps({"type": "status"}))
        status = ws.sent[0]
        self.assertEqual(status["type"], "server-status")
        self.assertEqual(status["connectedClients"], 2)
        self.assertEqual(status["activeTests"], 0)

    async def test_unknown_type(self):
        cid, ws = self._connect()
        await self.server.dispatch(cid, json.dumps({"type": "reboot"}))
        self.assertEqual(ws.sent, [{"type": "error", "message": "Unknown message type: reboot"}])

    async def test_invalid_messages(self):
        cid, ws = self._connect()
        for raw in ("not json", json.dumps({"kind": "ping"}), json.dumps([1, 2])):
            await self.server.dispatch(cid, raw)
        self.assertEqual(ws.sent, [{"type": "error", "message": "Invalid message format"}] * 3)

    async def test_cancel_when_idle(self):
        cid, ws = self._connect()
        await self.server.dispatch(cid, json.dumps({"type": "cancel-test"}))
        self.assertEqual(ws.types(), ["cancelled"])

    async def test_send_to_closed_connection_is_ignored(self):
        cid, ws = self._connect(ClosedWebSocket())
        await self.server.dispatch(cid, json.dumps({"type": "ping"}))


class TestRuns(ServerTestCase):
    async def test_start_streams_events(self):
        cid, ws = self._connect()
        await self.server.dispatch(cid, json.dumps({"type": "start-speedtest"}))
        await self.server._tasks[cid]

        types = ws.types()
        self.assertEqual(types[0], "phase-started")
        self.assertEqual(types[-1], "complete")
        self.assertIn("progress", types)
        self.assertEqual(types.count("phase-completed"), 3)
        results = ws.sent[-1]["results"]
        self.assertEqual(results["ping"]["latency_ms"], 12)
        self.assertEqual(results["download"]["speed_mbps"], 40.0)

    async def test_duplicate_start_rejected(self):
        cid, ws = self._connect()
        await asyncio.gather(self.server._run_test(cid), self.server._run_test(cid))
        errors = [m for m in ws.sent if m["type"] == "error"]
        self.assertEqual(errors, [{"type": "error", "message": "Test already in progress"}])
        self.assertEqual(ws.types().count("complete"), 1)

    async def test_start_after_disconnect_is_dropped(self):
        cid, ws = self._connect()
        self.server._disconnect(cid)
        await self.server._run_test(cid)
        self.assertEqual(ws.sent, [])
        self.assertEqual(len(self.server.registry), 0)

    async def test_sessions_run_independently(self):
        a, ws_a = self._connect()
        b, ws_b = self._connect()
        await asyncio.gather(self.server._run_test(a), self.server._run_test(b))
        self.assertEqual(ws_a.types()[-1], "complete")
        self.assertEqual(ws_b.types()[-1], "complete")

    async def test_cancel_during_run(self):
        cid, ws = self._connect()
        await self.server.dispatch(cid, json.dumps({"type": "start-speedtest"}))
        await self._wait_until_active(cid)
        await self.server.dispatch(cid, json.dumps({"type": "cancel-test"}))
        await self.server._tasks[cid]

        self.assertIn("cancelled", ws.types())
        self.assertEqual(ws.sent[-1]["type"], "error")
        self.assertEqual(ws.sent[-1]["reason"], "cancelled")
        self.assertEqual(len(self.server.registry), 0)

    async def test_disconnect_stops_run(self):
        cid, ws = self._connect()
        await self.server.dispatch(cid, json.dumps({"type": "start-speedtest"}))
        task = self.server._tasks[cid]
        await self._wait_until_active(cid)

        self.server._disconnect(cid)
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.assertNotIn(cid, self.server.clients)
        self.assertEqual(len(self.server.registry), 0)


class TestHandler(ServerTestCase):
    async def test_connection_lifecycle(self):
        ws = FakeWebSocket([json.dumps({"type": "ping"})])
        await self.server.handler(ws)

        self.assertEqual(ws.types(), ["connected", "pong"])
        self.assertIn("clientId", ws.sent[0])
        self.assertEqual(self.server.clients, {})
        self.assertEqual(self.server._orchestrators, {})


if __name__ == "__main__":
    unittest.main()
