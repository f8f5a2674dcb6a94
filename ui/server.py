"""
WebSocket push server for browser clients.

Every connection is a session.  Clients send JSON messages tagged with a
``type``; engine events come back as tagged JSON produced by
``ui.output.event_to_dict``.

Client -> server::

    {"type": "start-speedtest"}
    {"type": "cancel-test"}
    {"type": "ping"}
    {"type": "status"}

Server -> client: ``connected``, ``phase-started``, ``progress``,
``phase-completed``, ``phase-failed``, ``complete``, ``error``,
``cancelled``, ``pong``, ``server-status``.
"""
from __future__ import annotations

import asyncio
import json
import logging
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from websockets.asyncio.server import ServerConnection, broadcast, serve
from websockets.exceptions import ConnectionClosed

from meter.config import SpeedTestConfig
from meter.errors import TestAlreadyInProgress
from meter.models import Event
from meter.orchestrator import SpeedTestOrchestrator
from meter.session import ActiveRunRegistry
from meter.transport import AiohttpTransport, HttpTransport

from .output import event_to_dict

logger = logging.getLogger(__name__)

STATUS_INTERVAL = 30.0  # seconds between server-status broadcasts


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_client_id() -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"


class SpeedTestServer:
    """Routes client messages to one orchestrator per connection."""

    def __init__(
        self,
        config: Optional[SpeedTestConfig] = None,
        transport: Optional[HttpTransport] = None,
        host: str = "localhost",
        port: int = 3000,
    ) -> None:
        self.config = config or SpeedTestConfig()
        self.transport = transport
        self.host = host
        self.port = port
        self.registry = ActiveRunRegistry()
        self.clients: Dict[str, ServerConnection] = {}
        self._orchestrators: Dict[str, SpeedTestOrchestrator] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._started = time.monotonic()

    # -- Serving ------------------------------------------------------------

    async def serve_forever(self) -> None:
        if self.transport is not None:
            await self._serve()
            return
        async with AiohttpTransport() as transport:
            self.transport = transport
            await self._serve()

    async def _serve(self) -> None:
        async with serve(self.handler, self.host, self.port) as server:
            logger.info("WebSocket endpoint: ws://%s:%d", self.host, self.port)
            broadcaster = asyncio.create_task(self._broadcast_status_loop())
            try:
                await server.serve_forever()
            finally:
                broadcaster.cancel()

    async def handler(self, websocket: ServerConnection) -> None:
        client_id = self.register(websocket)
        await self._send(websocket, {
            "type": "connected",
            "clientId": client_id,
            "message": "Connected to speedmeter server",
            "timestamp": _now(),
        })

        try:
            async for message in websocket:
                await self.dispatch(client_id, message)
        except ConnectionClosed:
            pass
        finally:
            self._disconnect(client_id)

    def register(self, websocket: ServerConnection) -> str:
        """Create the session for a new connection and return its id."""
        client_id = _new_client_id()
        self.clients[client_id] = websocket
        self._orchestrators[client_id] = SpeedTestOrchestrator(
            self.transport,
            config=self.config,
            registry=self.registry,
            session_id=client_id,
        )
        logger.info("Client %s connected. Total clients: %d", client_id, len(self.clients))
        return client_id

    # -- Message routing ----------------------------------------------------

    async def dispatch(self, client_id: str, message: Any) -> None:
        websocket = self.clients[client_id]
        try:
            data = json.loads(message)
            msg_type = data["type"]
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning("Bad message from %s: %s", client_id, exc)
            await self._send(websocket, {"type": "error", "message": "Invalid message format"})
            return

        if msg_type == "start-speedtest":
            # A duplicate start still goes through run() so the registry
            # rejects it; only the first task is tracked for disconnect.
            task = asyncio.create_task(self._run_test(client_id))
            current = self._tasks.get(client_id)
            if current is None or current.done():
                self._tasks[client_id] = task
        elif msg_type == "cancel-test":
            orchestrator = self._orchestrators[client_id]
            if orchestrator.active:
                orchestrator.cancel()
            await self._send(websocket, {"type": "cancelled", "message": "Test cancelled"})
        elif msg_type == "ping":
            await self._send(websocket, {"type": "pong", "timestamp": _now()})
        elif msg_type == "status":
            await self._send(websocket, self.status())
        else:
            await self._send(websocket, {
                "type": "error",
                "message": f"Unknown message type: {msg_type}",
            })

    async def _run_test(self, client_id: str) -> None:
        websocket = self.clients.get(client_id)
        orchestrator = self._orchestrators.get(client_id)
        if websocket is None or orchestrator is None:
            logger.debug("Client %s left before its test started", client_id)
            return

        async def _emit(event: Event) -> None:
            await self._send(websocket, event_to_dict(event))

        try:
            test_run = await orchestrator.run(_emit)
        except TestAlreadyInProgress:
            await self._send(websocket, {"type": "error", "message": "Test already in progress"})
            return
        except Exception:
            # Already reported to the client as a RunFailed event.
            logger.exception("Speed test for %s crashed", client_id)
            return
        logger.info("Client %s run %s finished: %s", client_id, test_run.id, test_run.status.value)

    def _disconnect(self, client_id: str) -> None:
        self.clients.pop(client_id, None)
        orchestrator = self._orchestrators.pop(client_id, None)
        if orchestrator is not None:
            orchestrator.cancel()
        task = self._tasks.pop(client_id, None)
        if task is not None and not task.done():
            task.cancel()
        logger.info("Client %s disconnected. Total clients: %d", client_id, len(self.clients))

    # -- Status ---------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        return {
            "type": "server-status",
            "connectedClients": len(self.clients),
            "activeTests": len(self.registry),
            "uptime": round(time.monotonic() - self._started, 1),
            "timestamp": _now(),
        }

    async def _broadcast_status_loop(self) -> None:
        while True:
            await asyncio.sleep(STATUS_INTERVAL)
            if self.clients:
                broadcast(list(self.clients.values()), json.dumps(self.status()))

    @staticmethod
    async def _send(websocket: ServerConnection, payload: Dict[str, Any]) -> None:
        try:
            await websocket.send(json.dumps(payload))
        except ConnectionClosed:
            logger.debug("Dropped %s message for a closed connection", payload.get("type"))
