"""WebSocket front end for Voxline.

One connection carries one session. Binary frames are audio (raw PCM16
or a complete encoded recording); text frames are JSON inbound messages.
Outbound events are sent as JSON text frames in emission order.

The session id is taken from the connection path (``/ws/<id>`` or
``?session_id=<id>``); a random one is assigned otherwise. Dropping the
connection does not end the session: a client reconnecting with the same
id keeps its history until it sends ``session_end`` or goes idle.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from http import HTTPStatus
from typing import Any
from urllib.parse import parse_qs, urlsplit

import websockets.asyncio.server
from loguru import logger
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed

from voxline.config import CoreConfig, load_config
from voxline.core.events import ErrorEvent, SessionEnd, parse_inbound
from voxline.errors import ErrorKind
from voxline.providers.registry import build_adapters
from voxline.session import SessionRegistry

HEALTH_PATH = "/health"


def session_id_from_path(path: str) -> str | None:
    """Extract a session id from ``/ws/<id>`` or a ``session_id`` query parameter."""
    parts = urlsplit(path)
    query = parse_qs(parts.query)
    if query.get("session_id"):
        return query["session_id"][0] or None
    segments = [s for s in parts.path.split("/") if s]
    if len(segments) >= 2 and segments[0] == "ws":
        return segments[1]
    return None


class VoxlineServer:
    """Accepts client connections and routes them to a SessionRegistry.

    Usage:
        server = VoxlineServer(registry, host="0.0.0.0", port=8765)
        await server.start()
        # ... later
        await server.stop()
    """

    def __init__(
        self,
        registry: SessionRegistry,
        host: str = "0.0.0.0",
        port: int = 8765,
        reap_interval_s: float = 30.0,
    ) -> None:
        self.registry = registry
        self.host = host
        self.port = port
        self.reap_interval_s = reap_interval_s
        self._server: Any = None
        self._reaper: asyncio.Task | None = None
        self._attached: set[str] = set()

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def _process_request(self, connection, request):
        if request.path == HEALTH_PATH:
            return connection.respond(HTTPStatus.OK, f"ok sessions={self.registry.active_count}\n")
        return None

    async def _handle(self, websocket) -> None:
        session_id = session_id_from_path(websocket.request.path) or uuid.uuid4().hex
        if session_id in self._attached:
            logger.warning(f"[session={session_id}] already attached, rejecting connection")
            await websocket.close(code=1008, reason="session already attached")
            return

        self._attached.add(session_id)
        self.registry.get_or_create(session_id)
        logger.info(f"[session={session_id}] client connected: {websocket.remote_address}")
        sender = asyncio.create_task(self._forward_events(websocket, session_id))

        try:
            async for message in websocket:
                if not await self._on_message(session_id, message):
                    break
        except ConnectionClosed:
            pass
        finally:
            self._attached.discard(session_id)
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
            logger.info(f"[session={session_id}] client disconnected")

        await websocket.close()

    async def _on_message(self, session_id: str, message: bytes | str) -> bool:
        """Dispatch one frame. Returns False once the session has ended."""
        if isinstance(message, bytes):
            await self.registry.on_audio_chunk(session_id, message)
            return True

        try:
            payload = json.loads(message)
            if not isinstance(payload, dict):
                raise ValueError("message must be a JSON object")
            payload.setdefault("session_id", session_id)
            if payload["session_id"] != session_id:
                raise ValueError(f"session_id {payload['session_id']!r} does not match connection")
            inbound = parse_inbound(payload)
        except (ValueError, ValidationError) as e:
            logger.warning(f"[session={session_id}] invalid message: {e}")
            await self._report(session_id, f"Invalid message: {e}")
            return True

        await self.registry.dispatch(inbound)
        return not isinstance(inbound, SessionEnd)

    async def _forward_events(self, websocket, session_id: str) -> None:
        try:
            async for event in self.registry.events(session_id):
                await websocket.send(json.dumps(event.to_wire()))
            # session ended or was reaped
            await websocket.close()
        except ConnectionClosed:
            logger.debug(f"[session={session_id}] connection closed while sending")
        except KeyError:
            logger.debug(f"[session={session_id}] session gone before events attached")

    async def _report(self, session_id: str, message: str) -> None:
        session = self.registry.get(session_id)
        if session is not None:
            await session.outbox.put(
                ErrorEvent(session_id=session_id, kind=ErrorKind.FORMAT, message=message)
            )

    # ------------------------------------------------------------------
    # Idle reaping
    # ------------------------------------------------------------------

    async def _reap_forever(self) -> None:
        while True:
            await asyncio.sleep(self.reap_interval_s)
            removed = await self.registry.reap_idle()
            if removed:
                logger.info(f"Reaped {removed} idle session(s), {self.registry.active_count} active")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start listening."""
        self._server = await websockets.asyncio.server.serve(
            self._handle,
            self.host,
            self.port,
            process_request=self._process_request,
        )
        self._reaper = asyncio.create_task(self._reap_forever())
        logger.info(f"Voxline listening on ws://{self.host}:{self.port}/ws")

    async def stop(self) -> None:
        """Stop listening and end every session."""
        if self._reaper:
            self._reaper.cancel()
            try:
                await self._reaper
            except asyncio.CancelledError:
                pass
            self._reaper = None
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        await self.registry.close_all()
        logger.info("Voxline server stopped")

    async def serve_forever(self) -> None:
        """Start and run the server until cancelled."""
        await self.start()
        try:
            await asyncio.Future()
        except asyncio.CancelledError:
            await self.stop()


async def serve(config: CoreConfig | dict | str | None = None) -> None:
    """Build adapters and sessions from config and serve until cancelled."""
    core = load_config(config)
    adapters = build_adapters(core)
    registry = SessionRegistry(core, *adapters)
    server = VoxlineServer(
        registry,
        host=core.server.host,
        port=core.server.port,
        reap_interval_s=core.server.reap_interval_s,
    )
    try:
        await server.serve_forever()
    finally:
        for adapter in adapters:
            await adapter.close()


def run_server(config: CoreConfig | dict | str | None = None) -> None:
    """Blocking entry point."""
    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        logger.info("Voxline stopped")
