from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import websockets
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.protocol import State

from orion_relay.core import proto
from orion_relay.core.peers import PeerRegistry
from orion_relay.core.router import RelayRouter
from orion_relay.core.store import PendingStore
from orion_relay.core.sweeper import LivenessSweeper
from orion_relay.server.config import DEFAULTS, validate

log = logging.getLogger("orion_relay.server.runtime")


@dataclass(slots=True, eq=False)
class Connection:
    """WebSocket side of a peer.

    ``send`` and ``close`` never block: frames go onto an outbox that a writer
    task drains in order. Once the socket is closed or a send fails, further
    frames are dropped.
    """

    websocket: ServerConnection
    origin_address: str = ""
    peer_id: Optional[str] = None
    _outbox: asyncio.Queue = field(default_factory=asyncio.Queue)
    _closed: bool = False
    _writer: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return not self._closed and self.websocket.state is State.OPEN

    def send(self, frame: Dict[str, Any]) -> None:
        if self._closed:
            return
        self._outbox.put_nowait(proto.encode_frame(frame))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._outbox.put_nowait(None)

    def start(self) -> None:
        self._writer = asyncio.get_running_loop().create_task(self._write_loop())

    async def aclose(self) -> None:
        self._closed = True
        writer, self._writer = self._writer, None
        if writer is not None and not writer.done():
            writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)

    async def _write_loop(self) -> None:
        while True:
            text = await self._outbox.get()
            try:
                if text is None:
                    await self.websocket.close()
                    return
                await self.websocket.send(text)
            except websockets.ConnectionClosed:
                log.debug("Send to %s skipped, connection closed", proto.short_id(self.peer_id))
                self._closed = True
                return
            except Exception:
                log.exception("Send to %s failed", proto.short_id(self.peer_id))
                self._closed = True
                return


class ServerRuntime:
    """Orion relay server: WebSocket listener around the relay core."""

    def __init__(self, config: Dict[str, Any]) -> None:
        self.cfg = validate({**DEFAULTS, **config})
        self.listen_host: str = self.cfg["host"]
        self.listen_port: int = self.cfg["port"]
        self.stats_interval_secs: float = self.cfg["stats_interval_secs"]

        self.registry = PeerRegistry()
        self.store = PendingStore()
        self.router = RelayRouter(self.registry, self.store)
        self.sweeper = LivenessSweeper(
            self.registry,
            self.store,
            interval_s=self.cfg["sweep_interval_secs"],
            liveness_timeout_ms=int(self.cfg["liveness_timeout_secs"] * 1000),
            message_ttl_ms=int(self.cfg["message_ttl_secs"] * 1000),
        )

        self._connections: set[Connection] = set()
        self._ws_server: Optional[Server] = None
        self._tasks: list[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._ws_server = await serve(self._handle_connection, self.listen_host, self.listen_port)
        log.info("Orion relay listening on ws://%s:%d", self.listen_host, self.bound_port)

        self.sweeper.start()
        if self.stats_interval_secs > 0:
            self._tasks.append(asyncio.create_task(self._stats_loop(), name="stats"))

    async def stop(self) -> None:
        log.info("Shutting down")
        if self._ws_server is not None:
            self._ws_server.close()
            await self._ws_server.wait_closed()
            self._ws_server = None

        await self.sweeper.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        for conn in list(self._connections):
            await conn.aclose()
        self._connections.clear()
        self.registry.shutdown()
        self.store.shutdown()
        log.info("Server closed")

    @property
    def bound_port(self) -> int:
        if self._ws_server is None:
            return self.listen_port
        for sock in self._ws_server.sockets:
            return sock.getsockname()[1]
        return self.listen_port

    def stats(self) -> Dict[str, int]:
        return {
            "connections": len(self._connections),
            "peers": len(self.registry),
            "pending_queues": len(self.store),
            "pending_messages": self.store.total(),
        }

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        conn = Connection(websocket=websocket, origin_address=self._origin_address(websocket))
        conn.start()
        self._connections.add(conn)
        log.info("New connection from %s", conn.origin_address)
        try:
            async for raw in websocket:
                try:
                    self.router.handle_raw(conn, raw)
                except Exception:
                    log.exception("Error processing frame from %s", conn.origin_address)
        except websockets.ConnectionClosed:
            pass
        finally:
            await conn.aclose()
            self._connections.discard(conn)
            self.router.on_disconnect(conn)

    async def _stats_loop(self) -> None:
        while True:
            await asyncio.sleep(self.stats_interval_secs)
            s = self.stats()
            log.info("Stats: %d peers connected, %d with pending messages", s["peers"], s["pending_queues"])

    @staticmethod
    def _origin_address(websocket: ServerConnection) -> str:
        request = getattr(websocket, "request", None)
        if request is not None:
            forwarded = request.headers.get("X-Forwarded-For")
            if forwarded:
                return forwarded.split(",")[0].strip()
        peer = websocket.remote_address
        if isinstance(peer, tuple):
            return f"{peer[0]}:{peer[1]}"
        return str(peer)


__all__ = ["Connection", "ServerRuntime"]
