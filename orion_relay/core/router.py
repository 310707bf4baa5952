from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Union

from . import fanout, proto
from .peers import NowFn, PeerConnection, PeerRegistry
from .proto import (
    Broadcast,
    Ping,
    ProtocolError,
    Register,
    Relay,
    RelayEnvelope,
    SyncRequest,
    SyncResponse,
    UnknownMessageType,
    short_id,
)
from .store import PendingStore

log = logging.getLogger("orion_relay.router")

Handler = Callable[[PeerConnection, Any], None]


class RelayRouter:
    """Routes parsed inbound messages against the registry and pending store.

    Every handler runs to completion without awaiting; sends are handed to
    the connection, which queues them. Nothing is acknowledged back to a
    relaying sender.
    """

    def __init__(self, registry: PeerRegistry, store: PendingStore, now: Optional[NowFn] = None) -> None:
        self.registry = registry
        self.store = store
        self.now = now or registry.now

        self._handlers: Dict[type, Handler] = {
            Register: self._on_register,
            Relay: self._on_relay,
            Broadcast: self._on_broadcast,
            SyncRequest: self._on_sync_request,
            SyncResponse: self._on_sync_response,
            Ping: self._on_ping,
        }
        missing = [cls.__name__ for cls in proto.INBOUND_VARIANTS if cls not in self._handlers]
        if missing:
            raise RuntimeError(f"no handler for inbound message(s): {', '.join(missing)}")

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def handle_raw(self, conn: PeerConnection, raw: Union[str, bytes]) -> None:
        try:
            message = proto.decode_inbound(raw)
        except UnknownMessageType as e:
            log.debug("Ignoring frame from %s: %s", short_id(conn.peer_id), e)
            return
        except ProtocolError as e:
            log.warning("Dropping malformed frame from %s: %s", short_id(conn.peer_id), e)
            return
        self.handle(conn, message)

    def handle(self, conn: PeerConnection, message: Any) -> None:
        if not conn.is_open:
            # closed by us (superseded or evicted); its backlog is stale
            log.debug("Dropping %s from closed connection of %s", type(message).__name__, short_id(conn.peer_id))
            return
        handler = self._handlers.get(type(message))
        if handler is None:
            log.debug("No handler for %r", type(message).__name__)
            return
        try:
            handler(conn, message)
        except Exception:
            log.exception("Error handling %s from %s", type(message).__name__, short_id(conn.peer_id))

    def on_disconnect(self, conn: PeerConnection) -> None:
        peer_id = conn.peer_id
        if not peer_id:
            return
        rec = self.registry.get(peer_id)
        if rec is not None and rec.connection is not conn:
            log.debug("Stale connection for %s closed", short_id(peer_id))
            return
        if rec is not None:
            self.registry.remove(peer_id)
        else:
            log.debug("%s was already evicted by the sweeper", short_id(peer_id))
        log.info("Peer disconnected: %s (%d remaining)", short_id(peer_id), len(self.registry))
        fanout.broadcast(self.registry, None, proto.make_peer_left(peer_id).to_frame())

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _on_register(self, conn: PeerConnection, msg: Register) -> None:
        peer_id = msg.peer_id
        previous_id = conn.peer_id
        if previous_id and previous_id != peer_id:
            self._release(conn, previous_id)

        existing = self.registry.get(peer_id)
        conn.peer_id = peer_id
        others = self.registry.register(peer_id, msg.public_key, conn, getattr(conn, "origin_address", ""))

        if existing is not None and existing.connection is not conn:
            log.info("Peer %s re-registered from a new connection; closing the old one", short_id(peer_id))
            # its later disconnect must not announce peer_left
            existing.connection.peer_id = None
            try:
                existing.connection.close()
            except Exception:
                log.exception("closing superseded connection for %s failed", short_id(peer_id))

        conn.send(proto.peers_frame(others))
        fanout.broadcast(self.registry, peer_id, proto.make_peer_joined(peer_id, msg.public_key).to_frame())

        pending = self.store.drain(peer_id)
        for env in pending:
            conn.send(env.to_frame())
        if pending:
            log.info("Delivered %d pending message(s) to %s", len(pending), short_id(peer_id))

    def _on_relay(self, conn: PeerConnection, msg: Relay) -> None:
        env = proto.make_message(conn.peer_id, msg.to, msg.payload, ts=self.now())
        if not self._deliver(msg.to, env):
            self.store.enqueue(msg.to, env)

    def _on_broadcast(self, conn: PeerConnection, msg: Broadcast) -> None:
        env = proto.make_broadcast(conn.peer_id, msg.payload, ts=self.now())
        fanout.broadcast(self.registry, conn.peer_id, env.to_frame())

    def _on_sync_request(self, conn: PeerConnection, msg: SyncRequest) -> None:
        env = proto.make_sync_request(conn.peer_id, msg.last_sync or 0)
        fanout.broadcast(self.registry, conn.peer_id, env.to_frame())

    def _on_sync_response(self, conn: PeerConnection, msg: SyncResponse) -> None:
        env = proto.make_sync_response(conn.peer_id, msg.to, msg.messages)
        if not self._deliver(msg.to, env):
            log.debug("Dropped sync_response for offline peer %s", short_id(msg.to))

    def _on_ping(self, conn: PeerConnection, msg: Ping) -> None:
        conn.send(proto.pong_frame())
        rec = self.registry.get(conn.peer_id) if conn.peer_id else None
        if rec is not None and rec.connection is conn:
            self.registry.touch(conn.peer_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _deliver(self, to: str, env: RelayEnvelope) -> bool:
        rec = self.registry.get(to)
        if rec is None or not rec.connection.is_open:
            return False
        try:
            rec.connection.send(env.to_frame())
        except Exception:
            log.exception("send to %s failed", short_id(to))
            return False
        return True

    def _release(self, conn: PeerConnection, peer_id: str) -> None:
        rec = self.registry.get(peer_id)
        if rec is None or rec.connection is not conn:
            return
        self.registry.remove(peer_id)
        log.info("Connection for %s switched id; releasing it", short_id(peer_id))
        fanout.broadcast(self.registry, None, proto.make_peer_left(peer_id).to_frame())


__all__ = ["RelayRouter"]
