from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from .proto import now_ms, short_id

log = logging.getLogger("orion_relay.peers")

NowFn = Callable[[], int]


class PeerConnection(Protocol):
    """What the core needs from a transport connection."""

    peer_id: Optional[str]

    @property
    def is_open(self) -> bool: ...

    def send(self, frame: dict) -> None: ...

    def close(self) -> None: ...


@dataclass
class PeerRecord:
    id: str
    connection: PeerConnection
    public_key: Any = None
    origin_address: str = ""
    last_seen_at: int = field(default_factory=now_ms)

    def touch(self, now: int) -> None:
        self.last_seen_at = now


class PeerRegistry:
    """Peer id -> live connection and metadata. At most one record per id."""

    def __init__(self, records: Optional[Iterable[PeerRecord]] = None, now: NowFn = now_ms) -> None:
        self.now = now
        self._records: Dict[str, PeerRecord] = {}
        for rec in records or ():
            self._records[rec.id] = rec

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def register(
        self,
        peer_id: str,
        public_key: Any,
        connection: PeerConnection,
        origin_address: str = "",
    ) -> List[Tuple[str, Any]]:
        """Store (or overwrite) the record for ``peer_id``.

        Returns the other registered peers whose connection is still open.
        Announcing the new peer is left to the caller.
        """
        self._records[peer_id] = PeerRecord(
            id=peer_id,
            connection=connection,
            public_key=public_key,
            origin_address=origin_address,
            last_seen_at=self.now(),
        )
        log.info("Peer registered: %s from %s (%d total)", short_id(peer_id), origin_address or "?", len(self._records))
        return [(pid, key) for pid, key in self.list_active() if pid != peer_id]

    def get(self, peer_id: str) -> Optional[PeerRecord]:
        return self._records.get(peer_id)

    def touch(self, peer_id: Optional[str]) -> None:
        rec = self._records.get(peer_id) if peer_id else None
        if rec is not None:
            rec.touch(self.now())

    def remove(self, peer_id: str) -> Optional[PeerRecord]:
        # the connection stays open; closing it is the caller's call
        return self._records.pop(peer_id, None)

    def list_active(self) -> List[Tuple[str, Any]]:
        return [(pid, rec.public_key) for pid, rec in list(self._records.items()) if rec.connection.is_open]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def stale(self, now: int, timeout_ms: int) -> List[str]:
        """Ids silent for longer than ``timeout_ms``."""
        return [pid for pid, rec in list(self._records.items()) if now - rec.last_seen_at > timeout_ms]

    def ids(self) -> List[str]:
        return list(self._records)

    def shutdown(self) -> None:
        for rec in list(self._records.values()):
            try:
                rec.connection.close()
            except Exception:  # pragma: no cover - close is best effort
                log.exception("close failed for %s", short_id(rec.id))
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._records


__all__ = ["PeerConnection", "PeerRecord", "PeerRegistry"]
