from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Dict, Iterable, List, Mapping, Optional

from .proto import RelayEnvelope, short_id

log = logging.getLogger("orion_relay.store")


class PendingStore:
    """In-memory FIFO queues of envelopes waiting for an offline peer.

    Nothing here survives a restart; envelopes live until their destination
    registers or the retention window runs out.
    """

    def __init__(self, queues: Optional[Mapping[str, Iterable[RelayEnvelope]]] = None) -> None:
        self._queues: Dict[str, Deque[RelayEnvelope]] = {}
        for to, envelopes in (queues or {}).items():
            q = deque(envelopes)
            if q:
                self._queues[to] = q

    def enqueue(self, to: str, envelope: RelayEnvelope) -> None:
        q = self._queues.get(to)
        if q is None:
            q = self._queues[to] = deque()
        q.append(envelope)
        log.info("Message held for %s (offline, %d queued)", short_id(to), len(q))

    def drain(self, to: str) -> List[RelayEnvelope]:
        q = self._queues.pop(to, None)
        return list(q) if q else []

    def prune_expired(self, now: int, ttl_ms: int) -> int:
        """Drop envelopes with ``now - created_at >= ttl_ms``; returns how many."""
        dropped = 0
        for to in list(self._queues):
            q = self._queues[to]
            kept = deque(env for env in q if now - env.created_at < ttl_ms)
            dropped += len(q) - len(kept)
            if not kept:
                del self._queues[to]
            elif len(kept) != len(q):
                self._queues[to] = kept
        if dropped:
            log.info("Pruned %d expired message(s)", dropped)
        return dropped

    def pending_count(self, to: str) -> int:
        q = self._queues.get(to)
        return len(q) if q else 0

    def total(self) -> int:
        return sum(len(q) for q in self._queues.values())

    def shutdown(self) -> None:
        self._queues.clear()

    def __len__(self) -> int:
        return len(self._queues)

    def __contains__(self, to: object) -> bool:
        return to in self._queues


__all__ = ["PendingStore"]
