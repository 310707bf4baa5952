from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Tuple

from .peers import NowFn, PeerRegistry
from .proto import short_id
from .store import PendingStore

log = logging.getLogger("orion_relay.sweeper")

SleepFn = Callable[[float], Awaitable[None]]

SWEEP_INTERVAL_S = 60.0
LIVENESS_TIMEOUT_MS = 5 * 60 * 1000
MESSAGE_TTL_MS = 24 * 60 * 60 * 1000


class LivenessSweeper:
    """Evicts silent peers and expires buffered messages on a timer."""

    def __init__(
        self,
        registry: PeerRegistry,
        store: PendingStore,
        *,
        interval_s: float = SWEEP_INTERVAL_S,
        liveness_timeout_ms: int = LIVENESS_TIMEOUT_MS,
        message_ttl_ms: int = MESSAGE_TTL_MS,
        now: Optional[NowFn] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.store = store
        self.interval_s = interval_s
        self.liveness_timeout_ms = liveness_timeout_ms
        self.message_ttl_ms = message_ttl_ms
        self.now = now or registry.now
        self.sleep = sleep
        self._task: Optional[asyncio.Task] = None

    def tick(self) -> Tuple[List[str], int]:
        """One sweep. Returns (evicted peer ids, number of pruned envelopes)."""
        now = self.now()
        evicted: List[str] = []
        for peer_id in self.registry.stale(now, self.liveness_timeout_ms):
            rec = self.registry.get(peer_id)
            if rec is None:
                continue
            try:
                rec.connection.close()
            except Exception:
                log.exception("closing %s failed", short_id(peer_id))
            # close() may already have run the disconnect path
            if self.registry.get(peer_id) is rec:
                self.registry.remove(peer_id)
            evicted.append(peer_id)
            log.info("Peer evicted for inactivity: %s", short_id(peer_id))

        pruned = self.store.prune_expired(now, self.message_ttl_ms)
        return evicted, pruned

    async def run(self) -> None:
        while True:
            await self.sleep(self.interval_s)
            try:
                self.tick()
            except Exception:
                log.exception("sweep failed")

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self.run(), name="liveness-sweeper")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()


__all__ = ["LivenessSweeper", "SWEEP_INTERVAL_S", "LIVENESS_TIMEOUT_MS", "MESSAGE_TTL_MS"]
