from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from orion_relay.core.peers import PeerRegistry
from orion_relay.core.router import RelayRouter
from orion_relay.core.store import PendingStore


class FakeConnection:
    """Records frames instead of writing to a socket."""

    def __init__(self, origin_address: str = "127.0.0.1:5000") -> None:
        self.origin_address = origin_address
        self.peer_id: Optional[str] = None
        self.sent: List[Dict[str, Any]] = []
        self.open = True
        self.close_calls = 0

    @property
    def is_open(self) -> bool:
        return self.open

    def send(self, frame: dict) -> None:
        if self.open:
            self.sent.append(frame)

    def close(self) -> None:
        self.close_calls += 1
        self.open = False

    def types(self) -> List[str]:
        return [f["type"] for f in self.sent]

    def of_type(self, type_: str) -> List[Dict[str, Any]]:
        return [f for f in self.sent if f["type"] == type_]


class FakeClock:
    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.t = start

    def __call__(self) -> int:
        return self.t

    def advance(self, ms: int) -> None:
        self.t += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return PeerRegistry(now=clock)


@pytest.fixture
def store():
    return PendingStore()


@pytest.fixture
def router(registry, store):
    return RelayRouter(registry, store)


@pytest.fixture
def connect():
    """Factory for fresh fake connections."""

    def _connect(origin: str = "127.0.0.1:5000") -> FakeConnection:
        return FakeConnection(origin)

    return _connect
