from orion_relay.core import proto
from orion_relay.core.store import PendingStore

DAY_MS = 24 * 60 * 60 * 1000


def _msg(payload, ts, to="x"):
    return proto.make_message("a", to, payload, ts=ts)


def test_enqueue_then_drain_keeps_order(store):
    for i in range(3):
        store.enqueue("x", _msg(i, ts=i))
    assert store.pending_count("x") == 3

    drained = store.drain("x")
    assert [e.payload for e in drained] == [0, 1, 2]
    assert "x" not in store
    assert store.drain("x") == []


def test_queues_are_per_destination(store):
    store.enqueue("x", _msg("to-x", 1))
    store.enqueue("y", _msg("to-y", 1, to="y"))
    assert len(store) == 2
    assert store.total() == 2
    assert [e.payload for e in store.drain("y")] == ["to-y"]
    assert store.pending_count("x") == 1


def test_prune_removes_expired_and_empty_queues(store):
    t0 = 1_000_000
    store.enqueue("x", _msg("old", t0))
    store.enqueue("x", _msg("fresh", t0 + 10))
    store.enqueue("y", _msg("old-y", t0, to="y"))

    dropped = store.prune_expired(t0 + DAY_MS, DAY_MS)

    assert dropped == 2
    assert "y" not in store
    assert [e.payload for e in store.drain("x")] == ["fresh"]


def test_prune_boundary_is_inclusive(store):
    store.enqueue("x", _msg("edge", 0))
    assert store.prune_expired(DAY_MS - 1, DAY_MS) == 0
    assert store.prune_expired(DAY_MS, DAY_MS) == 1
    assert len(store) == 0


def test_injected_queues_and_shutdown():
    s = PendingStore(queues={"x": [_msg(1, 1), _msg(2, 2)], "empty": []})
    assert len(s) == 1
    assert s.pending_count("x") == 2
    s.shutdown()
    assert s.total() == 0
