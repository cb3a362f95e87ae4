"""Connection registry and queue subscriber tests.

Pattern: test_<verb>_<noun>_<scenario>
"""

import asyncio
import random
import threading

import pytest

from storefront.realtime import (
    ConnectionRegistry,
    QueueSubscriber,
    RegistryClosedError,
    SubscriberClosedError,
)
from storefront.realtime.registry import TIMEOUT


class RecordingSubscriber:
    def __init__(self, subscriber_id: str):
        self.id = subscriber_id
        self.events: list[dict] = []
        self.terminated = False

    def push(self, event):
        self.events.append(event)

    def terminate(self):
        self.terminated = True


# ═══════════════════════════════════════════════════════════
# Membership
# ═══════════════════════════════════════════════════════════


def test_register_and_unregister_membership():
    registry = ConnectionRegistry()
    a, b, c = (RecordingSubscriber(x) for x in "abc")
    for s in (a, b, c):
        registry.register(s)
    registry.unregister("b")

    assert registry.ids() == {"a", "c"}
    assert len(registry) == 2
    assert "b" not in registry
    assert "a" in registry


def test_unregister_unknown_id_is_noop():
    registry = ConnectionRegistry()
    registry.register(RecordingSubscriber("a"))

    registry.unregister("missing")
    registry.unregister("a")
    registry.unregister("a")

    assert len(registry) == 0


def test_register_same_id_twice_keeps_one_entry():
    registry = ConnectionRegistry()
    registry.register(RecordingSubscriber("a"))
    registry.register(RecordingSubscriber("a"))
    assert len(registry) == 1


def test_membership_matches_random_register_unregister_sequence():
    """Registered minus unregistered, for any interleaving."""
    rng = random.Random(7)
    registry = ConnectionRegistry()
    expected: set[str] = set()
    for _ in range(500):
        sid = f"s{rng.randint(0, 20)}"
        if rng.random() < 0.6:
            registry.register(RecordingSubscriber(sid))
            expected.add(sid)
        else:
            registry.unregister(sid)
            expected.discard(sid)
        assert registry.ids() == expected


def test_concurrent_threads_register_and_unregister():
    registry = ConnectionRegistry()

    def worker(prefix: str):
        for i in range(200):
            registry.register(RecordingSubscriber(f"{prefix}-{i}"))
            if i % 2:
                registry.unregister(f"{prefix}-{i}")
            registry.snapshot()

    threads = [threading.Thread(target=worker, args=(f"t{n}",)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(registry) == 8 * 100
    assert all(int(sid.split("-")[1]) % 2 == 0 for sid in registry.ids())


# ═══════════════════════════════════════════════════════════
# Iteration
# ═══════════════════════════════════════════════════════════


def test_for_each_applies_to_snapshot_at_call_time():
    registry = ConnectionRegistry()
    registry.register(RecordingSubscriber("a"))
    registry.register(RecordingSubscriber("b"))
    seen = []

    def visit(subscriber):
        seen.append(subscriber.id)
        # Added mid-iteration: not part of this pass
        registry.register(RecordingSubscriber(f"late-{subscriber.id}"))

    registry.for_each(visit)

    assert sorted(seen) == ["a", "b"]
    assert len(registry) == 4


# ═══════════════════════════════════════════════════════════
# Shutdown
# ═══════════════════════════════════════════════════════════


def test_close_terminates_subscribers_and_rejects_new_ones():
    registry = ConnectionRegistry()
    a = RecordingSubscriber("a")
    registry.register(a)

    registry.close()

    assert a.terminated
    assert len(registry) == 0
    assert registry.closed
    with pytest.raises(RegistryClosedError):
        registry.register(RecordingSubscriber("b"))
    # Still idempotent after close
    registry.unregister("a")


# ═══════════════════════════════════════════════════════════
# QueueSubscriber
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_queue_subscriber_delivers_in_push_order():
    sub = QueueSubscriber(maxsize=10)
    for n in range(5):
        sub.push({"n": n})
    received = [await sub.next_event() for _ in range(5)]
    assert [e["n"] for e in received] == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_queue_subscriber_full_queue_raises():
    sub = QueueSubscriber(maxsize=1)
    sub.push({"n": 1})
    with pytest.raises(asyncio.QueueFull):
        sub.push({"n": 2})


@pytest.mark.asyncio
async def test_queue_subscriber_terminate_wakes_reader():
    sub = QueueSubscriber()
    reader = asyncio.create_task(sub.next_event())
    await asyncio.sleep(0)
    sub.terminate()
    assert await asyncio.wait_for(reader, timeout=1) is None


@pytest.mark.asyncio
async def test_queue_subscriber_push_after_terminate_raises():
    sub = QueueSubscriber()
    sub.terminate()
    with pytest.raises(SubscriberClosedError):
        sub.push({"n": 1})
    assert await sub.next_event() is None


@pytest.mark.asyncio
async def test_queue_subscriber_ids_are_unique():
    ids = {QueueSubscriber().id for _ in range(100)}
    assert len(ids) == 100


@pytest.mark.asyncio
async def test_queue_subscriber_timeout_then_event():
    sub = QueueSubscriber()
    assert await sub.next_event(timeout=0.01) is TIMEOUT

    sub.push({"n": 1})
    assert await sub.next_event(timeout=1) == {"n": 1}


@pytest.mark.asyncio
async def test_queue_subscriber_keeps_event_taken_by_cancelled_wait():
    """An event dequeued for a wait that was then cancelled goes to the next call."""
    sub = QueueSubscriber()
    reader = asyncio.create_task(sub.next_event())
    await asyncio.sleep(0)

    sub.push({"n": 1})
    reader.cancel()
    with pytest.raises(asyncio.CancelledError):
        await reader
    sub.push({"n": 2})

    assert await sub.next_event(timeout=1) == {"n": 1}
    assert await sub.next_event(timeout=1) == {"n": 2}


@pytest.mark.asyncio
async def test_queue_subscriber_terminate_during_timed_wait():
    sub = QueueSubscriber()
    asyncio.get_running_loop().call_later(0.01, sub.terminate)
    assert await sub.next_event(timeout=5) is None
