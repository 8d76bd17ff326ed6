"""
test_broker.py — Tests for the marker change event broker.

Covers:
    • Observer queue behaviour (deliver, receive, close, overflow)
    • Subscribe / unsubscribe bookkeeping and idempotency
    • Publish fan-out: one delivery per live observer, none after unsubscribe
    • Self-healing removal of broken observers
    • Ordering and snapshot semantics
    • SSE framing and stream teardown
    • Concurrent subscribe/unsubscribe during publish

Run with:
    pytest tests/test_broker.py -v
"""

from __future__ import annotations

import asyncio
import json
import threading

import pytest

from safety_backend.app.core.errors import ObserverLimitError
from safety_backend.app.markers.models import ChangeEvent, ChangeKind, Marker
from safety_backend.app.realtime.broker import EventBroker, Observer, ObserverClosed
from safety_backend.app.realtime.sse import KEEPALIVE_FRAME, format_sse, stream_events
from safety_backend.app.spatial.coords import Coordinates


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

BANGALORE_LAT = 12.9716
BANGALORE_LON = 77.5946


def _created(description: str = "") -> ChangeEvent:
    return ChangeEvent.marker_created(
        Marker(latitude=BANGALORE_LAT, longitude=BANGALORE_LON, description=description)
    )


def _deleted() -> ChangeEvent:
    return ChangeEvent.marker_deleted(Coordinates(BANGALORE_LAT, BANGALORE_LON))


def _drain(observer: Observer) -> list:
    """Collect everything currently queued on ``observer``."""
    async def collect():
        events = []
        while observer.pending:
            try:
                event = await observer.receive(timeout=0.1)
            except ObserverClosed:
                break
            if event is None:
                break
            events.append(event)
        return events
    return asyncio.run(collect())


@pytest.fixture
def broker() -> EventBroker:
    return EventBroker(queue_size=8)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Observer
# ═══════════════════════════════════════════════════════════════════════════

class TestObserver:

    def test_deliver_then_receive(self):
        observer = Observer(queue_size=4)
        event = _created("a")
        assert observer.deliver(event) is True
        assert _drain(observer) == [event]

    def test_deliver_after_close_fails(self):
        observer = Observer()
        observer.close()
        assert observer.closed is True
        assert observer.deliver(_created()) is False

    def test_deliver_fails_when_queue_full(self):
        observer = Observer(queue_size=2)
        assert observer.deliver(_created("1"))
        assert observer.deliver(_created("2"))
        assert observer.deliver(_created("3")) is False

    def test_close_is_idempotent(self):
        observer = Observer(queue_size=1)
        observer.deliver(_created())
        observer.close()
        observer.close()
        assert observer.pending == 2  # one event + one close marker

    def test_receive_raises_after_close(self):
        observer = Observer()
        observer.close()

        async def scenario():
            with pytest.raises(ObserverClosed):
                await observer.receive(timeout=0.5)

        asyncio.run(scenario())

    def test_receive_timeout_returns_none(self):
        observer = Observer()
        assert asyncio.run(observer.receive(timeout=0.01)) is None

    def test_close_wakes_pending_receive(self):
        observer = Observer()

        async def scenario():
            waiter = asyncio.ensure_future(observer.receive())
            await asyncio.sleep(0)
            observer.close()
            with pytest.raises(ObserverClosed):
                await asyncio.wait_for(waiter, 1.0)

        asyncio.run(scenario())

    def test_async_iteration_stops_on_close(self):
        observer = Observer()
        first, second = _created("1"), _deleted()
        observer.deliver(first)
        observer.deliver(second)
        observer.close()

        async def scenario():
            return [event async for event in observer]

        assert asyncio.run(scenario()) == [first, second]

    def test_ids_are_unique(self):
        assert len({Observer().id for _ in range(10)}) == 10


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Subscribe / Unsubscribe
# ═══════════════════════════════════════════════════════════════════════════

class TestSubscription:

    def test_subscribe_registers_observer(self, broker):
        broker.subscribe()
        broker.subscribe()
        assert broker.observer_count == 2

    def test_unsubscribe_removes_and_closes(self, broker):
        observer = broker.subscribe()
        broker.unsubscribe(observer)
        assert broker.observer_count == 0
        assert observer.closed is True

    def test_unsubscribe_twice_is_safe(self, broker):
        observer = broker.subscribe()
        broker.unsubscribe(observer)
        broker.unsubscribe(observer)
        assert broker.observer_count == 0

    def test_unsubscribe_unknown_observer_is_safe(self, broker):
        stranger = Observer()
        broker.unsubscribe(stranger)
        assert broker.observer_count == 0

    def test_unsubscribe_after_self_close(self, broker):
        observer = broker.subscribe()
        observer.close()
        broker.unsubscribe(observer)
        assert broker.observer_count == 0

    def test_unlimited_by_default(self):
        broker = EventBroker()
        for _ in range(500):
            broker.subscribe()
        assert broker.observer_count == 500

    def test_observer_cap_enforced(self):
        broker = EventBroker(max_observers=2)
        broker.subscribe()
        broker.subscribe()
        with pytest.raises(ObserverLimitError):
            broker.subscribe()
        assert broker.observer_count == 2

    def test_cap_frees_up_after_unsubscribe(self):
        broker = EventBroker(max_observers=1)
        first = broker.subscribe()
        broker.unsubscribe(first)
        broker.subscribe()
        assert broker.observer_count == 1

    def test_close_closes_everyone(self, broker):
        observers = [broker.subscribe() for _ in range(3)]
        broker.close()
        assert broker.observer_count == 0
        assert all(o.closed for o in observers)


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Publish
# ═══════════════════════════════════════════════════════════════════════════

class TestPublish:

    def test_no_observers_is_a_noop(self, broker):
        assert broker.publish(_created()) == 0

    def test_one_delivery_per_live_observer(self, broker):
        observers = [broker.subscribe() for _ in range(5)]
        event = _created()
        assert broker.publish(event) == 5
        for observer in observers:
            assert observer.pending == 1
            assert _drain(observer) == [event]

    def test_unsubscribed_observer_gets_nothing(self, broker):
        keep = broker.subscribe()
        gone = broker.subscribe()
        broker.unsubscribe(gone)

        broker.publish(_created())

        assert keep.pending == 1
        # only the close marker is left on the unsubscribed observer
        assert _drain(gone) == []

    def test_closed_observer_is_dropped_and_others_still_served(self, broker):
        healthy_a = broker.subscribe()
        broken = broker.subscribe()
        healthy_b = broker.subscribe()
        broken.close()  # sink died without unsubscribing

        delivered = broker.publish(_created())

        assert delivered == 2
        assert broker.observer_count == 2
        assert healthy_a.pending == 1
        assert healthy_b.pending == 1

    def test_backed_up_observer_is_dropped(self):
        broker = EventBroker(queue_size=2)
        slow = broker.subscribe()
        fast = broker.subscribe()

        for i in range(3):
            broker.publish(_created(str(i)))
            _drain(fast)

        assert slow.closed is True
        assert broker.observer_count == 1
        assert fast.closed is False

    def test_events_arrive_in_publish_order(self, broker):
        observers = [broker.subscribe() for _ in range(3)]
        first, second, third = _created("1"), _deleted(), _created("3")
        for event in (first, second, third):
            broker.publish(event)

        for observer in observers:
            assert _drain(observer) == [first, second, third]

    def test_late_subscriber_gets_no_history(self, broker):
        broker.publish(_created())
        late = broker.subscribe()
        assert late.pending == 0

    def test_subscriber_added_mid_publish_not_in_snapshot(self, broker):
        joined = []

        class JoiningObserver(Observer):
            def deliver(self, event):
                joined.append(broker.subscribe())
                return super().deliver(event)

        joiner = JoiningObserver(queue_size=4)
        with broker._registry_lock:
            broker._observers.add(joiner)

        delivered = broker.publish(_created())

        assert delivered == 1
        assert len(joined) == 1
        assert joined[0].pending == 0
        assert broker.observer_count == 2

    def test_concurrent_subscribe_unsubscribe_during_publish(self):
        broker = EventBroker(queue_size=10_000)
        stop = threading.Event()
        errors = []

        def churn():
            try:
                while not stop.is_set():
                    observer = broker.subscribe()
                    broker.unsubscribe(observer)
            except Exception as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        stable = broker.subscribe()
        workers = [threading.Thread(target=churn) for _ in range(4)]
        for w in workers:
            w.start()
        try:
            for _ in range(500):
                broker.publish(_created())
        finally:
            stop.set()
            for w in workers:
                w.join()

        assert errors == []
        assert stable.pending == 500
        assert broker.observer_count == 1


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: SSE Stream
# ═══════════════════════════════════════════════════════════════════════════

class TestSseStream:

    def test_format_sse_frame(self):
        frame = format_sse(_deleted())
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        body = json.loads(frame[len("data: "):])
        assert body == {
            "type": "DELETE_MARKER",
            "data": {"latitude": BANGALORE_LAT, "longitude": BANGALORE_LON},
        }

    def test_new_marker_frame_carries_marker_fields(self):
        marker = Marker(latitude=1.5, longitude=2.5, description="dark alley")
        body = json.loads(format_sse(ChangeEvent.marker_created(marker))[6:])
        assert body["type"] == ChangeKind.NEW_MARKER.value
        assert body["data"]["id"] == marker.id
        assert body["data"]["description"] == "dark alley"

    def test_stream_yields_events_then_unsubscribes_on_disconnect(self, broker):
        observer = broker.subscribe()
        broker.publish(_created("x"))
        checks = iter([False, True])

        async def is_disconnected():
            return next(checks)

        async def scenario():
            return [
                frame async for frame in stream_events(
                    broker, observer, is_disconnected, keepalive_seconds=0.05,
                )
            ]

        frames = asyncio.run(scenario())
        assert len(frames) == 1
        assert json.loads(frames[0][6:])["data"]["description"] == "x"
        assert broker.observer_count == 0
        assert observer.closed is True

    def test_stream_sends_keepalive_when_idle(self, broker):
        observer = broker.subscribe()
        checks = iter([False, True])

        async def is_disconnected():
            return next(checks)

        async def scenario():
            return [
                frame async for frame in stream_events(
                    broker, observer, is_disconnected, keepalive_seconds=0.01,
                )
            ]

        assert asyncio.run(scenario()) == [KEEPALIVE_FRAME]

    def test_stream_ends_when_broker_drops_observer(self, broker):
        observer = broker.subscribe()

        async def never_disconnected():
            return False

        async def scenario():
            frames = []
            async for frame in stream_events(
                broker, observer, never_disconnected, keepalive_seconds=1.0,
            ):
                frames.append(frame)
                broker.unsubscribe(observer)
            return frames

        broker.publish(_created())
        frames = asyncio.run(scenario())
        assert len(frames) == 1
        assert broker.observer_count == 0

    def test_stream_cancellation_unsubscribes(self, broker):
        observer = broker.subscribe()

        async def never_disconnected():
            return False

        async def scenario():
            async def consume():
                async for _ in stream_events(
                    broker, observer, never_disconnected, keepalive_seconds=10.0,
                ):
                    pass

            task = asyncio.ensure_future(consume())
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())
        assert broker.observer_count == 0
