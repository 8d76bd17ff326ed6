"""
test_coordinator.py — Tests for the store → broker → dispatcher glue.

Covers:
    • Create publishes NEW_MARKER only after the store confirms
    • Delete publishes DELETE_MARKER with the request coordinates
    • Not-found and store failures publish nothing
    • SOS triggering goes straight to the dispatcher
    • Three-map walkthrough: create, unsubscribe, delete

Run with:
    pytest tests/test_coordinator.py -v
"""

from __future__ import annotations

import asyncio
from typing import List, Optional

import pytest

from safety_backend.app.alerts.channels.sms_gateway import SimulatedSmsChannel
from safety_backend.app.alerts.dispatcher import NotificationDispatcher
from safety_backend.app.alerts.models import AggregateStatus
from safety_backend.app.core.errors import MarkerNotFoundError, StoreError
from safety_backend.app.markers.coordinator import MarkerChangeCoordinator
from safety_backend.app.markers.models import ChangeKind, Marker
from safety_backend.app.markers.store import InMemoryMarkerStore, MarkerStore
from safety_backend.app.realtime.broker import EventBroker, Observer


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

class BrokenStore(MarkerStore):
    """Store whose every write fails."""

    name = "broken"

    async def create(self, marker: Marker) -> Marker:
        raise StoreError("Failed to save location", operation="create")

    async def list_all(self) -> List[Marker]:
        raise StoreError("Failed to retrieve locations", operation="list")

    async def delete_by_approx_coordinates(
        self, latitude, longitude, tolerance=0.00001,
    ) -> Optional[Marker]:
        raise StoreError("Failed to delete marker", operation="delete")


def _coordinator(store: Optional[MarkerStore] = None, roster=("+15550000001",)):
    broker = EventBroker(queue_size=16)
    dispatcher = NotificationDispatcher(SimulatedSmsChannel(), list(roster))
    return MarkerChangeCoordinator(store or InMemoryMarkerStore(), broker, dispatcher)


def _pending_kinds(observer: Observer) -> List[ChangeKind]:
    async def collect():
        kinds = []
        while observer.pending:
            event = await observer.receive(timeout=0.1)
            kinds.append(event.kind)
        return kinds
    return asyncio.run(collect())


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Create / delete
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateMarker:

    def test_create_stores_then_publishes(self):
        coordinator = _coordinator()
        observer = coordinator.broker.subscribe()

        marker = asyncio.run(coordinator.create_marker(12.9716, 77.5946, "unlit road"))

        assert marker.description == "unlit road"
        assert len(coordinator.store) == 1
        assert _pending_kinds(observer) == [ChangeKind.NEW_MARKER]

    def test_store_failure_publishes_nothing(self):
        coordinator = _coordinator(store=BrokenStore())
        observer = coordinator.broker.subscribe()

        with pytest.raises(StoreError):
            asyncio.run(coordinator.create_marker(12.9716, 77.5946))

        assert observer.pending == 0

    def test_missing_description_becomes_empty(self):
        coordinator = _coordinator()
        marker = asyncio.run(coordinator.create_marker(1.0, 2.0, None))
        assert marker.description == ""


class TestDeleteMarker:

    def test_delete_publishes_request_coordinates(self):
        coordinator = _coordinator()
        asyncio.run(coordinator.create_marker(12.9716, 77.5946))
        observer = coordinator.broker.subscribe()

        async def delete_and_receive():
            await coordinator.delete_marker(12.97161, 77.59461)
            return await observer.receive(timeout=0.1)

        event = asyncio.run(delete_and_receive())

        assert event.kind is ChangeKind.DELETE_MARKER
        assert event.payload.to_dict() == {"latitude": 12.97161, "longitude": 77.59461}
        assert len(coordinator.store) == 0

    def test_not_found_raises_and_publishes_nothing(self):
        coordinator = _coordinator()
        asyncio.run(coordinator.create_marker(12.9716, 77.5946))
        observer = coordinator.broker.subscribe()

        with pytest.raises(MarkerNotFoundError) as exc_info:
            asyncio.run(coordinator.delete_marker(12.98, 77.60))

        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Marker not found"
        assert observer.pending == 0
        assert len(coordinator.store) == 1

    def test_store_failure_on_delete_publishes_nothing(self):
        coordinator = _coordinator(store=BrokenStore())
        observer = coordinator.broker.subscribe()

        with pytest.raises(StoreError):
            asyncio.run(coordinator.delete_marker(12.9716, 77.5946))

        assert observer.pending == 0

    def test_delete_removes_one_marker_per_request(self):
        coordinator = _coordinator()

        async def scenario():
            await coordinator.create_marker(12.9716, 77.5946, "first")
            await coordinator.create_marker(12.9716, 77.5946, "second")
            removed = await coordinator.delete_marker(12.9716, 77.5946)
            remaining = await coordinator.list_markers()
            return removed, remaining

        removed, remaining = asyncio.run(scenario())
        assert removed.description == "first"
        assert [m.description for m in remaining] == ["second"]


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: SOS
# ═══════════════════════════════════════════════════════════════════════════

class TestTriggerSos:

    def test_sos_does_not_touch_the_broker(self):
        coordinator = _coordinator(roster=["+1", "+2"])
        observer = coordinator.broker.subscribe()

        result = asyncio.run(coordinator.trigger_sos(12.9716, 77.5946))

        assert result.status is AggregateStatus.SUCCESS
        assert result.total == 2
        assert observer.pending == 0


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Three open maps
# ═══════════════════════════════════════════════════════════════════════════

class TestThreeMapWalkthrough:

    def test_create_unsubscribe_delete(self):
        coordinator = _coordinator()
        broker = coordinator.broker
        maps = [broker.subscribe() for _ in range(3)]

        asyncio.run(coordinator.create_marker(12.9716, 77.5946, "A"))
        assert all(m.pending == 1 for m in maps)

        broker.unsubscribe(maps[1])
        asyncio.run(coordinator.delete_marker(12.9716, 77.5946))

        assert _pending_kinds(maps[0]) == [ChangeKind.NEW_MARKER, ChangeKind.DELETE_MARKER]
        assert _pending_kinds(maps[2]) == [ChangeKind.NEW_MARKER, ChangeKind.DELETE_MARKER]
        assert broker.observer_count == 2
        assert asyncio.run(coordinator.list_markers()) == []
