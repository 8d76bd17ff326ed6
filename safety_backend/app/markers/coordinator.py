"""
coordinator.py — Glue between the marker store, event broker and SOS dispatcher.

Holds no state of its own. Each mutation path awaits the store first and
publishes only once the store has confirmed the change:

    create_marker ── store.create ──ok──▶ on_marker_created ──▶ broker.publish
                                  └─err─▶ StoreError propagates, nothing published

    delete_marker ── store.delete ──hit──▶ on_marker_deleted ──▶ broker.publish
                                  ├─miss─▶ MarkerNotFoundError, nothing published
                                  └─err──▶ StoreError propagates, nothing published

    trigger_sos  ───────────────────────▶ on_sos_triggered ──▶ dispatcher.send_alert
"""

from __future__ import annotations

import logging
from typing import List

from safety_backend.app.alerts.dispatcher import NotificationDispatcher
from safety_backend.app.alerts.models import AggregateResult
from safety_backend.app.core.errors import MarkerNotFoundError
from safety_backend.app.markers.models import ChangeEvent, Marker
from safety_backend.app.markers.store import MarkerStore
from safety_backend.app.realtime.broker import EventBroker
from safety_backend.app.spatial.coords import MATCH_TOLERANCE_DEG, Coordinates

logger = logging.getLogger(__name__)


class MarkerChangeCoordinator:
    """Orchestrates store writes, change broadcasts and SOS dispatch."""

    def __init__(
        self,
        store: MarkerStore,
        broker: EventBroker,
        dispatcher: NotificationDispatcher,
        *,
        match_tolerance: float = MATCH_TOLERANCE_DEG,
    ):
        self.store = store
        self.broker = broker
        self.dispatcher = dispatcher
        self.match_tolerance = match_tolerance

    # ── Hooks called after a confirmed store write ──

    def on_marker_created(self, record: Marker) -> int:
        """Broadcast NEW_MARKER for a freshly stored record."""
        return self.broker.publish(ChangeEvent.marker_created(record))

    def on_marker_deleted(self, coordinates: Coordinates) -> int:
        """Broadcast DELETE_MARKER carrying the coordinates the delete matched on."""
        return self.broker.publish(ChangeEvent.marker_deleted(coordinates))

    async def on_sos_triggered(self, location: Coordinates) -> AggregateResult:
        return await self.dispatcher.send_alert(location)

    # ── Mutation paths ──

    async def list_markers(self) -> List[Marker]:
        return await self.store.list_all()

    async def create_marker(
        self,
        latitude: float,
        longitude: float,
        description: str = "",
    ) -> Marker:
        marker = Marker(
            latitude=latitude,
            longitude=longitude,
            description=description or "",
        )
        stored = await self.store.create(marker)
        delivered = self.on_marker_created(stored)
        logger.info(
            "Marker %s created at (%.6f, %.6f), notified %d observers",
            stored.id, stored.latitude, stored.longitude, delivered,
            extra={"marker_id": stored.id, "lat": stored.latitude, "lon": stored.longitude},
        )
        return stored

    async def delete_marker(self, latitude: float, longitude: float) -> Marker:
        """
        Delete the marker at (latitude, longitude) within the match tolerance.

        Raises
        ------
        MarkerNotFoundError
            No marker matched; no event is published.
        """
        removed = await self.store.delete_by_approx_coordinates(
            latitude, longitude, self.match_tolerance,
        )
        if removed is None:
            logger.warning(
                "Marker not found for deletion at (%.6f, %.6f)", latitude, longitude,
                extra={"lat": latitude, "lon": longitude},
            )
            raise MarkerNotFoundError(latitude, longitude)

        delivered = self.on_marker_deleted(Coordinates(latitude, longitude))
        logger.info(
            "Marker %s deleted via (%.6f, %.6f), notified %d observers",
            removed.id, latitude, longitude, delivered,
            extra={"marker_id": removed.id, "lat": latitude, "lon": longitude},
        )
        return removed

    async def trigger_sos(self, latitude: float, longitude: float) -> AggregateResult:
        return await self.on_sos_triggered(Coordinates(latitude, longitude))
