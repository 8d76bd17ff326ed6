"""
store.py — Durable marker storage adapters.

Two backends behind one interface:

    MarkerStore            abstract contract used by the coordinator
    ├── InMemoryMarkerStore   process-local list (dev, tests)
    └── SqlMarkerStore        SQLAlchemy async ORM (PostgreSQL / SQLite)

Contract
========
    create(marker)                              → Marker        (StoreError)
    list_all()                                  → [Marker]      newest first
    delete_by_approx_coordinates(lat, lon, tol) → Marker | None (StoreError)

Deletion removes at most one marker: the oldest one whose coordinates fall
inside the tolerance box around (lat, lon). ``None`` means nothing matched.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, Float, String, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Mapped, mapped_column

from safety_backend.app.core.database import Base, Database
from safety_backend.app.core.errors import StoreError
from safety_backend.app.markers.models import Marker
from safety_backend.app.spatial.coords import (
    MATCH_TOLERANCE_DEG,
    Coordinates,
    match_bounds,
    within_tolerance,
)

logger = logging.getLogger(__name__)


class MarkerStore(ABC):
    """Interface the coordinator and API depend on."""

    name: str = "abstract"

    @abstractmethod
    async def create(self, marker: Marker) -> Marker:
        ...

    @abstractmethod
    async def list_all(self) -> List[Marker]:
        ...

    @abstractmethod
    async def delete_by_approx_coordinates(
        self,
        latitude: float,
        longitude: float,
        tolerance: float = MATCH_TOLERANCE_DEG,
    ) -> Optional[Marker]:
        ...

    def describe(self) -> Dict[str, Any]:
        return {"backend": self.name}

    async def close(self) -> None:
        return None


# ═══════════════════════════════════════════════════════════════════════════
# In-memory backend
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryMarkerStore(MarkerStore):
    """Insertion-ordered list guarded by an asyncio lock."""

    name = "memory"

    def __init__(self) -> None:
        self._markers: List[Marker] = []
        self._lock = asyncio.Lock()

    async def create(self, marker: Marker) -> Marker:
        async with self._lock:
            self._markers.append(marker)
        logger.debug("Stored marker %s (%d total)", marker.id, len(self._markers))
        return marker

    async def list_all(self) -> List[Marker]:
        async with self._lock:
            snapshot = list(self._markers)
        # stable sort keeps later inserts first among equal timestamps
        snapshot.reverse()
        return sorted(snapshot, key=lambda m: m.created_at, reverse=True)

    async def delete_by_approx_coordinates(
        self,
        latitude: float,
        longitude: float,
        tolerance: float = MATCH_TOLERANCE_DEG,
    ) -> Optional[Marker]:
        target = Coordinates(latitude, longitude)
        async with self._lock:
            for index, marker in enumerate(self._markers):
                if within_tolerance(marker.coordinates, target, tolerance):
                    return self._markers.pop(index)
        return None

    def __len__(self) -> int:
        return len(self._markers)


# ═══════════════════════════════════════════════════════════════════════════
# SQL backend
# ═══════════════════════════════════════════════════════════════════════════

class MarkerRecord(Base):
    """ORM row for one pinned location."""

    __tablename__ = "markers"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False, index=True)
    longitude: Mapped[float] = mapped_column(Float, nullable=False, index=True)
    description: Mapped[str] = mapped_column(String, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True,
    )

    @classmethod
    def from_marker(cls, marker: Marker) -> "MarkerRecord":
        return cls(
            id=marker.id,
            latitude=marker.latitude,
            longitude=marker.longitude,
            description=marker.description,
            created_at=marker.created_at,
        )

    def to_marker(self) -> Marker:
        created = self.created_at
        if created.tzinfo is None:
            # SQLite drops the offset; values are always written in UTC
            created = created.replace(tzinfo=timezone.utc)
        return Marker(
            id=self.id,
            latitude=self.latitude,
            longitude=self.longitude,
            description=self.description,
            created_at=created,
        )


class SqlMarkerStore(MarkerStore):
    """Marker persistence through an async SQLAlchemy engine."""

    name = "sql"

    def __init__(self, database: Database):
        self.database = database

    async def create(self, marker: Marker) -> Marker:
        try:
            async with self.database.session() as session:
                session.add(MarkerRecord.from_marker(marker))
        except SQLAlchemyError as exc:
            logger.error("Error saving location: %s", exc)
            raise StoreError(
                "Failed to save location", operation="create", cause=str(exc),
            ) from exc
        return marker

    async def list_all(self) -> List[Marker]:
        try:
            async with self.database.session() as session:
                result = await session.execute(
                    select(MarkerRecord).order_by(MarkerRecord.created_at.desc())
                )
                return [row.to_marker() for row in result.scalars().all()]
        except SQLAlchemyError as exc:
            logger.error("Error retrieving locations: %s", exc)
            raise StoreError(
                "Failed to retrieve locations", operation="list", cause=str(exc),
            ) from exc

    async def delete_by_approx_coordinates(
        self,
        latitude: float,
        longitude: float,
        tolerance: float = MATCH_TOLERANCE_DEG,
    ) -> Optional[Marker]:
        lat_min, lat_max, lon_min, lon_max = match_bounds(
            Coordinates(latitude, longitude), tolerance,
        )
        stmt = (
            select(MarkerRecord)
            .where(MarkerRecord.latitude.between(lat_min, lat_max))
            .where(MarkerRecord.longitude.between(lon_min, lon_max))
            .order_by(MarkerRecord.created_at.asc())
            .limit(1)
        )
        try:
            async with self.database.session() as session:
                row = (await session.execute(stmt)).scalars().first()
                if row is None:
                    return None
                marker = row.to_marker()
                await session.delete(row)
        except SQLAlchemyError as exc:
            logger.error("Error deleting marker from database: %s", exc)
            raise StoreError(
                "Failed to delete marker", operation="delete", cause=str(exc),
            ) from exc
        return marker

    def describe(self) -> Dict[str, Any]:
        return {"backend": self.name, "database": self.database.safe_url}

    async def close(self) -> None:
        await self.database.close()
