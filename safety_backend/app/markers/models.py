"""
models.py — Marker and change-event data structures.

Defines:
    • Marker      — a pinned location owned by the marker store
    • ChangeKind  — NEW_MARKER / DELETE_MARKER tag
    • ChangeEvent — the tagged payload fanned out to every map observer

Wire format of a ChangeEvent (one SSE ``data:`` line):

    {"type": "NEW_MARKER",    "data": {<marker fields>}}
    {"type": "DELETE_MARKER", "data": {"latitude": .., "longitude": ..}}

DELETE_MARKER carries the coordinates the delete was matched on, not the
stored marker's id; clients remove whatever they drew at that point.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Union

from safety_backend.app.spatial.coords import Coordinates


def _generate_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Marker:
    """
    A pinned location on the shared map.

    Attributes
    ----------
    id : str
        Opaque identifier assigned by the store.
    latitude, longitude : float
        Decimal degrees.
    description : str
        Free text entered by the user who pinned it.
    created_at : datetime
        UTC creation time; listings are ordered newest first on this.
    """
    latitude: float
    longitude: float
    description: str = ""
    id: str = field(default_factory=_generate_id)
    created_at: datetime = field(default_factory=_now)

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(self.latitude, self.longitude)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "description": self.description,
            "timestamp": self.created_at.isoformat(),
        }


class ChangeKind(str, Enum):
    """Marker-set mutation types broadcast to observers."""
    NEW_MARKER    = "NEW_MARKER"
    DELETE_MARKER = "DELETE_MARKER"


@dataclass(frozen=True)
class ChangeEvent:
    """A single marker-set change, built per mutation and then discarded."""
    kind: ChangeKind
    payload: Union[Marker, Coordinates]

    @classmethod
    def marker_created(cls, marker: Marker) -> "ChangeEvent":
        return cls(ChangeKind.NEW_MARKER, marker)

    @classmethod
    def marker_deleted(cls, coordinates: Coordinates) -> "ChangeEvent":
        return cls(ChangeKind.DELETE_MARKER, coordinates)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "data": self.payload.to_dict()}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)
