"""
coords.py — Coordinate primitives for the shared safety map.

Provides:
    - Coordinates value type with range validation
    - Approximate coordinate matching (how markers are identified for deletion)
    - Bounding box for the same match, for pushing into a SQL WHERE clause
    - Google Maps link builder used in SOS messages

All coordinates are in **decimal degrees**.

Approximate matching
====================
Markers carry no client-visible identity on the map frontend; a delete
request names the point the user clicked. Two points are "the same
marker" when both axes differ by at most the tolerance:

    |lat₁ − lat₂| ≤ tol   and   |lon₁ − lon₂| ≤ tol

With tol = 0.00001° this is roughly a 1.1 m box at the equator. Bounds
are inclusive; a 1e-9° slack absorbs binary float error so that points
exactly one tolerance apart still match.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Tuple


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MATCH_TOLERANCE_DEG: float = 0.00001
_FLOAT_SLACK: float = 1e-9

MAPS_URL = "https://www.google.com/maps?q={lat},{lon}"


# ---------------------------------------------------------------------------
# Core data structure
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coordinates:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValueError(
                f"Latitude must be in [-90, 90], got {self.latitude}"
            )
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValueError(
                f"Longitude must be in [-180, 180], got {self.longitude}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {"latitude": self.latitude, "longitude": self.longitude}


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

def within_tolerance(
    a: Coordinates,
    b: Coordinates,
    tolerance: float = MATCH_TOLERANCE_DEG,
) -> bool:
    """
    True if ``a`` and ``b`` are the same point within ``tolerance`` degrees.

    Examples
    --------
    >>> within_tolerance(Coordinates(12.9716, 77.5946), Coordinates(12.97161, 77.59461))
    True
    >>> within_tolerance(Coordinates(12.9716, 77.5946), Coordinates(12.98, 77.6))
    False
    """
    limit = tolerance + _FLOAT_SLACK
    return (
        abs(a.latitude - b.latitude) <= limit
        and abs(a.longitude - b.longitude) <= limit
    )


def match_bounds(
    point: Coordinates,
    tolerance: float = MATCH_TOLERANCE_DEG,
) -> Tuple[float, float, float, float]:
    """
    Inclusive (lat_min, lat_max, lon_min, lon_max) box equivalent to
    :func:`within_tolerance` around ``point``.
    """
    limit = tolerance + _FLOAT_SLACK
    return (
        point.latitude - limit,
        point.latitude + limit,
        point.longitude - limit,
        point.longitude + limit,
    )


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------

def maps_link(point: Coordinates) -> str:
    """Google Maps URL pinned at ``point``."""
    return MAPS_URL.format(lat=point.latitude, lon=point.longitude)
