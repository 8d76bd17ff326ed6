"""
Pydantic schemas for the marker, event-stream and SOS endpoints.

Separated from the route handlers so they are reusable across
the codebase (route handlers, tests).

Coordinates are optional at the schema level: the map frontend posts
partial bodies and expects a 400 with a plain message, not a pydantic
error list, when a coordinate is missing.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from safety_backend.app.core.errors import ValidationError


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class LocationInput(BaseModel):
    """A latitude/longitude pair as sent by the map frontend."""
    latitude: Optional[float] = Field(
        None, ge=-90.0, le=90.0,
        description="Latitude in decimal degrees",
        examples=[12.9716],
    )
    longitude: Optional[float] = Field(
        None, ge=-180.0, le=180.0,
        description="Longitude in decimal degrees",
        examples=[77.5946],
    )

    def require_coordinates(self, message: str) -> tuple:
        """
        Return (latitude, longitude) or raise a 400.

        Zero is rejected together with missing values; the frontend never
        sends (0, 0) for a real pin.
        """
        if not self.latitude or not self.longitude:
            raise ValidationError(message, field="latitude/longitude")
        return self.latitude, self.longitude


class MarkerCreateRequest(LocationInput):
    """Request body for POST /api/locations."""
    description: Optional[str] = Field(
        None, max_length=2000,
        description="Free-text note shown on the marker",
        examples=["Poorly lit underpass"],
    )


class MarkerDeleteRequest(LocationInput):
    """Request body for DELETE /api/locations."""


class SosRequest(LocationInput):
    """Request body for POST /send-sos."""


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class MarkerResponse(BaseModel):
    id: str
    latitude: float
    longitude: float
    description: str
    timestamp: str


class DeleteMarkerResponse(BaseModel):
    success: bool = True
    message: str = "Marker deleted successfully"


class SosResponse(BaseModel):
    """
    Aggregate SOS outcome.

    Full success carries ``message``; partial success carries
    ``partial``, ``successful`` and ``total``; total failure carries
    ``error`` and is returned with HTTP 500.
    """
    success: bool
    alert_id: str
    message: Optional[str] = None
    partial: Optional[bool] = None
    successful: Optional[int] = None
    total: Optional[int] = None
    error: Optional[str] = None
    results: List[Dict[str, Any]] = Field(default_factory=list)
