"""
FastAPI route: shared map markers.

Provides endpoints to:
    GET    /api/locations   — list all markers, newest first
    POST   /api/locations   — pin a marker (broadcasts NEW_MARKER)
    DELETE /api/locations   — remove the marker at a point (broadcasts DELETE_MARKER)

Deletion is matched by coordinates within a small tolerance, not by id.
"""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends

from safety_backend.app.api.deps import get_coordinator
from safety_backend.app.api.schemas import (
    DeleteMarkerResponse,
    MarkerCreateRequest,
    MarkerDeleteRequest,
    MarkerResponse,
)
from safety_backend.app.markers.coordinator import MarkerChangeCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/locations", tags=["markers"])


@router.get(
    "",
    response_model=List[MarkerResponse],
    summary="List pinned locations",
)
async def list_locations(
    coordinator: MarkerChangeCoordinator = Depends(get_coordinator),
):
    markers = await coordinator.list_markers()
    return [m.to_dict() for m in markers]


@router.post(
    "",
    response_model=MarkerResponse,
    status_code=201,
    summary="Pin a new location",
    description="Stores the marker, then notifies every open map.",
)
async def create_location(
    request: MarkerCreateRequest,
    coordinator: MarkerChangeCoordinator = Depends(get_coordinator),
):
    latitude, longitude = request.require_coordinates(
        "Latitude and longitude are required"
    )
    marker = await coordinator.create_marker(
        latitude, longitude, request.description or "",
    )
    return marker.to_dict()


@router.delete(
    "",
    response_model=DeleteMarkerResponse,
    summary="Remove a pinned location",
    description=(
        "Deletes the oldest marker within the match tolerance of the given "
        "point, then notifies every open map. 404 if nothing matched."
    ),
)
async def delete_location(
    request: MarkerDeleteRequest,
    coordinator: MarkerChangeCoordinator = Depends(get_coordinator),
):
    logger.info(
        "Received DELETE request with: latitude=%s longitude=%s",
        request.latitude, request.longitude,
    )
    latitude, longitude = request.require_coordinates(
        "Latitude and longitude are required for deletion"
    )
    await coordinator.delete_marker(latitude, longitude)
    return DeleteMarkerResponse()
