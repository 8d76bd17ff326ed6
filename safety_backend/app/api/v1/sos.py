"""
FastAPI route: SOS broadcast.

    POST /send-sos — text the caller's location to every emergency contact

Response by aggregate outcome:
    all delivered    → 200 {"success": true, "message": ...}
    some delivered   → 200 {"success": true, "partial": true, "successful": n, "total": t}
    none delivered   → 500 {"success": false, "error": "Failed to send any messages"}
    not configured   → 500 error envelope (nothing was sent)
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from safety_backend.app.alerts.models import AggregateResult, AggregateStatus
from safety_backend.app.api.deps import get_coordinator
from safety_backend.app.api.schemas import SosRequest, SosResponse
from safety_backend.app.markers.coordinator import MarkerChangeCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sos"])


def _to_response(result: AggregateResult) -> SosResponse:
    results = [o.to_dict() for o in result.outcomes]
    status = result.status
    if status is AggregateStatus.SUCCESS:
        return SosResponse(
            success=True,
            alert_id=result.alert_id,
            message="All messages sent successfully",
            results=results,
        )
    if status is AggregateStatus.PARTIAL:
        return SosResponse(
            success=True,
            alert_id=result.alert_id,
            partial=True,
            successful=result.success_count,
            total=result.total,
            results=results,
        )
    return SosResponse(
        success=False,
        alert_id=result.alert_id,
        error="Failed to send any messages",
        successful=0,
        total=result.total,
        results=results,
    )


@router.post(
    "/send-sos",
    response_model=SosResponse,
    response_model_exclude_none=True,
    summary="Send an SOS to all emergency contacts",
    responses={500: {"model": SosResponse}},
)
async def send_sos(
    request: SosRequest,
    coordinator: MarkerChangeCoordinator = Depends(get_coordinator),
):
    logger.info(
        "Received SOS request with: latitude=%s longitude=%s",
        request.latitude, request.longitude,
    )
    latitude, longitude = request.require_coordinates("Location data is required")

    result = await coordinator.trigger_sos(latitude, longitude)
    body = _to_response(result)

    status_code = 500 if result.status is AggregateStatus.FAILURE else 200
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
    )
