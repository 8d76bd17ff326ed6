"""
FastAPI route: live marker change feed.

    GET /events — text/event-stream of NEW_MARKER / DELETE_MARKER events

Each connection is one broker observer for as long as it stays open.
No history is replayed; clients load the current set from
GET /api/locations first.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from safety_backend.app.api.deps import get_broker, get_settings
from safety_backend.app.core.config import Settings
from safety_backend.app.realtime.broker import EventBroker
from safety_backend.app.realtime.sse import SSE_HEADERS, stream_events

router = APIRouter(tags=["events"])


@router.get(
    "/events",
    summary="Subscribe to marker changes",
    response_class=StreamingResponse,
)
async def subscribe_events(
    request: Request,
    broker: EventBroker = Depends(get_broker),
    settings: Settings = Depends(get_settings),
):
    observer = broker.subscribe()
    return StreamingResponse(
        stream_events(
            broker,
            observer,
            request.is_disconnected,
            keepalive_seconds=settings.SSE_KEEPALIVE_SECONDS,
        ),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
