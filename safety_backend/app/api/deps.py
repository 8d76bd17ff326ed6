"""
FastAPI dependencies resolving the components built by ``create_app``.

Components live on ``app.state`` so every app instance (and every test)
owns its own broker and coordinator.
"""

from __future__ import annotations

from fastapi import Request

from safety_backend.app.core.config import Settings
from safety_backend.app.markers.coordinator import MarkerChangeCoordinator
from safety_backend.app.realtime.broker import EventBroker


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_coordinator(request: Request) -> MarkerChangeCoordinator:
    return request.app.state.coordinator


def get_broker(request: Request) -> EventBroker:
    return request.app.state.broker
