"""
test_core.py — Tests for logging, error envelopes and request middleware.

Run with:
    pytest tests/test_core.py -v
"""

from __future__ import annotations

import json
import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient

from safety_backend.app.core.config import Settings
from safety_backend.app.core.errors import (
    MarkerNotFoundError,
    StoreError,
    register_error_handlers,
)
from safety_backend.app.core.logging_config import (
    JSONFormatter,
    PrettyFormatter,
    get_request_context,
    set_request_context,
    setup_logging,
)
from safety_backend.app.core.middleware import RequestLoggingMiddleware


def _record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="safety.test", level=logging.INFO, pathname=__file__,
        lineno=1, msg=msg, args=(), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:

    def test_json_formatter_promotes_known_extras(self):
        set_request_context()
        line = JSONFormatter().format(_record(marker_id="abc", lat=1.5, unrelated="x"))
        entry = json.loads(line)
        assert entry["message"] == "hello"
        assert entry["marker_id"] == "abc"
        assert entry["lat"] == 1.5
        assert "unrelated" not in entry

    def test_json_formatter_includes_request_context(self):
        set_request_context(request_id="req-1")
        try:
            entry = json.loads(JSONFormatter().format(_record()))
        finally:
            set_request_context()
        assert entry["context"] == {"request_id": "req-1"}

    def test_pretty_formatter_shows_short_request_id(self):
        set_request_context(request_id="0123456789abcdef")
        try:
            line = PrettyFormatter().format(_record("marker stored"))
        finally:
            set_request_context()
        assert "[01234567]" in line
        assert "marker stored" in line
        assert get_request_context() == {}

    def test_pretty_formatter_inlines_domain_fields(self):
        line = PrettyFormatter().format(_record("published", observer_count=3, lat=1.0))
        assert "observer_count=3" in line
        assert "lat=" not in line

    def test_setup_logging_uses_json_in_production(self):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            setup_logging(Settings(ENVIRONMENT="production", LOG_LEVEL="warning"))
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert root.level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)


def _error_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestLoggingMiddleware)
    register_error_handlers(app)

    @app.get("/missing")
    async def missing():
        raise MarkerNotFoundError(1.0, 2.0)

    @app.get("/broken")
    async def broken():
        raise StoreError("Failed to retrieve locations", operation="list", cause="db down")

    return app


class TestErrorEnvelope:

    def test_not_found_envelope(self):
        resp = TestClient(_error_app()).get("/missing")
        assert resp.status_code == 404
        body = resp.json()
        assert body["error"] == "Marker not found"
        assert body["code"] == "NOT_FOUND"
        assert body["details"] == {"resource": "Marker", "latitude": 1.0, "longitude": 2.0}

    def test_store_error_envelope(self):
        resp = TestClient(_error_app()).get("/broken")
        assert resp.status_code == 500
        body = resp.json()
        assert body["error"] == "Failed to retrieve locations"
        assert body["details"]["operation"] == "list"

    def test_request_id_header_round_trips(self):
        resp = TestClient(_error_app()).get("/missing", headers={"X-Request-ID": "trace-42"})
        assert resp.headers["X-Request-ID"] == "trace-42"
        assert resp.headers["X-Process-Time"].endswith("ms")

    def test_malformed_request_id_is_replaced(self):
        resp = TestClient(_error_app()).get("/missing", headers={"X-Request-ID": "bad id!"})
        assert resp.headers["X-Request-ID"] != "bad id!"
        assert len(resp.headers["X-Request-ID"]) == 16


class TestSettings:

    def test_contacts_from_comma_separated_env(self, monkeypatch):
        monkeypatch.setenv("EMERGENCY_CONTACTS", "+918360708882, +917902844175,")
        assert Settings().EMERGENCY_CONTACTS == ["+918360708882", "+917902844175"]

    def test_contacts_from_json_env(self, monkeypatch):
        monkeypatch.setenv("EMERGENCY_CONTACTS", '["+918360708882", "+917902844175"]')
        assert Settings().EMERGENCY_CONTACTS == ["+918360708882", "+917902844175"]

    def test_single_contact_env(self, monkeypatch):
        monkeypatch.setenv("EMERGENCY_CONTACTS", "+918360708882")
        assert Settings().EMERGENCY_CONTACTS == ["+918360708882"]

    def test_contacts_default_empty(self, monkeypatch):
        monkeypatch.delenv("EMERGENCY_CONTACTS", raising=False)
        assert Settings().EMERGENCY_CONTACTS == []

    def test_contacts_from_python_list(self):
        assert Settings(EMERGENCY_CONTACTS=["+1", "+2"]).EMERGENCY_CONTACTS == ["+1", "+2"]
