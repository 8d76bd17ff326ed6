"""
Health check aggregation — deep health probe for all subsystems.

Checks:
    • Marker store reachability
    • Event broker (live observer count)
    • SMS channel configuration
    • Emergency roster size

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from safety_backend.app.alerts.dispatcher import NotificationDispatcher
from safety_backend.app.core.config import Settings, settings as default_settings
from safety_backend.app.core.errors import SafetyAPIError
from safety_backend.app.markers.store import MarkerStore
from safety_backend.app.realtime.broker import EventBroker

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = ""
    environment: str = ""
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


async def check_marker_store(store: MarkerStore) -> ComponentHealth:
    """Round-trip a listing through the marker store."""
    comp = ComponentHealth(name="marker_store")
    start = time.monotonic()
    try:
        markers = await store.list_all()
        comp.message = f"{len(markers)} markers"
        comp.details = store.describe()
    except SafetyAPIError as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = e.message
        comp.details = store.describe()
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_event_broker(broker: EventBroker) -> ComponentHealth:
    comp = ComponentHealth(name="event_broker")
    start = time.monotonic()
    count = broker.observer_count
    comp.message = f"{count} live observers"
    comp.details = {
        "observers": count,
        "max_observers": broker.max_observers or None,
        "queue_size": broker.queue_size,
    }
    if broker.max_observers and count >= broker.max_observers:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Observer cap reached"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_sos_channel(dispatcher: NotificationDispatcher) -> ComponentHealth:
    """SOS can only work with credentials and at least one contact."""
    comp = ComponentHealth(name="sos_channel")
    start = time.monotonic()
    comp.details = {
        **dispatcher.channel.describe(),
        "roster_size": len(dispatcher.roster),
    }
    if not dispatcher.channel.is_configured:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "SMS credentials missing"
    elif not dispatcher.roster:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "No emergency contacts configured"
    elif dispatcher.channel.provider == "simulation":
        comp.status = HealthStatus.DEGRADED
        comp.message = "SMS in simulation mode"
    else:
        comp.message = "SMS channel configured"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check(
    store: MarkerStore,
    broker: EventBroker,
    dispatcher: NotificationDispatcher,
    config: Optional[Settings] = None,
) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    config = config or default_settings
    report = HealthReport(
        version=config.APP_VERSION,
        environment=config.ENVIRONMENT,
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    report.components.append(await check_marker_store(store))
    report.components.append(await check_event_broker(broker))
    report.components.append(await check_sos_channel(dispatcher))

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
