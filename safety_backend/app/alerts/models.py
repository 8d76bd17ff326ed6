"""
models.py — Shared data structures for SOS broadcasting.

Defines:
    • DeliveryStatus      — per-recipient send result
    • AggregateStatus     — SUCCESS / PARTIAL / FAILURE for a whole SOS
    • NotificationOutcome — one send attempt to one roster entry
    • AggregateResult     — every outcome of one SOS plus the verdict

═══════════════════════════════════════════════════════════════════════════
AGGREGATION POLICY
═══════════════════════════════════════════════════════════════════════════

    successes == total        → SUCCESS
    0 < successes < total     → PARTIAL   (non-fatal, counts reported)
    successes == 0            → FAILURE

Each roster entry gets exactly one attempt; there are no retries.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from safety_backend.app.spatial.coords import Coordinates


def _generate_id() -> str:
    return f"SOS-{uuid.uuid4().hex[:12].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryStatus(str, Enum):
    """Outcome of a single send to one recipient."""
    DELIVERED = "delivered"   # provider accepted the message
    FAILED    = "failed"      # provider or transport error
    TIMED_OUT = "timed_out"   # send did not finish within the timeout


class AggregateStatus(str, Enum):
    """Roster-wide verdict for one SOS."""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


@dataclass
class NotificationOutcome:
    """
    Result of sending the SOS text to one roster entry.

    Attributes
    ----------
    recipient : str
        Opaque roster identifier (an E.164 phone number for SMS).
    success : bool
    error_detail : str | None
        Diagnostic text when ``success`` is False.
    """
    recipient: str
    success: bool
    error_detail: Optional[str] = None
    status: DeliveryStatus = DeliveryStatus.DELIVERED
    attempted_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None
    provider_response: Optional[Dict[str, Any]] = None

    @classmethod
    def delivered(cls, recipient: str, **provider_response: Any) -> "NotificationOutcome":
        return cls(
            recipient=recipient,
            success=True,
            status=DeliveryStatus.DELIVERED,
            completed_at=_now(),
            provider_response=provider_response or None,
        )

    @classmethod
    def failed(
        cls,
        recipient: str,
        detail: str,
        status: DeliveryStatus = DeliveryStatus.FAILED,
    ) -> "NotificationOutcome":
        return cls(
            recipient=recipient,
            success=False,
            error_detail=detail,
            status=status,
            completed_at=_now(),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "contact": self.recipient,
            "success": self.success,
            "status": self.status.value,
            "attempted_at": self.attempted_at.isoformat(),
        }
        if self.error_detail:
            d["error"] = self.error_detail
        return d


@dataclass
class AggregateResult:
    """All outcomes of one SOS, in roster order."""
    location: Coordinates
    message: str
    outcomes: List[NotificationOutcome] = field(default_factory=list)
    alert_id: str = field(default_factory=_generate_id)
    started_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def status(self) -> AggregateStatus:
        successes = self.success_count
        if self.total and successes == self.total:
            return AggregateStatus.SUCCESS
        if successes > 0:
            return AggregateStatus.PARTIAL
        return AggregateStatus.FAILURE

    @property
    def failures(self) -> List[NotificationOutcome]:
        return [o for o in self.outcomes if not o.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "status": self.status.value,
            "successful": self.success_count,
            "total": self.total,
            "location": self.location.to_dict(),
            "started_at": self.started_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "results": [o.to_dict() for o in self.outcomes],
        }
