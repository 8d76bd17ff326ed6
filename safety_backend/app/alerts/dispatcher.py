"""
dispatcher.py — SOS fan-out to the emergency roster.

This is the coordinator for one SOS trigger:
    1. Check preconditions (roster present, channel credentials loaded)
    2. Build one message embedding a map link to the caller's location
    3. Send it to every roster entry concurrently, one attempt each,
       every send bounded by a timeout
    4. Wait for all outcomes and aggregate them

═══════════════════════════════════════════════════════════════════════════
FAILURE HANDLING
═══════════════════════════════════════════════════════════════════════════

    Condition                          Result
    ─────────────────────────────      ─────────────────────────────────
    Empty roster / missing creds       ConfigurationError, nothing sent
    Provider error for one recipient   failed outcome, others continue
    Send exceeds timeout               TIMED_OUT outcome, others continue
    Unexpected exception in a send     failed outcome, others continue

The caller always gets an AggregateResult once preconditions pass.
Cancelling the caller cancels the gather; outcomes are then discarded.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Sequence, Tuple

from safety_backend.app.alerts.channels.sms_gateway import SmsChannel
from safety_backend.app.alerts.models import (
    AggregateResult,
    AggregateStatus,
    DeliveryStatus,
    NotificationOutcome,
)
from safety_backend.app.core.errors import ConfigurationError
from safety_backend.app.spatial.coords import Coordinates, maps_link

logger = logging.getLogger(__name__)

DEFAULT_SEND_TIMEOUT = 15.0


def build_sos_message(location: Coordinates) -> str:
    """Human-readable SOS text with a map link to ``location``."""
    return f"EMERGENCY: I need help! My location: {maps_link(location)}"


class NotificationDispatcher:
    """
    Sends an SOS to a fixed roster through one SMS channel.

    Parameters
    ----------
    channel : SmsChannel
        Delivery backend.
    roster : sequence of str
        Recipient identifiers, attempted in this order. Copied at
        construction and never modified.
    send_timeout : float
        Seconds allowed per recipient before the send counts as failed.
    """

    def __init__(
        self,
        channel: SmsChannel,
        roster: Sequence[str],
        *,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
    ):
        self.channel = channel
        self.roster: Tuple[str, ...] = tuple(roster)
        self.send_timeout = send_timeout

    def check_preconditions(self) -> None:
        """Raise ConfigurationError if no send could possibly succeed."""
        if not self.roster:
            raise ConfigurationError(
                "No emergency contacts configured",
                setting="EMERGENCY_CONTACTS",
            )
        if not self.channel.is_configured:
            raise ConfigurationError(
                f"SMS provider '{self.channel.provider}' is missing credentials",
                provider=self.channel.provider,
            )

    async def _send_one(self, recipient: str, text: str) -> NotificationOutcome:
        attempted_at = datetime.now(timezone.utc)
        outcome = await self._attempt(recipient, text)
        outcome.attempted_at = attempted_at
        return outcome

    async def _attempt(self, recipient: str, text: str) -> NotificationOutcome:
        try:
            return await asyncio.wait_for(
                self.channel.send(recipient, text), self.send_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "SOS send to %s timed out after %.1fs",
                recipient, self.send_timeout,
                extra={"recipient": recipient},
            )
            return NotificationOutcome.failed(
                recipient,
                f"Timed out after {self.send_timeout:.1f}s",
                status=DeliveryStatus.TIMED_OUT,
            )
        except Exception as exc:
            logger.exception("Error sending to %s", recipient)
            return NotificationOutcome.failed(recipient, str(exc) or type(exc).__name__)

    async def send_alert(self, location: Coordinates) -> AggregateResult:
        """
        Send the SOS for ``location`` to every roster entry.

        Returns
        -------
        AggregateResult
            One outcome per roster entry, in roster order.

        Raises
        ------
        ConfigurationError
            Before any send, if the roster or credentials are missing.
        """
        self.check_preconditions()

        message = build_sos_message(location)
        result = AggregateResult(location=location, message=message)

        logger.info(
            "SOS %s at (%.6f, %.6f) → %d contacts via %s",
            result.alert_id, location.latitude, location.longitude,
            len(self.roster), self.channel.provider,
            extra={"lat": location.latitude, "lon": location.longitude},
        )

        outcomes = await asyncio.gather(
            *(self._send_one(recipient, message) for recipient in self.roster)
        )
        result.outcomes = list(outcomes)
        result.completed_at = datetime.now(timezone.utc)

        log = logger.info if result.status is AggregateStatus.SUCCESS else logger.warning
        log(
            "SOS %s complete: %s, %d/%d delivered",
            result.alert_id, result.status.value,
            result.success_count, result.total,
            extra={"success_count": result.success_count, "total": result.total},
        )
        return result
