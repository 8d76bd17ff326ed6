"""
sms_gateway.py — SMS delivery channel via gateway integration.

Delivery mechanism:
    • Twilio Programmable Messaging REST API (production)
    • Simulation mode for development (logs instead of sending)

═══════════════════════════════════════════════════════════════════════════
SMS GATEWAY ARCHITECTURE
═══════════════════════════════════════════════════════════════════════════

    Dispatcher  →  SmsChannel.send(to, text)  →  Twilio API  →  Carrier

    Provider abstraction:
        - Twilio:     POST https://api.twilio.com/2010-04-01/Accounts/SID/Messages
        - Simulation: log only, always delivered unless told to fail

    Channels never raise for a per-recipient problem; they return a
    failed NotificationOutcome instead. Timeouts are enforced by the
    dispatcher, not here.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from safety_backend.app.alerts.models import NotificationOutcome
from safety_backend.app.core.config import Settings
from safety_backend.app.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

SMS_MAX_GSM7 = 160      # GSM 7-bit single segment


def segment_count(text: str) -> int:
    """Number of GSM-7 segments a message of this length occupies."""
    return 1 + (max(len(text), 1) - 1) // SMS_MAX_GSM7


class SmsChannel(ABC):
    """Provider-agnostic SMS sender."""

    provider: str = "abstract"

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """False when credentials needed to send are missing."""

    @abstractmethod
    async def send(self, recipient: str, text: str) -> NotificationOutcome:
        ...

    def describe(self) -> Dict[str, Any]:
        return {"provider": self.provider, "configured": self.is_configured}


class SimulatedSmsChannel(SmsChannel):
    """
    Development channel: logs the SMS and reports delivery.

    Parameters
    ----------
    failing : iterable of str
        Recipients for which every send reports failure.
    delay_seconds : float
        Artificial latency per send.
    """

    provider = "simulation"

    def __init__(self, *, failing: Iterable[str] = (), delay_seconds: float = 0.0):
        self.failing = frozenset(failing)
        self.delay_seconds = delay_seconds
        self.sent: list = []

    @property
    def is_configured(self) -> bool:
        return True

    async def send(self, recipient: str, text: str) -> NotificationOutcome:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        if recipient in self.failing:
            logger.info("[SMS/sim] Simulated failure → %s", recipient)
            return NotificationOutcome.failed(recipient, "Simulated delivery failure")

        self.sent.append((recipient, text))
        logger.info(
            "[SMS/sim] → %s: %d chars → '%s'",
            recipient, len(text),
            text[:80] + ("..." if len(text) > 80 else ""),
        )
        return NotificationOutcome.delivered(
            recipient,
            mode="simulated",
            message_length=len(text),
            segments=segment_count(text),
        )


class TwilioSmsChannel(SmsChannel):
    """Twilio REST client, run in a worker thread per send."""

    provider = "twilio"

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        from_number: Optional[str],
        *,
        client: Optional[Client] = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def _get_client(self) -> Client:
        if self._client is None:
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    def _create_message(self, recipient: str, text: str):
        return self._get_client().messages.create(
            body=text,
            to=recipient,
            from_=self.from_number,
        )

    async def send(self, recipient: str, text: str) -> NotificationOutcome:
        try:
            message = await asyncio.to_thread(self._create_message, recipient, text)
        except TwilioException as exc:
            logger.error("[SMS/Twilio] Error sending to %s: %s", recipient, exc)
            return NotificationOutcome.failed(recipient, str(exc))
        except OSError as exc:
            logger.error("[SMS/Twilio] Transport error sending to %s: %s", recipient, exc)
            return NotificationOutcome.failed(recipient, str(exc))

        sid = getattr(message, "sid", None)
        if not sid:
            logger.error("[SMS/Twilio] No message SID returned for %s", recipient)
            return NotificationOutcome.failed(recipient, "Failed to send")

        logger.info("[SMS/Twilio] Sent to %s (sid=%s)", recipient, sid)
        return NotificationOutcome.delivered(
            recipient, mode="twilio", sid=sid, segments=segment_count(text),
        )

    def describe(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "configured": self.is_configured,
            "account_sid": self.account_sid,
            "auth_token": "Loaded" if self.auth_token else "Missing",
            "from_number": self.from_number,
        }


def build_sms_channel(settings: Settings) -> SmsChannel:
    """Instantiate the channel selected by ``SMS_PROVIDER``."""
    provider = settings.SMS_PROVIDER.lower()
    if provider == "simulation":
        return SimulatedSmsChannel()
    if provider == "twilio":
        return TwilioSmsChannel(
            settings.TWILIO_ACCOUNT_SID,
            settings.TWILIO_AUTH_TOKEN,
            settings.TWILIO_NUMBER,
        )
    raise ConfigurationError(
        f"Unknown SMS provider: {settings.SMS_PROVIDER}",
        setting="SMS_PROVIDER",
    )
