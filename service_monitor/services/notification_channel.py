"""Notification transport.

Sends pages over SMS and voice through the Twilio REST API. A send is a
single at-most-once attempt; it reports success or raises
NotificationError and never retries.
"""

import abc
import uuid
from xml.sax.saxutils import escape

import httpx

from service_monitor.config import settings
from service_monitor.logging_config import get_logger
from service_monitor.models.alert_notification import NotificationChannel

logger = get_logger(__name__)

REQUEST_TIMEOUT_SECONDS = 10.0


class NotificationError(Exception):
    """A notification could not be handed to the transport."""


def build_alert_message(service_name: str | None, service_id: uuid.UUID) -> str:
    """Build the page text for a service outage."""
    label = service_name or f"Service ID {service_id}"
    return f"Service alert: {label} is down"


def build_voice_twiml(message: str) -> str:
    """Wrap a message in a TwiML document that reads it aloud."""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f"<Response><Say>{escape(message)}</Say></Response>"
    )


class BaseNotificationChannel(abc.ABC):
    """Abstract notification transport."""

    @abc.abstractmethod
    async def send(
        self,
        channel: NotificationChannel,
        to: str,
        message: str,
    ) -> bool:
        """Send a message to an address over the given channel.

        Returns:
            True when the transport accepted the message.

        Raises:
            NotificationError: If the message could not be handed off.
        """


class TwilioChannel(BaseNotificationChannel):
    """SMS and voice delivery through Twilio."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        api_base: str = "https://api.twilio.com/2010-04-01",
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "TwilioChannel":
        return cls(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_from_number,
            api_base=settings.twilio_api_base,
        )

    def _resource_url(self, resource: str) -> str:
        return f"{self._api_base}/Accounts/{self._account_sid}/{resource}.json"

    async def send(
        self,
        channel: NotificationChannel,
        to: str,
        message: str,
    ) -> bool:
        if not (self._account_sid and self._auth_token and self._from_number):
            raise NotificationError("Twilio credentials are not configured")

        if channel == NotificationChannel.SMS:
            url = self._resource_url("Messages")
            data = {"To": to, "From": self._from_number, "Body": message}
        elif channel == NotificationChannel.VOICE:
            url = self._resource_url("Calls")
            data = {"To": to, "From": self._from_number, "Twiml": build_voice_twiml(message)}
        else:
            raise NotificationError(f"Unsupported notification channel: {channel.value}")

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    url,
                    data=data,
                    auth=(self._account_sid, self._auth_token),
                )
        except httpx.HTTPError as e:
            raise NotificationError(f"Twilio request failed: {e}") from e

        if response.status_code not in (200, 201):
            raise NotificationError(
                f"Twilio API error: {response.status_code} {response.text}"
            )

        logger.debug(
            "Notification accepted by Twilio",
            channel=channel.value,
            status_code=response.status_code,
        )
        return True
