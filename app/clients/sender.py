"""
Outbound channel: send(destination, text) → bool.

TwilioSender is the production implementation (WhatsApp through the Twilio
REST API). It never raises: a missing configuration or an API error is
logged and reported as False, and the caller leaves the message pending.
"""
from __future__ import annotations

import logging
from typing import Optional, Protocol

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from app.core.config import settings

logger = logging.getLogger(__name__)


class ChannelSender(Protocol):
    def send(self, destination: str, text: str) -> bool: ...


def _whatsapp_address(number: str) -> str:
    number = number.strip()
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"


class TwilioSender:
    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        client: Optional[Client] = None,
    ):
        self.from_number = from_number
        self._client = client
        self._account_sid = account_sid
        self._auth_token = auth_token

    @classmethod
    def from_settings(cls) -> "TwilioSender":
        return cls(
            account_sid=settings.TWILIO_ACCOUNT_SID,
            auth_token=settings.TWILIO_AUTH_TOKEN,
            from_number=settings.TWILIO_WHATSAPP_NUMBER,
        )

    @property
    def configured(self) -> bool:
        return bool(self._account_sid and self._auth_token and self.from_number)

    def _get_client(self) -> Client:
        if self._client is None:
            self._client = Client(self._account_sid, self._auth_token)
        return self._client

    def send(self, destination: str, text: str) -> bool:
        if not self.configured:
            logger.error("Twilio credentials not configured; cannot send to %s", destination)
            return False
        try:
            message = self._get_client().messages.create(
                from_=_whatsapp_address(self.from_number),
                to=_whatsapp_address(destination),
                body=text,
            )
        except TwilioException as exc:
            logger.error("Twilio send to %s failed: %s", destination, exc)
            return False
        logger.info("Sent message to %s (sid=%s, status=%s)", destination, message.sid, message.status)
        return True
