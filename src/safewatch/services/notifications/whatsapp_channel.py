"""
WhatsApp notification channel

Delivers SOS alerts as text messages through the WhatsApp Cloud API.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

from safewatch.core.errors import TransientNetworkError
from safewatch.models.safety import AlertPayload, ChannelType, EmergencyContact, SendResult
from .base import NotificationChannel
from . import templates


@dataclass
class WhatsAppChannelConfig:
    """WhatsApp Cloud API credentials and endpoint"""
    api_token: str = ""
    phone_number_id: str = ""
    api_version: str = "v18.0"
    base_url: str = "https://graph.facebook.com"
    request_timeout: int = 15

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WhatsAppChannelConfig':
        fields = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in fields})

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_token and self.phone_number_id)

    @property
    def messages_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.api_version}/{self.phone_number_id}/messages"


def normalize_phone_number(number: str) -> str:
    """Strip formatting so the number reads +<digits>"""
    digits = re.sub(r'\D', '', number or '')
    return f"+{digits}" if digits else ""


class WhatsAppChannel(NotificationChannel):
    """WhatsApp Cloud API channel"""

    channel_type = ChannelType.WHATSAPP

    def __init__(self, config: WhatsAppChannelConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.session = session
        self._owns_session = session is None

    async def start(self):
        """Initialize the HTTP session"""
        await self._ensure_session()

    async def stop(self):
        """Close the HTTP session"""
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    async def _ensure_session(self):
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
            self.session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True

    def supports(self, contact: EmergencyContact) -> bool:
        return len(normalize_phone_number(contact.whatsapp)) > 1

    async def send(self, contact: EmergencyContact, payload: AlertPayload) -> SendResult:
        if not self.config.has_credentials:
            self.logger.warning("WhatsApp API credentials are not configured")
            return SendResult(success=False, error="WhatsApp credentials not configured")

        await self._ensure_session()

        headers = {
            "Authorization": f"Bearer {self.config.api_token}",
            "Content-Type": "application/json"
        }
        body = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": normalize_phone_number(contact.whatsapp),
            "type": "text",
            "text": {
                "preview_url": True,
                "body": templates.build_text(payload)
            }
        }

        try:
            async with self.session.post(self.config.messages_url, headers=headers, json=body) as response:
                if response.status in (200, 201):
                    self.logger.info(f"SOS WhatsApp message sent to contact {contact.id} for alert {payload.alert.id}")
                    return SendResult(success=True, provider_status=response.status)

                error_text = await response.text()
                if response.status == 429 or response.status >= 500:
                    raise TransientNetworkError(f"WhatsApp API HTTP {response.status}: {error_text}")

                self.logger.error(f"WhatsApp API rejected message for contact {contact.id}: "
                                  f"HTTP {response.status}: {error_text}")
                return SendResult(
                    success=False,
                    error=f"HTTP {response.status}: {error_text}",
                    provider_status=response.status
                )

        except aiohttp.ClientError as e:
            raise TransientNetworkError(f"WhatsApp network error: {e}") from e
