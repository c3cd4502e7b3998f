"""
Emergency contact notification

Channels that reach emergency contacts (email over SMTP, WhatsApp Cloud API)
and the fan-out that drives them with retry and backoff.
"""

from .base import NotificationChannel
from .email_channel import EmailChannel, EmailChannelConfig
from .whatsapp_channel import WhatsAppChannel, WhatsAppChannelConfig, normalize_phone_number
from .fanout import NotificationFanout, RetryPolicy, calculate_backoff_delay

__all__ = [
    'NotificationChannel',
    'EmailChannel',
    'EmailChannelConfig',
    'WhatsAppChannel',
    'WhatsAppChannelConfig',
    'normalize_phone_number',
    'NotificationFanout',
    'RetryPolicy',
    'calculate_backoff_delay'
]
