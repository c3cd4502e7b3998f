"""
Notification channel interface
"""

from abc import ABC, abstractmethod

from safewatch.models.safety import AlertPayload, ChannelType, EmergencyContact, SendResult


class NotificationChannel(ABC):
    """
    A way of reaching an emergency contact.

    send() returns a SendResult for outcomes that should not be retried and
    raises TransientNetworkError for ones that should.
    """

    channel_type: ChannelType

    @property
    def name(self) -> str:
        return self.channel_type.value

    @abstractmethod
    def supports(self, contact: EmergencyContact) -> bool:
        """Whether the contact has an address this channel can use"""
        pass

    @abstractmethod
    async def send(self, contact: EmergencyContact, payload: AlertPayload) -> SendResult:
        pass

    async def start(self):
        pass

    async def stop(self):
        pass
