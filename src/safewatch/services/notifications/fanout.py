"""
Notification Fan-out

Delivers one alert payload to every emergency contact. Contacts are handled
concurrently and independently; within a contact the applicable channels are
tried in priority order, each with bounded retry and exponential backoff for
transient failures. Individual failures are recorded in the FanoutReport and
logged; only an empty contact list or a cycle in which no contact was reached
raises TotalNotificationFailureError.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from safewatch.core.errors import TotalNotificationFailureError, TransientNetworkError
from safewatch.core.logging import get_structured_logger
from safewatch.models.safety import (
    AlertPayload, AudioSegment, ChannelType, EmergencyContact, FanoutReport,
    NotificationResult, SOSAlert
)
from .base import NotificationChannel


_CHANNEL_PRIORITY = list(ChannelType)


def calculate_backoff_delay(
    attempt: int,
    initial_delay: float,
    max_delay: float,
    multiplier: float
) -> float:
    """
    Calculate exponential backoff delay.

    Formula: min(initial_delay * (multiplier ^ attempt), max_delay)

    Args:
        attempt: Zero-based retry number
        initial_delay: Delay before the first retry in seconds
        max_delay: Upper bound on any single delay
        multiplier: Growth factor per attempt

    Returns:
        Delay in seconds
    """
    try:
        delay = initial_delay * (multiplier ** attempt)
    except OverflowError:
        return max_delay
    return min(delay, max_delay)


@dataclass
class RetryPolicy:
    """Per-channel retry settings"""
    max_retries: int = 3
    initial_backoff: float = 1.0
    max_backoff: float = 30.0
    multiplier: float = 2.0
    attempt_timeout: float = 20.0

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'RetryPolicy':
        return cls(
            max_retries=config.get('max_retries', 3),
            initial_backoff=config.get('initial_backoff_seconds', 1.0),
            max_backoff=config.get('max_backoff_seconds', 30.0),
            multiplier=config.get('backoff_multiplier', 2.0),
            attempt_timeout=config.get('attempt_timeout_seconds', 20.0)
        )

    def delay_for(self, attempt: int) -> float:
        return calculate_backoff_delay(attempt, self.initial_backoff, self.max_backoff, self.multiplier)


class NotificationFanout:
    """Sends alert payloads to all contacts over all applicable channels"""

    def __init__(
        self,
        channels: Sequence[NotificationChannel],
        policy: Optional[RetryPolicy] = None,
        stop_on_first_success: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.logger = logging.getLogger(__name__)
        self.audit = get_structured_logger('notifications.fanout')
        self.channels = sorted(channels, key=lambda ch: _CHANNEL_PRIORITY.index(ch.channel_type))
        self.policy = policy or RetryPolicy()
        self.stop_on_first_success = stop_on_first_success
        self._sleep = sleep

    async def start(self):
        for channel in self.channels:
            await channel.start()

    async def stop(self):
        for channel in self.channels:
            try:
                await channel.stop()
            except Exception as e:
                self.logger.warning(f"Error stopping {channel.name} channel: {e}")

    async def send(
        self,
        alert: SOSAlert,
        contacts: List[EmergencyContact],
        segment: Optional[AudioSegment] = None
    ) -> FanoutReport:
        """
        Notify every contact about an alert.

        Returns:
            FanoutReport with one NotificationResult per channel tried

        Raises:
            TotalNotificationFailureError: no contacts, or none reached
        """
        report = FanoutReport(alert_id=alert.id, sequence=segment.sequence if segment else 0)

        if not contacts:
            self.logger.critical(f"Alert {alert.id} has no emergency contacts to notify")
            raise TotalNotificationFailureError(report, reason="no emergency contacts configured")

        payload = AlertPayload(alert=alert, segment=segment)
        outcomes = await asyncio.gather(
            *(self._notify_contact(contact, payload) for contact in contacts)
        )

        for contact, results in zip(contacts, outcomes):
            report.results.extend(results)
            report.contact_outcomes[contact.id] = any(r.success for r in results)

        if report.is_total_failure:
            self.logger.critical(
                f"Alert {alert.id} cycle {report.sequence}: no contact could be reached "
                f"({len(contacts)} attempted)"
            )
            raise TotalNotificationFailureError(report)

        if report.is_partial_failure:
            self.logger.warning(
                f"Alert {alert.id} cycle {report.sequence}: partial delivery, "
                f"failed contacts {report.failed_contacts}"
            )
        else:
            self.logger.info(f"Alert {alert.id} cycle {report.sequence}: all {len(contacts)} contacts notified")

        return report

    async def _notify_contact(self, contact: EmergencyContact, payload: AlertPayload) -> List[NotificationResult]:
        channels = [channel for channel in self.channels if channel.supports(contact)]
        if not channels:
            self.logger.warning(f"Contact {contact.id} has no address for any enabled channel")
            return []

        results = []
        for channel in channels:
            result = await self._send_with_retry(channel, contact, payload)
            results.append(result)
            self.audit.info(
                "notification_result",
                alert_id=payload.alert.id,
                sequence=payload.sequence,
                contact_id=contact.id,
                channel=channel.name,
                success=result.success,
                attempts=result.attempts,
                error=result.error
            )
            if result.success and self.stop_on_first_success:
                break

        return results

    async def _send_with_retry(
        self,
        channel: NotificationChannel,
        contact: EmergencyContact,
        payload: AlertPayload
    ) -> NotificationResult:
        last_error = None
        attempts = 0

        for attempt in range(self.policy.max_retries + 1):
            attempts += 1
            try:
                sent = await asyncio.wait_for(
                    channel.send(contact, payload),
                    timeout=self.policy.attempt_timeout
                )
            except asyncio.TimeoutError:
                last_error = f"{channel.name} attempt timed out after {self.policy.attempt_timeout}s"
            except TransientNetworkError as e:
                last_error = str(e)
            except Exception as e:
                self.logger.error(f"Unexpected {channel.name} error for contact {contact.id}: {e}")
                return NotificationResult(
                    contact_id=contact.id,
                    channel=channel.channel_type,
                    success=False,
                    error=f"Unexpected error: {e}",
                    attempts=attempts
                )
            else:
                return NotificationResult(
                    contact_id=contact.id,
                    channel=channel.channel_type,
                    success=sent.success,
                    error=sent.error,
                    attempts=attempts
                )

            if attempt < self.policy.max_retries:
                delay = self.policy.delay_for(attempt)
                self.logger.warning(
                    f"{channel.name} send to contact {contact.id} failed "
                    f"(attempt {attempts}), retrying in {delay:.1f}s: {last_error}"
                )
                await self._sleep(delay)

        self.logger.error(
            f"{channel.name} send to contact {contact.id} failed after {attempts} attempts: {last_error}"
        )
        return NotificationResult(
            contact_id=contact.id,
            channel=channel.channel_type,
            success=False,
            error=last_error,
            attempts=attempts
        )
