"""
Property-based tests for notification retry behaviour

Tests universal properties of the exponential backoff used between
delivery attempts and of the fan-out's per-channel retry bound.
"""

import pytest
from hypothesis import given, settings, strategies as st

from safewatch.core.errors import TotalNotificationFailureError
from safewatch.models.safety import ChannelType, SOSAlert, TriggerSource
from safewatch.services.notifications.fanout import (
    NotificationFanout, RetryPolicy, calculate_backoff_delay
)
from tests.mocks.safety_mocks import MockChannel, make_contact


@st.composite
def backoff_strategy(draw):
    """Generate valid backoff parameters"""
    initial_delay = draw(st.floats(min_value=0.1, max_value=10.0))
    max_delay = draw(st.floats(min_value=initial_delay, max_value=300.0))
    multiplier = draw(st.floats(min_value=1.1, max_value=5.0))
    return initial_delay, max_delay, multiplier


class TestBackoffProperties:
    """
    For any retry number N the delay is
    min(initial_delay * (multiplier ^ N), max_delay).
    """

    @given(params=backoff_strategy(), attempt=st.integers(min_value=0, max_value=20))
    def test_backoff_formula(self, params, attempt):
        initial_delay, max_delay, multiplier = params

        expected = min(initial_delay * (multiplier ** attempt), max_delay)
        actual = calculate_backoff_delay(attempt, initial_delay, max_delay, multiplier)

        assert abs(actual - expected) < 0.0001

    @given(params=backoff_strategy(), attempt=st.integers(min_value=0, max_value=5000))
    def test_backoff_never_exceeds_max(self, params, attempt):
        initial_delay, max_delay, multiplier = params

        assert calculate_backoff_delay(attempt, initial_delay, max_delay, multiplier) <= max_delay

    @given(params=backoff_strategy(), attempt=st.integers(min_value=0, max_value=50))
    def test_backoff_is_non_decreasing(self, params, attempt):
        initial_delay, max_delay, multiplier = params

        current = calculate_backoff_delay(attempt, initial_delay, max_delay, multiplier)
        following = calculate_backoff_delay(attempt + 1, initial_delay, max_delay, multiplier)

        assert following >= current


class TestFanoutRetryProperties:
    """Every channel/contact pair gets at most max_retries + 1 attempts"""

    @pytest.mark.asyncio
    @settings(max_examples=30, deadline=5000)
    @given(
        max_retries=st.integers(min_value=0, max_value=6),
        contact_count=st.integers(min_value=1, max_value=4)
    )
    async def test_attempts_bounded_when_always_transient(self, max_retries, contact_count):
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        channel = MockChannel(ChannelType.EMAIL, default="transient")
        fanout = NotificationFanout(
            [channel],
            policy=RetryPolicy(max_retries=max_retries, initial_backoff=1.0, max_backoff=8.0),
            sleep=record_sleep
        )
        contacts = [make_contact(f"c{i}", whatsapp=False) for i in range(contact_count)]
        alert = SOSAlert(user_id="user1", alert_type=TriggerSource.MANUAL)

        with pytest.raises(TotalNotificationFailureError) as exc_info:
            await fanout.send(alert, contacts)

        for contact in contacts:
            assert channel.calls_for(contact.id) == max_retries + 1
        assert len(delays) == max_retries * contact_count
        assert all(delay <= 8.0 for delay in delays)
        assert all(r.attempts == max_retries + 1 for r in exc_info.value.report.results)

    @pytest.mark.asyncio
    @settings(max_examples=30, deadline=5000)
    @given(
        failures_before_success=st.integers(min_value=0, max_value=5),
        max_retries=st.integers(min_value=0, max_value=5)
    )
    async def test_success_within_retry_limit_is_delivered(self, failures_before_success, max_retries):
        async def no_sleep(seconds):
            pass

        outcomes = ["transient"] * failures_before_success + ["ok"]
        channel = MockChannel(ChannelType.EMAIL, behaviors={"alice": outcomes})
        fanout = NotificationFanout([channel], policy=RetryPolicy(max_retries=max_retries), sleep=no_sleep)
        alert = SOSAlert(user_id="user1", alert_type=TriggerSource.MANUAL)
        contacts = [make_contact("alice", whatsapp=False)]

        if failures_before_success <= max_retries:
            report = await fanout.send(alert, contacts)
            assert report.contact_outcomes == {"alice": True}
            assert report.results[0].attempts == failures_before_success + 1
        else:
            with pytest.raises(TotalNotificationFailureError):
                await fanout.send(alert, contacts)
            assert channel.calls_for("alice") == max_retries + 1
