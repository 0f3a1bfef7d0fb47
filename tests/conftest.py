"""
Shared test fixtures for the sensor analytics test suite.

Provides:
- A controllable clock injected into every stateful component
- Recording fakes for the email, webhook and SMS transports
- A notifier that records submitted alerts instead of delivering them
- An event factory

Usage:
    def test_example(clock, make_event):
        event = make_event("d1", "mq134", gas_concentration=600)
        clock.advance(minutes=5)
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import pytest

from sensor_analytics.exceptions import DeliveryFailure
from sensor_analytics.models.alerts import Alert, AlertCategory
from sensor_analytics.models.events import SensorEvent
from sensor_analytics.models.rules import Severity

START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0) -> datetime:
        self.now += timedelta(seconds=seconds, minutes=minutes)
        return self.now


class RecordingNotifier:
    """Collects (alert, channels) pairs handed over by the evaluators."""

    def __init__(self) -> None:
        self.submitted: List[Tuple[Alert, Tuple[str, ...]]] = []

    def submit(self, alert: Alert, channels: Sequence[str]) -> None:
        self.submitted.append((alert, tuple(channels)))

    @property
    def alerts(self) -> List[Alert]:
        return [alert for alert, _ in self.submitted]


class FakeEmailSender:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: List[Tuple[List[str], str, str]] = []

    async def send(self, recipients: Sequence[str], subject: str, body: str) -> None:
        if self.fail:
            raise DeliveryFailure("email", "SMTP unavailable")
        self.sent.append((list(recipients), subject, body))


class FakeWebhookPoster:
    """Succeeds with 200 unless the URL is marked as failing or hanging."""

    def __init__(
        self,
        failing: Optional[Set[str]] = None,
        hanging: Optional[Set[str]] = None,
    ) -> None:
        self.failing = failing or set()
        self.hanging = hanging or set()
        self.posted: List[Tuple[str, Dict[str, Any]]] = []

    async def post(self, url: str, payload: Dict[str, Any], timeout_seconds: float) -> int:
        self.posted.append((url, payload))
        if url in self.hanging:
            await asyncio.sleep(timeout_seconds * 10)
        if url in self.failing:
            raise DeliveryFailure("webhook", "HTTP 500: boom")
        return 200


class FakeSmsSender:
    def __init__(self, failing: Optional[Set[str]] = None) -> None:
        self.failing = failing or set()
        self.sent: List[Tuple[List[str], str]] = []

    async def send(self, recipients: Sequence[str], text: str) -> None:
        if any(recipient in self.failing for recipient in recipients):
            raise DeliveryFailure("sms", "invalid number")
        self.sent.append((list(recipients), text))


def build_event(
    device_id: str = "d1",
    sensor_type: str = "mq134",
    location: Optional[str] = None,
    **readings: Any,
) -> SensorEvent:
    payload: Dict[str, Any] = {"device_id": device_id, "sensor_type": sensor_type, **readings}
    if location is not None:
        payload["location"] = location
    return SensorEvent.from_payload(payload)


def build_alert(
    rule_id: str = "gas_crit",
    device_id: str = "d1",
    severity: Severity = Severity.CRITICAL,
    message: str = "CRITICAL: gas_crit - gas_concentration > 500 (value: 600)",
    **fields: Any,
) -> Alert:
    return Alert(
        rule_id=rule_id,
        category=fields.pop("category", AlertCategory.THRESHOLD),
        severity=severity,
        device_id=device_id,
        message=message,
        **fields,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_event():
    return build_event


@pytest.fixture
def make_alert():
    return build_alert
