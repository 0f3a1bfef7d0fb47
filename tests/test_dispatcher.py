"""Tests for the alert dispatcher and the notification channels."""

import asyncio

import pytest

from conftest import FakeEmailSender, FakeSmsSender, FakeWebhookPoster
from sensor_analytics.dispatch.channels import (
    EmailChannel,
    PushChannel,
    SmsChannel,
    WebhookChannel,
    format_email_subject,
    format_sms_message,
)
from sensor_analytics.dispatch.dispatcher import AlertDispatcher
from sensor_analytics.models.alerts import DeliveryResult, DeliveryStatus
from sensor_analytics.models.rules import Severity

HOOK_A = "https://hooks.example.com/a"
HOOK_B = "https://hooks.example.com/b"


class HangingChannel:
    name = "slow"

    async def send(self, alert) -> DeliveryResult:
        await asyncio.sleep(10)
        raise AssertionError("not reached")


class ExplodingChannel:
    name = "broken"

    async def send(self, alert) -> DeliveryResult:
        raise RuntimeError("boom")


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def poster() -> FakeWebhookPoster:
    return FakeWebhookPoster()


@pytest.fixture
def dispatcher(clock, email_sender, poster) -> AlertDispatcher:
    return AlertDispatcher(
        channels={
            "email": EmailChannel(email_sender, ["ops@example.com"], clock=clock),
            "webhook": WebhookChannel(poster, [HOOK_A], clock=clock),
            "push": PushChannel(clock=clock),
        },
        clock=clock,
    )


class TestNotify:
    """Fan-out, isolation and per-channel outcomes."""

    @pytest.mark.asyncio
    async def test_delivers_to_each_channel(self, dispatcher, make_alert, email_sender, poster) -> None:
        alert = make_alert()

        summary = await dispatcher.notify(alert, ["email", "webhook"])

        assert summary.duplicate is False
        assert [(d.channel, d.status) for d in summary.deliveries] == [
            ("email", DeliveryStatus.SENT),
            ("webhook", DeliveryStatus.SENT),
        ]
        assert email_sender.sent[0][0] == ["ops@example.com"]
        assert email_sender.sent[0][1] == "[CRITICAL] Sensor Alert - d1"
        assert poster.posted[0][0] == HOOK_A
        assert poster.posted[0][1]["event_type"] == "sensor_alert"
        assert poster.posted[0][1]["alert"]["rule_id"] == "gas_crit"

    @pytest.mark.asyncio
    async def test_channel_names_are_case_insensitive(self, dispatcher, make_alert) -> None:
        summary = await dispatcher.notify(make_alert(), ["EMAIL", "email"])

        assert [d.channel for d in summary.deliveries] == ["email"]

    @pytest.mark.asyncio
    async def test_unknown_channel_is_skipped(self, dispatcher, make_alert) -> None:
        summary = await dispatcher.notify(make_alert(), ["pager", "email"])

        pager, email = summary.deliveries
        assert pager.status is DeliveryStatus.SKIPPED
        assert pager.detail == "unknown_channel"
        assert email.status is DeliveryStatus.SENT

    @pytest.mark.asyncio
    async def test_push_is_not_implemented(self, dispatcher, make_alert) -> None:
        summary = await dispatcher.notify(make_alert(), ["push"])

        assert summary.deliveries[0].status is DeliveryStatus.NOT_IMPLEMENTED

    @pytest.mark.asyncio
    async def test_failing_channel_does_not_affect_others(self, clock, make_alert, poster) -> None:
        dispatcher = AlertDispatcher(
            channels={
                "email": EmailChannel(FakeEmailSender(fail=True), ["ops@example.com"], clock=clock),
                "broken": ExplodingChannel(),
                "webhook": WebhookChannel(poster, [HOOK_A], clock=clock),
            },
            clock=clock,
        )

        summary = await dispatcher.notify(make_alert(), ["email", "broken", "webhook"])

        statuses = {d.channel: d.status for d in summary.deliveries}
        assert statuses == {
            "email": DeliveryStatus.FAILED,
            "broken": DeliveryStatus.FAILED,
            "webhook": DeliveryStatus.SENT,
        }
        assert summary.deliveries[1].detail == "boom"

    @pytest.mark.asyncio
    async def test_channel_timeout(self, clock, make_alert) -> None:
        dispatcher = AlertDispatcher(
            channels={"slow": HangingChannel(), "push": PushChannel(clock=clock)},
            channel_timeout_seconds=0.05,
            clock=clock,
        )

        summary = await dispatcher.notify(make_alert(), ["slow", "push"])

        slow, push = summary.deliveries
        assert slow.status is DeliveryStatus.FAILED
        assert slow.detail == "timed out after 0.05s"
        assert push.status is DeliveryStatus.NOT_IMPLEMENTED


class TestDeduplication:
    """Same (rule_id, device_id, severity) within five minutes is dropped."""

    @pytest.mark.asyncio
    async def test_repeat_within_window_is_dropped(self, dispatcher, make_alert, email_sender, clock) -> None:
        await dispatcher.notify(make_alert(), ["email"])
        clock.advance(minutes=4)

        summary = await dispatcher.notify(make_alert(), ["email"])

        assert summary.duplicate is True
        assert summary.deliveries == []
        assert len(email_sender.sent) == 1

    @pytest.mark.asyncio
    async def test_repeat_after_window_is_delivered(self, dispatcher, make_alert, email_sender, clock) -> None:
        await dispatcher.notify(make_alert(), ["email"])
        clock.advance(minutes=5)

        summary = await dispatcher.notify(make_alert(), ["email"])

        assert summary.duplicate is False
        assert len(email_sender.sent) == 2

    @pytest.mark.asyncio
    async def test_key_includes_device_and_severity(self, dispatcher, make_alert, email_sender) -> None:
        await dispatcher.notify(make_alert(), ["email"])
        await dispatcher.notify(make_alert(device_id="d2"), ["email"])
        await dispatcher.notify(make_alert(severity=Severity.WARNING), ["email"])

        assert len(email_sender.sent) == 3


class TestBackgroundDelivery:
    @pytest.mark.asyncio
    async def test_submit_is_drained_on_stop(self, dispatcher, make_alert, poster) -> None:
        dispatcher.submit(make_alert(), ["webhook"])
        dispatcher.submit(make_alert(rule_id="other"), ["webhook"])
        assert dispatcher.pending == 2

        await dispatcher.start()
        assert dispatcher.is_running
        await dispatcher.stop()

        assert dispatcher.pending == 0
        assert not dispatcher.is_running
        assert len(poster.posted) == 2

    @pytest.mark.asyncio
    async def test_full_queue_drops_alert(self, clock, make_alert) -> None:
        dispatcher = AlertDispatcher(channels={}, queue_size=1, clock=clock)

        dispatcher.submit(make_alert(), ["email"])
        dispatcher.submit(make_alert(rule_id="other"), ["email"])

        assert dispatcher.pending == 1

    @pytest.mark.asyncio
    async def test_delivery_stats(self, dispatcher, make_alert) -> None:
        await dispatcher.notify(make_alert(), ["email", "push"])
        await dispatcher.notify(make_alert(rule_id="other"), ["email", "pager"])

        assert dispatcher.get_delivery_stats() == {
            "total": 4,
            "by_channel": {"email": 2, "push": 1, "pager": 1},
            "by_status": {"sent": 2, "not_implemented": 1, "skipped": 1},
        }

    @pytest.mark.asyncio
    async def test_delivery_history_is_bounded(self, clock, make_alert) -> None:
        dispatcher = AlertDispatcher(
            channels={"push": PushChannel(clock=clock)},
            delivery_history_size=3,
            clock=clock,
        )
        for index in range(5):
            await dispatcher.notify(make_alert(rule_id=f"r{index}"), ["push"])

        assert dispatcher.get_delivery_stats()["total"] == 3
        assert len(dispatcher.get_recent_deliveries()) == 3


class TestWebhookChannel:
    @pytest.mark.asyncio
    async def test_hanging_url_yields_partial(self, clock, make_alert) -> None:
        poster = FakeWebhookPoster(hanging={HOOK_B})
        channel = WebhookChannel(poster, [HOOK_A, HOOK_B], timeout_seconds=0.05, clock=clock)

        result = await channel.send(make_alert())

        assert result.status is DeliveryStatus.PARTIAL
        assert result.results == [
            {"url": HOOK_A, "status": "success", "status_code": 200},
            {"url": HOOK_B, "status": "failed", "error": "timeout"},
        ]

    @pytest.mark.asyncio
    async def test_failing_url_reports_error(self, clock, make_alert) -> None:
        poster = FakeWebhookPoster(failing={HOOK_A})
        channel = WebhookChannel(poster, [HOOK_A], clock=clock)

        result = await channel.send(make_alert())

        assert result.status is DeliveryStatus.PARTIAL
        assert result.results[0]["status"] == "failed"
        assert "HTTP 500" in result.results[0]["error"]

    @pytest.mark.asyncio
    async def test_no_urls_is_skipped(self, clock, make_alert) -> None:
        result = await WebhookChannel(FakeWebhookPoster(), [], clock=clock).send(make_alert())

        assert result.status is DeliveryStatus.SKIPPED
        assert result.detail == "no_urls_configured"


class TestSmsChannel:
    def test_message_is_truncated(self, make_alert) -> None:
        alert = make_alert(message="x" * 300)

        text = format_sms_message(alert)

        assert len(text) == 160
        assert text.startswith("[CRITICAL] d1: xxx")

    @pytest.mark.asyncio
    async def test_each_recipient_is_texted(self, clock, make_alert) -> None:
        sender = FakeSmsSender(failing={"+15550002"})
        channel = SmsChannel(sender, ["+15550001", "+15550002"], clock=clock)

        result = await channel.send(make_alert())

        assert result.status is DeliveryStatus.PARTIAL
        assert [r["status"] for r in result.results] == ["sent", "failed"]
        assert sender.sent == [(["+15550001"], format_sms_message(make_alert()))]

    @pytest.mark.asyncio
    async def test_unconfigured_is_skipped(self, clock, make_alert) -> None:
        result = await SmsChannel(None, ["+15550001"], clock=clock).send(make_alert())

        assert result.status is DeliveryStatus.SKIPPED
        assert result.detail == "not_configured"


class TestEmailChannel:
    def test_subject(self, make_alert) -> None:
        assert format_email_subject(make_alert(severity=Severity.WARNING)) == (
            "[WARNING] Sensor Alert - d1"
        )

    @pytest.mark.asyncio
    async def test_no_recipients_is_skipped(self, clock, make_alert) -> None:
        result = await EmailChannel(FakeEmailSender(), [], clock=clock).send(make_alert())

        assert result.status is DeliveryStatus.SKIPPED
        assert result.detail == "not_configured"
