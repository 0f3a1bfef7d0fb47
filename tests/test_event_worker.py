"""Tests for the event worker."""

import asyncio
from typing import Iterator

import pytest
from structlog.testing import capture_logs

from sensor_analytics.detection.anomaly import AnomalyDetector
from sensor_analytics.detection.correlation import CorrelationTracker
from sensor_analytics.detection.threshold import ThresholdEvaluator
from sensor_analytics.dispatch.channels import PushChannel
from sensor_analytics.dispatch.dispatcher import AlertDispatcher
from sensor_analytics.exceptions import ProcessingError
from sensor_analytics.rules.store import RulesStore
from sensor_analytics.storage.memory import InMemoryStateStore, QueueEventSource
from sensor_analytics.workers import event_worker
from sensor_analytics.workers.event_worker import EventWorker


class BrokenStateStore:
    async def save_event(self, event) -> None:
        raise ConnectionError("redis down")


class ExplodingRules(RulesStore):
    def for_event(self, event):
        raise RuntimeError("rule lookup failed")


class FlakySource(QueueEventSource):
    """Fails the first read, then behaves like a queue."""

    def __init__(self) -> None:
        super().__init__()
        self.attempts = 0

    async def events(self):
        self.attempts += 1
        if self.attempts == 1:
            raise ConnectionError("connection reset by peer")
        async for payload in super().events():
            yield payload


def step_timer(step: float) -> Iterator[float]:
    value = 0.0
    while True:
        yield value
        value += step


async def wait_for_processed(worker: EventWorker, attempts: int, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while True:
            metrics = worker.get_metrics()
            if metrics["processed_count"] + metrics["error_count"] >= attempts:
                return
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout=timeout)


@pytest.fixture
def rules(clock) -> RulesStore:
    store = RulesStore(clock=clock)
    store.add(
        {
            "rule_id": "gas_crit",
            "sensor_type": "mq134",
            "condition": "gas_concentration > 500",
            "severity": "critical",
            "channels": ["push"],
            "throttle_minutes": 15,
        }
    )
    return store


@pytest.fixture
def dispatcher(clock) -> AlertDispatcher:
    return AlertDispatcher(channels={"push": PushChannel(clock=clock)}, clock=clock)


@pytest.fixture
def state_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def worker(rules, dispatcher, state_store, clock) -> EventWorker:
    return EventWorker(
        rules=rules,
        threshold=ThresholdEvaluator(notifier=dispatcher, clock=clock),
        dispatcher=dispatcher,
        anomaly=AnomalyDetector(notifier=dispatcher, clock=clock),
        correlation=CorrelationTracker(notifier=dispatcher, clock=clock),
        state_store=state_store,
        clock=clock,
    )


class TestProcessEvent:
    """Per-event pipeline."""

    @pytest.mark.asyncio
    async def test_threshold_alert_is_queued(self, worker, dispatcher, make_event) -> None:
        alerts = await worker.process_event(make_event("d1", "mq134", gas_concentration=600))

        assert [alert.rule_id for alert in alerts] == ["gas_crit"]
        assert dispatcher.pending == 1

    @pytest.mark.asyncio
    async def test_correlation_sees_threshold_alerts(self, worker, make_event) -> None:
        await worker.process_event(
            make_event("t1", "temperature", location="lab", temperature=90)
        )

        alerts = await worker.process_event(
            make_event("d1", "mq134", location="lab", gas_concentration=600)
        )

        assert [alert.rule_id for alert in alerts] == [
            "gas_crit",
            "correlation_multi_sensor_anomaly",
        ]

    @pytest.mark.asyncio
    async def test_state_is_saved(self, worker, state_store, make_event) -> None:
        event = make_event("d1", "mq134", gas_concentration=42)

        await worker.process_event(event)

        assert state_store.get_latest("d1") == event
        assert state_store.get_recent("mq134") == [event]

    @pytest.mark.asyncio
    async def test_state_store_failure_is_not_fatal(self, rules, dispatcher, clock, make_event) -> None:
        worker = EventWorker(
            rules=rules,
            threshold=ThresholdEvaluator(notifier=dispatcher, clock=clock),
            dispatcher=dispatcher,
            state_store=BrokenStateStore(),
            clock=clock,
        )

        with capture_logs() as logs:
            alerts = await worker.process_event(make_event("d1", "mq134", gas_concentration=600))

        assert len(alerts) == 1
        assert worker.get_metrics()["processed_count"] == 1
        assert any(log["event"] == "event_state_save_failed" for log in logs)

    @pytest.mark.asyncio
    async def test_evaluator_failure_raises_processing_error(self, dispatcher, clock, make_event) -> None:
        worker = EventWorker(
            rules=ExplodingRules(clock=clock),
            threshold=ThresholdEvaluator(notifier=dispatcher, clock=clock),
            dispatcher=dispatcher,
            clock=clock,
        )

        with pytest.raises(ProcessingError) as exc_info:
            await worker.process_event(make_event("d1", "mq134", gas_concentration=600))

        assert exc_info.value.device_id == "d1"
        assert worker.get_metrics()["error_count"] == 1

    @pytest.mark.asyncio
    async def test_malformed_payload(self, worker) -> None:
        with pytest.raises(ProcessingError):
            await worker.handle_payload({"sensor_type": "mq134", "value": 1})

        assert worker.get_metrics()["error_count"] == 1

    @pytest.mark.asyncio
    async def test_slow_event_is_logged(self, rules, dispatcher, clock, make_event) -> None:
        ticks = step_timer(2.0)
        worker = EventWorker(
            rules=rules,
            threshold=ThresholdEvaluator(notifier=dispatcher, clock=clock),
            dispatcher=dispatcher,
            clock=clock,
            timer=lambda: next(ticks),
        )

        with capture_logs() as logs:
            await worker.process_event(make_event("d1", "mq134", gas_concentration=1))

        slow = [log for log in logs if log["event"] == "slow_event_processing"]
        assert len(slow) == 1
        assert slow[0]["elapsed_ms"] == 2000.0
        assert slow[0]["log_level"] == "warning"


class TestSensorFailures:
    @pytest.mark.asyncio
    async def test_silent_sensor_is_queued(self, worker, dispatcher, make_event, clock) -> None:
        await worker.process_event(make_event("d1", "mq134", value=10))
        clock.advance(minutes=11)

        alerts = worker.check_sensor_failures()

        assert [alert.rule_id for alert in alerts] == ["anomaly_sensor_failure"]
        assert dispatcher.pending == 1

    @pytest.mark.asyncio
    async def test_no_anomaly_detector_means_no_check(self, rules, dispatcher, clock) -> None:
        worker = EventWorker(
            rules=rules,
            threshold=ThresholdEvaluator(notifier=dispatcher, clock=clock),
            dispatcher=dispatcher,
            clock=clock,
        )

        assert worker.check_sensor_failures() == []


class TestLifecycle:
    """Consuming from a source and shutting down cleanly."""

    @pytest.mark.asyncio
    async def test_consumes_until_stopped(self, worker, dispatcher) -> None:
        source = QueueEventSource()
        source.put({"device_id": "d1", "sensor_type": "mq134", "gas_concentration": 600})
        source.put({"sensor_type": "mq134", "gas_concentration": 600})
        source.put({"device_id": "d2", "sensor_type": "mq134", "gas_concentration": 20})

        await worker.start(source)
        assert worker.is_running
        await wait_for_processed(worker, 3)
        await worker.stop()

        metrics = worker.get_metrics()
        assert metrics["is_running"] is False
        assert metrics["processed_count"] == 2
        assert metrics["error_count"] == 1
        assert dispatcher.pending == 0
        assert dispatcher.get_delivery_stats()["by_channel"] == {"push": 1}

    @pytest.mark.asyncio
    async def test_source_failure_is_retried(self, worker, monkeypatch) -> None:
        monkeypatch.setattr(event_worker, "CONSUME_RETRY_DELAY_SECONDS", 0)
        source = FlakySource()
        source.put({"device_id": "d1", "sensor_type": "mq134", "gas_concentration": 20})
        source.put({"device_id": "d2", "sensor_type": "mq134", "gas_concentration": 30})

        with capture_logs() as logs:
            await worker.start(source)
            await wait_for_processed(worker, 2)
            await worker.stop()

        assert source.attempts == 2
        assert worker.get_metrics()["processed_count"] == 2
        assert "event_consumer_failed" in [log["event"] for log in logs]

    @pytest.mark.asyncio
    async def test_start_twice_is_harmless(self, worker) -> None:
        await worker.start()
        with capture_logs() as logs:
            await worker.start()
        await worker.stop()

        assert [log["event"] for log in logs] == ["event_worker_already_running"]

    @pytest.mark.asyncio
    async def test_stop_without_start(self, worker) -> None:
        await worker.stop()

        assert worker.is_running is False


class TestMetrics:
    @pytest.mark.asyncio
    async def test_rates(self, worker, make_event, clock) -> None:
        await worker.start()
        clock.advance(seconds=20)
        for _ in range(4):
            await worker.process_event(make_event("d1", "mq134", gas_concentration=10))
        with pytest.raises(ProcessingError):
            await worker.handle_payload({"value": 1})

        metrics = worker.get_metrics()
        await worker.stop()

        assert metrics["uptime_seconds"] == 20
        assert metrics["processed_count"] == 4
        assert metrics["error_count"] == 1
        assert metrics["events_per_second"] == 0.4
        assert metrics["average_events_per_second"] == 0.2
        assert metrics["success_rate"] == 80.0

    @pytest.mark.asyncio
    async def test_rate_window_slides(self, worker, make_event, clock) -> None:
        await worker.process_event(make_event("d1", "mq134", gas_concentration=10))
        clock.advance(seconds=10)

        assert worker.get_metrics()["events_per_second"] == 0.0

    def test_success_rate_without_events(self, worker) -> None:
        metrics = worker.get_metrics()

        assert metrics["success_rate"] == 0.0
        assert metrics["uptime_seconds"] == 0

    @pytest.mark.asyncio
    async def test_reset(self, worker, make_event) -> None:
        await worker.process_event(make_event("d1", "mq134", gas_concentration=10))

        worker.reset_metrics()

        assert worker.get_metrics()["processed_count"] == 0
