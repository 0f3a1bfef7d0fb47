"""
Event worker orchestrating the evaluators for every incoming event.

This module provides the EventWorker class which consumes raw payloads from
an EventSource, turns them into SensorEvents and runs, in order:

    1. Threshold rules matching the event (RulesStore + ThresholdEvaluator)
    2. Anomaly detection (optional)
    3. Correlation, fed with the alerts already raised for the event (optional)
    4. A best-effort state snapshot through the StateStore

Evaluators hand alerts to the dispatcher's queue, so delivery never blocks
ingestion. Events are processed one at a time in arrival order. A failing
event is wrapped in ProcessingError, logged and counted; the loop goes on.

A background task periodically reports silent sensors as sensor_failure
alerts.

Example:
    >>> worker = EventWorker(
    ...     rules=store,
    ...     threshold=ThresholdEvaluator(notifier=dispatcher),
    ...     dispatcher=dispatcher,
    ...     anomaly=AnomalyDetector(notifier=dispatcher),
    ...     correlation=CorrelationTracker(notifier=dispatcher),
    ...     state_store=InMemoryStateStore(),
    ... )
    >>> await worker.start(source)
    >>> ...
    >>> await worker.stop()
    >>> worker.get_metrics()["processed_count"]
    42
"""

import asyncio
import time
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Sequence

import structlog

from sensor_analytics.clock import Clock, utc_now
from sensor_analytics.detection.anomaly import (
    DEFAULT_ANOMALY_CHANNELS,
    DEFAULT_SENSOR_TIMEOUT_MINUTES,
    AnomalyDetector,
)
from sensor_analytics.detection.correlation import CorrelationTracker
from sensor_analytics.detection.threshold import ThresholdEvaluator
from sensor_analytics.dispatch.dispatcher import AlertDispatcher
from sensor_analytics.exceptions import ProcessingError
from sensor_analytics.interfaces.transports import EventSource, StateStore
from sensor_analytics.models.alerts import Alert
from sensor_analytics.models.events import SensorEvent
from sensor_analytics.rules.store import RulesStore

logger = structlog.get_logger(__name__)


DEFAULT_SLOW_EVENT_SECONDS = 1.0
DEFAULT_RATE_WINDOW_SECONDS = 10.0
DEFAULT_SENSOR_CHECK_INTERVAL_SECONDS = 60.0
CONSUME_RETRY_DELAY_SECONDS = 1.0


class EventWorker:
    """
    Runs every evaluator over a stream of events.

    Attributes:
        rules: Rule lookup for threshold evaluation.
        threshold: Threshold evaluator.
        dispatcher: Alert dispatcher; started and stopped with the worker.
        anomaly: Anomaly detector, or None when disabled.
        correlation: Correlation tracker, or None when disabled.
        state_store: Snapshot sink, or None.
        _lock: Held while one event is processed; stop() waits on it.
    """

    def __init__(
        self,
        rules: RulesStore,
        threshold: ThresholdEvaluator,
        dispatcher: AlertDispatcher,
        anomaly: Optional[AnomalyDetector] = None,
        correlation: Optional[CorrelationTracker] = None,
        state_store: Optional[StateStore] = None,
        sensor_timeout_minutes: float = DEFAULT_SENSOR_TIMEOUT_MINUTES,
        sensor_check_interval_seconds: float = DEFAULT_SENSOR_CHECK_INTERVAL_SECONDS,
        sensor_failure_channels: Sequence[str] = DEFAULT_ANOMALY_CHANNELS,
        slow_event_seconds: float = DEFAULT_SLOW_EVENT_SECONDS,
        rate_window_seconds: float = DEFAULT_RATE_WINDOW_SECONDS,
        clock: Clock = utc_now,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        """
        Initialize the worker.

        Args:
            rules: Rules store.
            threshold: Threshold evaluator.
            dispatcher: Alert dispatcher.
            anomaly: Anomaly detector (None disables anomaly detection).
            correlation: Correlation tracker (None disables correlation).
            state_store: Where last-known state is written.
            sensor_timeout_minutes: Silence after which a sensor is reported.
            sensor_check_interval_seconds: How often silent sensors are checked.
            sensor_failure_channels: Channels for sensor_failure alerts.
            slow_event_seconds: Processing time that triggers a warning.
            rate_window_seconds: Window of the rolling events-per-second figure.
            clock: Wall-clock time source.
            timer: Monotonic timer used to measure processing time.
        """
        self.rules = rules
        self.threshold = threshold
        self.dispatcher = dispatcher
        self.anomaly = anomaly
        self.correlation = correlation
        self.state_store = state_store
        self.sensor_timeout_minutes = sensor_timeout_minutes
        self.sensor_check_interval_seconds = sensor_check_interval_seconds
        self.sensor_failure_channels = tuple(sensor_failure_channels)
        self.slow_event_seconds = slow_event_seconds
        self.rate_window = timedelta(seconds=rate_window_seconds)
        self._clock = clock
        self._timer = timer

        self._lock = asyncio.Lock()
        self._running = False
        self._source: Optional[EventSource] = None
        self._consume_task: Optional[asyncio.Task] = None
        self._sensor_check_task: Optional[asyncio.Task] = None

        self._processed = 0
        self._errors = 0
        self._started_at: Optional[datetime] = None
        self._recent: Deque[datetime] = deque()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, source: Optional[EventSource] = None) -> None:
        """
        Start the dispatcher, the sensor check and, if given, consumption.

        Args:
            source: Event source to consume; without one, events are fed
                through process_event/handle_payload.
        """
        if self._running:
            logger.warning("event_worker_already_running")
            return

        await self.dispatcher.start()

        self._running = True
        self._started_at = self._clock()

        if self.anomaly is not None:
            self._sensor_check_task = asyncio.create_task(self._sensor_check_loop())

        if source is not None:
            self._source = source
            self._consume_task = asyncio.create_task(self._consume(source))

        logger.info(
            "event_worker_started",
            anomaly_detection=self.anomaly is not None,
            correlation=self.correlation is not None,
            consuming=source is not None,
        )

    async def stop(self) -> None:
        """
        Stop consuming and drain pending deliveries.

        Waits for the event in flight, stops the consumer, closes the
        source, then lets the dispatcher deliver what is queued.
        """
        if not self._running:
            return
        self._running = False

        async with self._lock:
            tasks = [t for t in (self._consume_task, self._sensor_check_task) if t is not None]
            for task in tasks:
                task.cancel()

        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._consume_task = None
        self._sensor_check_task = None

        if self._source is not None:
            await self._source.close()
            self._source = None

        await self.dispatcher.stop()

        logger.info("event_worker_stopped", **self.get_metrics())

    async def handle_payload(self, payload: Mapping[str, Any]) -> List[Alert]:
        """
        Parse a raw payload and process it.

        Raises:
            ProcessingError: If the payload is malformed or processing fails.
        """
        try:
            event = SensorEvent.from_payload(payload)
        except (ValueError, TypeError, AttributeError) as e:
            self._errors += 1
            device_id = payload.get("device_id") if isinstance(payload, Mapping) else None
            logger.warning("malformed_event_payload", device_id=device_id, error=str(e))
            raise ProcessingError(device_id, e) from e

        return await self.process_event(event)

    async def process_event(self, event: SensorEvent) -> List[Alert]:
        """
        Run every evaluator over one event.

        Returns:
            List[Alert]: All alerts raised for the event.

        Raises:
            ProcessingError: If an evaluator fails; the failure is counted.
        """
        async with self._lock:
            started = self._timer()
            try:
                alerts = self._evaluate(event)
            except Exception as e:
                self._errors += 1
                logger.error(
                    "event_processing_failed",
                    device_id=event.device_id,
                    sensor_type=event.sensor_type,
                    error=str(e),
                    exc_info=True,
                )
                raise ProcessingError(event.device_id, e) from e

            await self._save_state(event)

            elapsed = self._timer() - started
            if elapsed > self.slow_event_seconds:
                logger.warning(
                    "slow_event_processing",
                    device_id=event.device_id,
                    sensor_type=event.sensor_type,
                    elapsed_ms=round(elapsed * 1000, 1),
                )

            self._record_processed()
            return alerts

    def check_sensor_failures(self) -> List[Alert]:
        """Report silent sensors now and queue their alerts."""
        if self.anomaly is None:
            return []

        alerts = self.anomaly.check_sensor_failures(self.sensor_timeout_minutes)
        for alert in alerts:
            self.dispatcher.submit(alert, self.sensor_failure_channels)
        return alerts

    def get_metrics(self) -> Dict[str, Any]:
        """Throughput and health counters."""
        now = self._clock()
        self._trim_recent(now)

        uptime = (now - self._started_at).total_seconds() if self._started_at else 0.0
        attempts = self._processed + self._errors
        window_seconds = self.rate_window.total_seconds()

        return {
            "is_running": self._running,
            "uptime_seconds": int(uptime),
            "processed_count": self._processed,
            "error_count": self._errors,
            "events_per_second": round(len(self._recent) / window_seconds, 2),
            "average_events_per_second": round(self._processed / uptime, 2) if uptime > 0 else 0.0,
            "success_rate": round(self._processed / attempts * 100, 2) if self._processed else 0.0,
            "pending_notifications": self.dispatcher.pending,
        }

    def reset_metrics(self) -> None:
        """Zero the counters and restart the uptime clock."""
        self._processed = 0
        self._errors = 0
        self._recent.clear()
        self._started_at = self._clock()

    def _evaluate(self, event: SensorEvent) -> List[Alert]:
        alerts = self.threshold.evaluate(event, self.rules.for_event(event))

        if self.anomaly is not None:
            alerts.extend(self.anomaly.process(event))

        if self.correlation is not None:
            alerts.extend(self.correlation.process(event, related_alerts=list(alerts)))

        return alerts

    async def _save_state(self, event: SensorEvent) -> None:
        if self.state_store is None:
            return
        try:
            await self.state_store.save_event(event)
        except Exception as e:
            logger.error("event_state_save_failed", device_id=event.device_id, error=str(e))

    def _record_processed(self) -> None:
        now = self._clock()
        self._processed += 1
        self._recent.append(now)
        self._trim_recent(now)

    def _trim_recent(self, now: datetime) -> None:
        cutoff = now - self.rate_window
        while self._recent and self._recent[0] <= cutoff:
            self._recent.popleft()

    async def _consume(self, source: EventSource) -> None:
        while self._running:
            try:
                async for payload in source.events():
                    if not self._running:
                        return
                    try:
                        await self.handle_payload(payload)
                    except ProcessingError:
                        # Already logged and counted
                        continue
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("event_consumer_failed", error=str(e), exc_info=True)
                await asyncio.sleep(CONSUME_RETRY_DELAY_SECONDS)

    async def _sensor_check_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.sensor_check_interval_seconds)
            try:
                self.check_sensor_failures()
            except Exception as e:
                logger.error("sensor_check_failed", error=str(e), exc_info=True)
