"""
Alert dispatcher for routing alerts to notification channels.

This module provides the AlertDispatcher class which deduplicates alerts
and delivers each one to the channels it names, concurrently and
independently. One channel failing, timing out or being unconfigured never
affects another.

Key Features:
    - Deduplication by (rule_id, device_id, severity) within 5 minutes
    - Per-channel timeout; unknown channel names reported as skipped
    - Background delivery task fed by a bounded queue (submit/start/stop)
    - Ring of the last 1000 delivery results for observability

Example:
    >>> dispatcher = AlertDispatcher(
    ...     channels={
    ...         "email": EmailChannel(sender, ["ops@example.com"]),
    ...         "webhook": WebhookChannel(poster, ["https://hooks.example.com/a"]),
    ...         "push": PushChannel(),
    ...     },
    ... )
    >>> summary = await dispatcher.notify(alert, ["email", "webhook"])
    >>> [d.status.value for d in summary.deliveries]
    ['sent', 'sent']
"""

import asyncio
from collections import Counter, deque
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Optional, Protocol, Sequence, Tuple

import structlog

from sensor_analytics.clock import Clock, utc_now
from sensor_analytics.models.alerts import (
    Alert,
    DeliveryResult,
    DeliveryStatus,
    NotificationSummary,
)

logger = structlog.get_logger(__name__)


class AlertChannel(Protocol):
    """
    Protocol for alert notification channels.

    Implementations report transport problems in the returned
    DeliveryResult instead of raising.
    """

    name: str

    async def send(self, alert: Alert) -> DeliveryResult:
        """Deliver an alert over this channel."""
        ...


# Default configuration values
DEFAULT_DEDUP_WINDOW_SECONDS = 300
DEFAULT_DEDUP_RETENTION_SECONDS = 3600
DEFAULT_CHANNEL_TIMEOUT_SECONDS = 10.0
DEFAULT_QUEUE_SIZE = 1000
DEFAULT_DELIVERY_HISTORY_SIZE = 1000


class AlertDispatcher:
    """
    Deduplicates alerts and fans them out to channels.

    Attributes:
        channels: Dict mapping channel name to channel instance.
        dedup_window: Repeats of a key inside this window are dropped.
        dedup_retention: Dedup entries older than this are purged.
        channel_timeout_seconds: Upper bound for one channel's delivery.
        _seen: Dedup key -> time the alert was last delivered.
        _deliveries: Most recent delivery results.
        _queue: Pending (alert, channels) pairs for the background task.
    """

    def __init__(
        self,
        channels: Dict[str, AlertChannel],
        dedup_window_seconds: float = DEFAULT_DEDUP_WINDOW_SECONDS,
        dedup_retention_seconds: float = DEFAULT_DEDUP_RETENTION_SECONDS,
        channel_timeout_seconds: float = DEFAULT_CHANNEL_TIMEOUT_SECONDS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        delivery_history_size: int = DEFAULT_DELIVERY_HISTORY_SIZE,
        clock: Clock = utc_now,
    ) -> None:
        """
        Initialize the dispatcher.

        Args:
            channels: Dict mapping channel name to channel instance.
            dedup_window_seconds: Duplicate suppression window (default 5 min).
            dedup_retention_seconds: Age at which dedup entries are purged.
            channel_timeout_seconds: Timeout applied to each channel send.
            queue_size: Capacity of the submit queue.
            delivery_history_size: Delivery results kept for stats.
            clock: Time source.
        """
        self.channels = {name.lower(): channel for name, channel in channels.items()}
        self.dedup_window = timedelta(seconds=dedup_window_seconds)
        self.dedup_retention = timedelta(seconds=dedup_retention_seconds)
        self.channel_timeout_seconds = channel_timeout_seconds
        self._clock = clock

        self._seen: Dict[Tuple[str, str, str], datetime] = {}
        self._deliveries: Deque[DeliveryResult] = deque(maxlen=delivery_history_size)

        self._queue: "asyncio.Queue[Tuple[Alert, Tuple[str, ...]]]" = asyncio.Queue(maxsize=queue_size)
        self._task: Optional[asyncio.Task] = None
        self._dropped = 0

        logger.info(
            "alert_dispatcher_initialized",
            available_channels=list(self.channels.keys()),
        )

    async def notify(self, alert: Alert, channels: Sequence[str]) -> NotificationSummary:
        """
        Deliver an alert to the named channels.

        Args:
            alert: The Alert to deliver.
            channels: Channel names, in order; repeats are collapsed.

        Returns:
            NotificationSummary: One DeliveryResult per channel, or an empty
            summary flagged duplicate when the alert was deduplicated.
        """
        now = self._clock()
        self._purge_seen(now)

        if self.is_duplicate(alert, now):
            logger.info(
                "alert_deduplicated",
                alert_id=alert.alert_id,
                rule_id=alert.rule_id,
                device_id=alert.device_id,
            )
            return NotificationSummary(alert_id=alert.alert_id, timestamp=now, duplicate=True)

        self._seen[alert.dedup_key] = now

        names = list(dict.fromkeys(channel.lower() for channel in channels))
        deliveries = await asyncio.gather(*(self._deliver(alert, name) for name in names))
        self._deliveries.extend(deliveries)

        logger.info(
            "alert_dispatch_complete",
            alert_id=alert.alert_id,
            rule_id=alert.rule_id,
            deliveries={d.channel: d.status.value for d in deliveries},
        )

        return NotificationSummary(
            alert_id=alert.alert_id,
            timestamp=self._clock(),
            deliveries=list(deliveries),
        )

    def is_duplicate(self, alert: Alert, now: Optional[datetime] = None) -> bool:
        """Check whether the alert's key was delivered within the dedup window."""
        last = self._seen.get(alert.dedup_key)
        if last is None:
            return False
        return (now or self._clock()) - last < self.dedup_window

    def submit(self, alert: Alert, channels: Sequence[str]) -> None:
        """
        Queue an alert for background delivery.

        Never blocks; when the queue is full the alert is dropped and logged.
        """
        try:
            self._queue.put_nowait((alert, tuple(channels)))
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning(
                "notification_queue_full",
                alert_id=alert.alert_id,
                rule_id=alert.rule_id,
                dropped_total=self._dropped,
            )

    @property
    def pending(self) -> int:
        """Alerts waiting in the submit queue."""
        return self._queue.qsize()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background delivery task."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._consume())
        logger.info("alert_dispatcher_started")

    async def stop(self, drain_timeout_seconds: Optional[float] = 30.0) -> None:
        """
        Deliver what is queued, then stop the background task.

        Args:
            drain_timeout_seconds: Maximum wait for the queue to drain.
        """
        if self.is_running:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=drain_timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning("notification_drain_timeout", pending=self.pending)

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("alert_dispatcher_stopped", pending=self.pending)

    def get_delivery_stats(self) -> Dict[str, Any]:
        """Counts of recent deliveries by channel and by status."""
        return {
            "total": len(self._deliveries),
            "by_channel": dict(Counter(d.channel for d in self._deliveries)),
            "by_status": dict(Counter(d.status.value for d in self._deliveries)),
        }

    def get_recent_deliveries(self, limit: int = 50) -> List[DeliveryResult]:
        """The most recent delivery results, oldest first."""
        return list(self._deliveries)[-limit:]

    def clear_delivery_tracking(self) -> None:
        """Forget recorded delivery results."""
        self._deliveries.clear()

    def add_channel(self, name: str, channel: AlertChannel) -> None:
        """Register or replace a channel."""
        self.channels[name.lower()] = channel
        logger.info("channel_added", channel_name=name)

    def get_available_channels(self) -> List[str]:
        """Names of the registered channels."""
        return list(self.channels.keys())

    async def _consume(self) -> None:
        while True:
            alert, channels = await self._queue.get()
            try:
                await self.notify(alert, channels)
            except Exception as e:
                logger.error(
                    "notification_failed",
                    alert_id=alert.alert_id,
                    error=str(e),
                    exc_info=True,
                )
            finally:
                self._queue.task_done()

    async def _deliver(self, alert: Alert, name: str) -> DeliveryResult:
        channel = self.channels.get(name)
        if channel is None:
            logger.warning("channel_not_found", channel_name=name, alert_id=alert.alert_id)
            return DeliveryResult(
                channel=name,
                status=DeliveryStatus.SKIPPED,
                timestamp=self._clock(),
                detail="unknown_channel",
            )

        try:
            return await asyncio.wait_for(channel.send(alert), timeout=self.channel_timeout_seconds)
        except asyncio.TimeoutError:
            detail = f"timed out after {self.channel_timeout_seconds}s"
        except Exception as e:
            detail = str(e)

        logger.error(
            "delivery_failed",
            channel=name,
            alert_id=alert.alert_id,
            error=detail,
        )
        return DeliveryResult(
            channel=name,
            status=DeliveryStatus.FAILED,
            timestamp=self._clock(),
            detail=detail,
        )

    def _purge_seen(self, now: datetime) -> None:
        stale = [key for key, seen_at in self._seen.items() if now - seen_at > self.dedup_retention]
        for key in stale:
            del self._seen[key]
