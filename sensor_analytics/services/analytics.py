"""
Analytics service: wires configuration into a running EventWorker.

This service is responsible for:
- Loading rules from the configured rules file
- Building notification channels from the email/sms/webhook sections
- Consuming the Redis event stream (or running without one)
- Persisting last-known device state
- Logging worker metrics periodically

The build_* factories are usable on their own, e.g. to embed the engine in
another process or in tests.
"""

import asyncio
import os
from pathlib import Path
from typing import Dict, Optional, Union

from sensor_analytics.adapters.rest import AiohttpWebhookPoster, TwilioSmsSender
from sensor_analytics.adapters.smtp import SmtpEmailSender
from sensor_analytics.clock import Clock, utc_now
from sensor_analytics.config.loader import load_rules_file
from sensor_analytics.config.models import AppConfig
from sensor_analytics.detection.anomaly import AnomalyDetector
from sensor_analytics.detection.correlation import CorrelationTracker
from sensor_analytics.detection.threshold import ThresholdEvaluator
from sensor_analytics.dispatch.channels import EmailChannel, PushChannel, SmsChannel, WebhookChannel
from sensor_analytics.dispatch.dispatcher import AlertChannel, AlertDispatcher
from sensor_analytics.interfaces.transports import EventSource, StateStore
from sensor_analytics.rules.store import RulesStore
from sensor_analytics.services.runner import ServiceRunner
from sensor_analytics.storage.memory import InMemoryStateStore
from sensor_analytics.storage.redis_store import RedisStateStore, RedisStreamSource
from sensor_analytics.workers.event_worker import EventWorker


def build_channels(config: AppConfig, clock: Clock = utc_now) -> Dict[str, AlertChannel]:
    """
    Create every channel; disabled or incomplete ones report skipped.

    Returns:
        Dict mapping channel name to channel.
    """
    email_sender = None
    if config.email.enabled and config.email.smtp_host:
        email_sender = SmtpEmailSender(
            host=config.email.smtp_host,
            port=config.email.smtp_port,
            username=config.email.smtp_user,
            password=config.email.smtp_pass,
            use_tls=config.email.use_tls,
            from_address=config.email.from_address,
        )

    poster = None
    if config.webhook.enabled and config.webhook.urls:
        poster = AiohttpWebhookPoster(timeout_seconds=config.webhook.timeout_seconds)

    sms_sender = None
    if config.sms.enabled and config.sms.has_credentials:
        sms_sender = TwilioSmsSender(
            account_sid=config.sms.twilio_account_sid,
            auth_token=config.sms.twilio_auth_token,
            from_number=config.sms.twilio_phone_number,
        )

    return {
        "email": EmailChannel(email_sender, config.email.recipients, clock=clock),
        "webhook": WebhookChannel(
            poster,
            config.webhook.urls,
            timeout_seconds=config.webhook.timeout_seconds,
            clock=clock,
        ),
        "sms": SmsChannel(sms_sender, config.sms.recipients, clock=clock),
        "push": PushChannel(clock=clock),
    }


def build_dispatcher(
    config: AppConfig,
    channels: Optional[Dict[str, AlertChannel]] = None,
    clock: Clock = utc_now,
) -> AlertDispatcher:
    """Create the dispatcher from the dispatch section."""
    dispatch = config.dispatch
    return AlertDispatcher(
        channels=channels if channels is not None else build_channels(config, clock),
        dedup_window_seconds=dispatch.dedup_window_seconds,
        dedup_retention_seconds=dispatch.dedup_retention_seconds,
        channel_timeout_seconds=dispatch.channel_timeout_seconds,
        queue_size=dispatch.queue_size,
        delivery_history_size=dispatch.delivery_history_size,
        clock=clock,
    )


def build_worker(
    config: AppConfig,
    rules: RulesStore,
    dispatcher: AlertDispatcher,
    state_store: Optional[StateStore] = None,
    clock: Clock = utc_now,
) -> EventWorker:
    """Create the evaluators and the worker from the processing section."""
    processing = config.processing

    anomaly = None
    if processing.anomaly_detection:
        anomaly = AnomalyDetector(
            notifier=dispatcher,
            channels=processing.anomaly_channels,
            max_history_size=processing.max_history_size,
            clock=clock,
        )

    correlation = None
    if processing.correlation:
        correlation = CorrelationTracker(
            notifier=dispatcher,
            window_seconds=processing.correlation_window_seconds,
            stationary_min_events=processing.stationary_min_events,
            buffer_size=processing.location_buffer_size,
            clock=clock,
        )

    return EventWorker(
        rules=rules,
        threshold=ThresholdEvaluator(notifier=dispatcher, clock=clock),
        dispatcher=dispatcher,
        anomaly=anomaly,
        correlation=correlation,
        state_store=state_store,
        sensor_timeout_minutes=processing.sensor_timeout_minutes,
        sensor_check_interval_seconds=config.service.sensor_check_interval_seconds,
        sensor_failure_channels=processing.anomaly_channels,
        slow_event_seconds=processing.slow_event_seconds,
        rate_window_seconds=processing.rate_window_seconds,
        clock=clock,
    )


class AnalyticsService(ServiceRunner):
    """
    Runs the analytics engine until SIGINT/SIGTERM.

    Attributes:
        rules: Rules store, bootstrapped from the rules file.
        dispatcher: Alert dispatcher.
        worker: Event worker.
        state_store: Redis state store, or an in-memory one with Redis disabled.
        source: Redis stream source, or None with Redis disabled.
    """

    def __init__(self, config_path: Optional[Union[Path, str]] = None) -> None:
        super().__init__(config_path)
        self.rules = RulesStore()
        self.dispatcher: Optional[AlertDispatcher] = None
        self.worker: Optional[EventWorker] = None
        self.state_store: Optional[StateStore] = None
        self.source: Optional[EventSource] = None

    @property
    def service_name(self) -> str:
        return "analytics-worker"

    async def _initialize(self) -> None:
        """Load rules, build channels and connect Redis."""
        if self.config is None:
            raise RuntimeError("Configuration not loaded")
        config = self.config

        for warning in config.validate_channels():
            self.logger.warning("channel_config_warning", warning=warning)

        if config.rules_file:
            result = self.rules.bulk_import(load_rules_file(config.rules_file))
            for error in result["errors"]:
                self.logger.warning("rule_import_failed", **error)

        if config.redis.enabled:
            store = RedisStateStore(config.redis)
            await store.connect()
            self.state_store = store
            self.source = RedisStreamSource(
                config.redis,
                consumer_name=config.redis.consumer_name or f"{config.service.name}-{os.getpid()}",
                client=store.client,
            )
        else:
            self.state_store = InMemoryStateStore(config.redis.recent_events_limit)

        self.dispatcher = build_dispatcher(config)
        self.worker = build_worker(config, self.rules, self.dispatcher, self.state_store)

        self.logger.info(
            "analytics_components_initialized",
            rules=len(self.rules),
            channels=self.dispatcher.get_available_channels(),
            redis_enabled=config.redis.enabled,
            anomaly_detection=config.processing.anomaly_detection,
            correlation=config.processing.correlation,
        )

    async def _run(self) -> None:
        """Start the worker and log metrics until shutdown."""
        if self.config is None or self.worker is None:
            raise RuntimeError("Service not properly initialized")

        await self.worker.start(self.source)

        interval = self.config.service.metrics_log_interval_seconds
        while not self.shutdown_event.is_set():
            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                self.logger.info("worker_metrics", **self.worker.get_metrics())

    async def _cleanup(self) -> None:
        """Stop the worker, close transports and disconnect Redis."""
        if self.worker is not None:
            await self.worker.stop()

        if self.dispatcher is not None:
            for channel in self.dispatcher.channels.values():
                transport = getattr(channel, "poster", None) or getattr(channel, "sender", None)
                close = getattr(transport, "close", None)
                if close is not None:
                    await close()

        if isinstance(self.state_store, RedisStateStore):
            await self.state_store.disconnect()
