"""Tests for the service wiring."""

from pathlib import Path

import pytest

from sensor_analytics.adapters.rest import AiohttpWebhookPoster
from sensor_analytics.config.models import AppConfig
from sensor_analytics.dispatch.channels import EmailChannel, WebhookChannel
from sensor_analytics.rules.store import RulesStore
from sensor_analytics.services import AnalyticsService, build_channels, build_dispatcher, build_worker
from sensor_analytics.storage.memory import InMemoryStateStore

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"


class TestFactories:
    def test_default_channels(self) -> None:
        channels = build_channels(AppConfig())

        assert list(channels) == ["email", "webhook", "sms", "push"]
        assert isinstance(channels["email"], EmailChannel)
        assert channels["email"].sender is None
        assert channels["webhook"].poster is None
        assert channels["sms"].sender is None

    def test_configured_webhook_gets_transport(self) -> None:
        config = AppConfig(webhook={"urls": ["https://hooks.example.com/a"], "timeout_seconds": 2})

        webhook = build_channels(config)["webhook"]

        assert isinstance(webhook, WebhookChannel)
        assert isinstance(webhook.poster, AiohttpWebhookPoster)
        assert webhook.timeout_seconds == 2

    def test_worker_respects_feature_flags(self) -> None:
        config = AppConfig(processing={"anomaly_detection": False, "correlation_window_seconds": 30})
        dispatcher = build_dispatcher(config)

        worker = build_worker(config, RulesStore(), dispatcher)

        assert worker.anomaly is None
        assert worker.correlation is not None
        assert worker.correlation.window.total_seconds() == 30


class TestAnalyticsService:
    @pytest.mark.asyncio
    async def test_lifecycle_without_redis(self) -> None:
        service = AnalyticsService()
        service.config = AppConfig(
            redis={"enabled": False},
            rules_file=str(CONFIG_DIR / "rules.yaml"),
        )

        await service._initialize()
        try:
            assert len(service.rules) == 4
            assert isinstance(service.state_store, InMemoryStateStore)
            assert service.source is None

            service.request_shutdown()
            await service._run()
            assert service.worker.is_running
        finally:
            await service._cleanup()

        assert service.worker.is_running is False
        assert service.service_name == "analytics-worker"
