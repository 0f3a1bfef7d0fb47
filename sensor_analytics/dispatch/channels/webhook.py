"""
Webhook notification channel.

Posts ``{"alert", "timestamp", "event_type": "sensor_alert"}`` to every
configured URL concurrently, each under its own timeout. The aggregate
status is ``sent`` only if every URL succeeded, otherwise ``partial``; each
URL's outcome is kept in ``results``.
"""

import asyncio
from typing import Any, Dict, Optional, Sequence

import structlog

from sensor_analytics.clock import Clock, utc_now
from sensor_analytics.interfaces.transports import WebhookPoster
from sensor_analytics.models.alerts import Alert, DeliveryResult, DeliveryStatus

logger = structlog.get_logger(__name__)

DEFAULT_WEBHOOK_TIMEOUT_SECONDS = 5.0


def build_webhook_payload(alert: Alert, sent_at: str) -> Dict[str, Any]:
    return {
        "alert": alert.to_payload(),
        "timestamp": sent_at,
        "event_type": "sensor_alert",
    }


class WebhookChannel:
    """
    Delivers alerts to HTTP endpoints.

    Attributes:
        name: Channel name ("webhook").
        poster: Transport, or None when webhooks are not configured.
        urls: Endpoints to post to.
        timeout_seconds: Per-URL timeout.
    """

    name = "webhook"

    def __init__(
        self,
        poster: Optional[WebhookPoster],
        urls: Sequence[str],
        timeout_seconds: float = DEFAULT_WEBHOOK_TIMEOUT_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        self.poster = poster
        self.urls = list(urls)
        self.timeout_seconds = timeout_seconds
        self._clock = clock

    async def send(self, alert: Alert) -> DeliveryResult:
        """Post the alert to every URL and aggregate the outcomes."""
        if self.poster is None or not self.urls:
            return DeliveryResult(
                channel=self.name,
                status=DeliveryStatus.SKIPPED,
                timestamp=self._clock(),
                detail="no_urls_configured",
            )

        payload = build_webhook_payload(alert, self._clock().isoformat())
        results = await asyncio.gather(
            *(self._post_one(url, payload, alert.alert_id) for url in self.urls)
        )

        all_ok = all(result["status"] == "success" for result in results)
        return DeliveryResult(
            channel=self.name,
            status=DeliveryStatus.SENT if all_ok else DeliveryStatus.PARTIAL,
            timestamp=self._clock(),
            results=list(results),
        )

    async def _post_one(self, url: str, payload: Dict[str, Any], alert_id: str) -> Dict[str, Any]:
        try:
            status_code = await asyncio.wait_for(
                self.poster.post(url, payload, self.timeout_seconds),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("webhook_timeout", url=url, alert_id=alert_id, timeout=self.timeout_seconds)
            return {"url": url, "status": "failed", "error": "timeout"}
        except Exception as e:
            logger.warning("webhook_failed", url=url, alert_id=alert_id, error=str(e))
            return {"url": url, "status": "failed", "error": str(e)}

        return {"url": url, "status": "success", "status_code": status_code}
