"""
SMS notification channel.

Sends ``[<LEVEL>] <device>: <message>`` truncated to 160 characters, one
send per recipient. The aggregate status is ``sent`` only if every
recipient succeeded, otherwise ``partial``.
"""

import asyncio
from typing import Any, Dict, Optional, Sequence

import structlog

from sensor_analytics.clock import Clock, utc_now
from sensor_analytics.interfaces.transports import SmsSender
from sensor_analytics.models.alerts import Alert, DeliveryResult, DeliveryStatus

logger = structlog.get_logger(__name__)

SMS_MAX_LENGTH = 160


def format_sms_message(alert: Alert) -> str:
    level = alert.severity.value.upper()
    device = alert.device_id or "Unknown"
    message = alert.message or "Alert triggered"
    return f"[{level}] {device}: {message}"[:SMS_MAX_LENGTH]


class SmsChannel:
    """
    Delivers alerts by text message.

    Attributes:
        name: Channel name ("sms").
        sender: Transport, or None when SMS is not configured.
        recipients: Destination phone numbers.
    """

    name = "sms"

    def __init__(
        self,
        sender: Optional[SmsSender],
        recipients: Sequence[str],
        clock: Clock = utc_now,
    ) -> None:
        self.sender = sender
        self.recipients = list(recipients)
        self._clock = clock

    async def send(self, alert: Alert) -> DeliveryResult:
        """Text every recipient and aggregate the outcomes."""
        if self.sender is None or not self.recipients:
            return DeliveryResult(
                channel=self.name,
                status=DeliveryStatus.SKIPPED,
                timestamp=self._clock(),
                detail="not_configured",
            )

        text = format_sms_message(alert)
        results = await asyncio.gather(
            *(self._send_one(recipient, text, alert.alert_id) for recipient in self.recipients)
        )

        all_ok = all(result["status"] == "sent" for result in results)
        return DeliveryResult(
            channel=self.name,
            status=DeliveryStatus.SENT if all_ok else DeliveryStatus.PARTIAL,
            timestamp=self._clock(),
            results=list(results),
        )

    async def _send_one(self, recipient: str, text: str, alert_id: str) -> Dict[str, Any]:
        try:
            await self.sender.send([recipient], text)
        except Exception as e:
            logger.warning("sms_failed", recipient=recipient, alert_id=alert_id, error=str(e))
            return {"recipient": recipient, "status": "failed", "error": str(e)}
        return {"recipient": recipient, "status": "sent"}
