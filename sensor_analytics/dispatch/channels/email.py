"""
Email notification channel.

Formats an alert as a plain-text email and hands it to an EmailSender.
A channel without a sender or without recipients reports ``skipped``; a
transport error becomes a ``failed`` result and is never raised.

Example:
    >>> channel = EmailChannel(sender=SmtpEmailSender(...), recipients=["ops@example.com"])
    >>> result = await channel.send(alert)
    >>> result.status
    <DeliveryStatus.SENT: 'sent'>
"""

from typing import Optional, Sequence

import structlog

from sensor_analytics.clock import Clock, utc_now
from sensor_analytics.interfaces.transports import EmailSender
from sensor_analytics.models.alerts import Alert, DeliveryResult, DeliveryStatus

logger = structlog.get_logger(__name__)


def format_email_subject(alert: Alert) -> str:
    """``[<LEVEL>] Sensor Alert - <device>``"""
    return f"[{alert.severity.value.upper()}] Sensor Alert - {alert.device_id or 'Unknown'}"


def format_email_body(alert: Alert) -> str:
    """Plain-text body listing the alert's key fields."""
    lines = [
        "Sensor Alert Notification",
        "=========================",
        "",
        f"Alert Level: {alert.severity.value}",
        f"Alert ID: {alert.alert_id}",
        f"Rule: {alert.rule_id}",
        f"Device ID: {alert.device_id}",
        f"Sensor Type: {alert.sensor_type or 'n/a'}",
        f"Location: {alert.location or 'n/a'}",
        f"Timestamp: {alert.timestamp.isoformat()}",
        "",
        alert.message or "No description available",
    ]
    if alert.condition:
        lines.append(f"Condition: {alert.condition}")
    if alert.value is not None:
        lines.append(f"Value: {alert.value}")
    lines.extend(["", "---", "This is an automated alert from the sensor analytics service."])
    return "\n".join(lines)


class EmailChannel:
    """
    Delivers alerts by email.

    Attributes:
        name: Channel name ("email").
        sender: Transport, or None when email is not configured.
        recipients: Destination addresses.
    """

    name = "email"

    def __init__(
        self,
        sender: Optional[EmailSender],
        recipients: Sequence[str],
        clock: Clock = utc_now,
    ) -> None:
        self.sender = sender
        self.recipients = list(recipients)
        self._clock = clock

    async def send(self, alert: Alert) -> DeliveryResult:
        """
        Send the alert to every recipient in one message.

        Returns:
            DeliveryResult: sent, failed, or skipped when not configured.
        """
        if self.sender is None or not self.recipients:
            return DeliveryResult(
                channel=self.name,
                status=DeliveryStatus.SKIPPED,
                timestamp=self._clock(),
                detail="not_configured",
            )

        try:
            await self.sender.send(
                self.recipients,
                format_email_subject(alert),
                format_email_body(alert),
            )
        except Exception as e:
            logger.error(
                "delivery_failed",
                channel=self.name,
                alert_id=alert.alert_id,
                error=str(e),
            )
            return DeliveryResult(
                channel=self.name,
                status=DeliveryStatus.FAILED,
                timestamp=self._clock(),
                detail=str(e),
            )

        return DeliveryResult(
            channel=self.name,
            status=DeliveryStatus.SENT,
            timestamp=self._clock(),
            results=[{"recipient": r, "status": "sent"} for r in self.recipients],
        )
