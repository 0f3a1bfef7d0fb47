"""
Alert notification channels.

Every channel exposes a ``name`` and ``async send(alert) -> DeliveryResult``
and never raises for transport problems.

Components:
    email: EmailChannel over an EmailSender
    webhook: WebhookChannel over a WebhookPoster
    sms: SmsChannel over an SmsSender
    push: PushChannel placeholder

Example:
    >>> from sensor_analytics.dispatch.channels import EmailChannel, WebhookChannel
    >>>
    >>> webhook = WebhookChannel(poster=AiohttpWebhookPoster(), urls=["https://hooks.example.com/a"])
    >>> result = await webhook.send(alert)
"""

from sensor_analytics.dispatch.channels.email import (
    EmailChannel,
    format_email_body,
    format_email_subject,
)
from sensor_analytics.dispatch.channels.push import PushChannel
from sensor_analytics.dispatch.channels.sms import SMS_MAX_LENGTH, SmsChannel, format_sms_message
from sensor_analytics.dispatch.channels.webhook import (
    DEFAULT_WEBHOOK_TIMEOUT_SECONDS,
    WebhookChannel,
    build_webhook_payload,
)

__all__ = [
    # Email
    "EmailChannel",
    "format_email_body",
    "format_email_subject",
    # Webhook
    "DEFAULT_WEBHOOK_TIMEOUT_SECONDS",
    "WebhookChannel",
    "build_webhook_payload",
    # SMS
    "SMS_MAX_LENGTH",
    "SmsChannel",
    "format_sms_message",
    # Push
    "PushChannel",
]
