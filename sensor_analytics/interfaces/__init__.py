"""
Interfaces to external collaborators.

Modules:
    transports: Email, webhook, SMS, state store, event source and notifier protocols
"""

from sensor_analytics.interfaces.transports import (
    EmailSender,
    EventSource,
    Notifier,
    SmsSender,
    StateStore,
    WebhookPoster,
)

__all__ = [
    "EmailSender",
    "EventSource",
    "Notifier",
    "SmsSender",
    "StateStore",
    "WebhookPoster",
]
