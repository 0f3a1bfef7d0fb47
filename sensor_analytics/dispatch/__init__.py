"""
Alert delivery.

Modules:
    dispatcher: AlertDispatcher (dedup, concurrent per-channel delivery, queue)
    channels: Email, webhook, SMS and push channels
"""

from sensor_analytics.dispatch.dispatcher import AlertChannel, AlertDispatcher

__all__ = [
    "AlertChannel",
    "AlertDispatcher",
]
