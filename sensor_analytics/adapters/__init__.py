"""
Concrete transport adapters.

Modules:
    smtp: SmtpEmailSender (smtplib in a worker thread)
    rest: AiohttpWebhookPoster and TwilioSmsSender (aiohttp)
"""

from sensor_analytics.adapters.rest import AiohttpWebhookPoster, TwilioSmsSender
from sensor_analytics.adapters.smtp import SmtpEmailSender

__all__ = [
    "AiohttpWebhookPoster",
    "SmtpEmailSender",
    "TwilioSmsSender",
]
