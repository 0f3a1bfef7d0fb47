"""
HTTP transports built on aiohttp.

Classes:
    AiohttpWebhookPoster: WebhookPoster posting JSON to arbitrary URLs
    TwilioSmsSender: SmsSender using the Twilio Messages REST API

Both share one lazily created ClientSession each and must be closed on
shutdown.
"""

import asyncio
from typing import Any, Dict, Optional, Sequence

import aiohttp
import structlog

from sensor_analytics.exceptions import DeliveryFailure

logger = structlog.get_logger(__name__)

USER_AGENT = "sensor-analytics/0.1"
TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class _SessionMixin:
    """Lazy aiohttp session handling shared by the HTTP transports."""

    timeout_seconds: float
    _session: Optional[aiohttp.ClientSession]

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure aiohttp session is created."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": USER_AGENT},
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("http_session_closed", transport=type(self).__name__)


class AiohttpWebhookPoster(_SessionMixin):
    """
    Posts alert payloads as JSON.

    Example:
        >>> poster = AiohttpWebhookPoster()
        >>> status = await poster.post("https://hooks.example.com/a", payload, 5.0)
        >>> await poster.close()
    """

    def __init__(self, timeout_seconds: float = 5.0) -> None:
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def post(self, url: str, payload: Dict[str, Any], timeout_seconds: float) -> int:
        """
        Post one payload.

        Returns:
            int: The HTTP status code.

        Raises:
            DeliveryFailure: On HTTP >= 400 or client errors.
            asyncio.TimeoutError: If the request exceeds the timeout.
        """
        session = await self._ensure_session()
        alert_id = str(payload.get("alert", {}).get("alert_id", ""))

        try:
            async with session.post(
                url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=timeout_seconds),
                headers={"X-Alert-ID": alert_id},
            ) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    raise DeliveryFailure("webhook", f"HTTP {response.status}: {error_text[:200]}")
                return response.status
        except aiohttp.ClientError as e:
            raise DeliveryFailure("webhook", str(e)) from e


class TwilioSmsSender(_SessionMixin):
    """
    Sends SMS through the Twilio REST API.

    Example:
        >>> sender = TwilioSmsSender(account_sid="AC...", auth_token="...", from_number="+15550100")
        >>> await sender.send(["+15550101"], "[CRITICAL] d1: gas high")
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        timeout_seconds: float = 10.0,
        api_base: str = TWILIO_API_BASE,
    ) -> None:
        self.account_sid = account_sid
        self._auth = aiohttp.BasicAuth(account_sid, auth_token)
        self.from_number = from_number
        self.timeout_seconds = timeout_seconds
        self.api_base = api_base.rstrip("/")
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def messages_url(self) -> str:
        return f"{self.api_base}/Accounts/{self.account_sid}/Messages.json"

    async def send(self, recipients: Sequence[str], text: str) -> None:
        """
        Send the text to each recipient.

        Raises:
            DeliveryFailure: On the first recipient that fails.
        """
        session = await self._ensure_session()
        for recipient in recipients:
            data = {"To": recipient, "From": self.from_number, "Body": text}
            try:
                async with session.post(self.messages_url, data=data, auth=self._auth) as response:
                    if response.status >= 400:
                        error_text = await response.text()
                        raise DeliveryFailure("sms", f"HTTP {response.status}: {error_text[:200]}")
                    body = await response.json(content_type=None)
            except aiohttp.ClientError as e:
                raise DeliveryFailure("sms", str(e)) from e
            except asyncio.TimeoutError as e:
                raise DeliveryFailure("sms", f"timeout after {self.timeout_seconds}s") from e

            logger.info("sms_sent", recipient=recipient, sid=body.get("sid") if isinstance(body, dict) else None)
