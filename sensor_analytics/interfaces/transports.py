"""
Narrow interfaces to the engine's external collaborators.

The core never talks to SMTP servers, HTTP endpoints, SMS gateways or Redis
directly. It depends only on the protocols below; concrete implementations
live in ``sensor_analytics.adapters`` and ``sensor_analytics.storage`` and are
wired together by the service runner.

Transport implementations signal failure by raising DeliveryFailure (or any
exception); channels convert that into a DeliveryResult.

Example:
    >>> class PrintingSmsSender:
    ...     async def send(self, recipients, text):
    ...         for number in recipients:
    ...             print(number, text)
    >>> isinstance(PrintingSmsSender(), SmsSender)
    True
"""

from typing import Any, AsyncIterator, Dict, Protocol, Sequence, runtime_checkable

from sensor_analytics.models.alerts import Alert
from sensor_analytics.models.events import SensorEvent


@runtime_checkable
class EmailSender(Protocol):
    """Sends one plain-text email to a list of recipients."""

    async def send(self, recipients: Sequence[str], subject: str, body: str) -> None:
        ...


@runtime_checkable
class WebhookPoster(Protocol):
    """Posts a JSON payload to one URL."""

    async def post(self, url: str, payload: Dict[str, Any], timeout_seconds: float) -> int:
        """
        Post the payload.

        Returns:
            int: HTTP status code of a successful response.

        Raises:
            DeliveryFailure: On non-2xx responses or transport errors.
            asyncio.TimeoutError: If the timeout elapses.
        """
        ...


@runtime_checkable
class SmsSender(Protocol):
    """Sends one text message to a list of phone numbers."""

    async def send(self, recipients: Sequence[str], text: str) -> None:
        ...


@runtime_checkable
class StateStore(Protocol):
    """Write-only sink for last-known device state."""

    async def save_event(self, event: SensorEvent) -> None:
        ...


@runtime_checkable
class EventSource(Protocol):
    """Async stream of raw event payloads."""

    def events(self) -> AsyncIterator[Dict[str, Any]]:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class Notifier(Protocol):
    """What evaluators hand their alerts to."""

    def submit(self, alert: Alert, channels: Sequence[str]) -> None:
        ...
