"""Push notification channel (no transport yet)."""

from sensor_analytics.clock import Clock, utc_now
from sensor_analytics.models.alerts import Alert, DeliveryResult, DeliveryStatus


class PushChannel:
    """Always reports ``not_implemented``."""

    name = "push"

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock

    async def send(self, alert: Alert) -> DeliveryResult:
        return DeliveryResult(
            channel=self.name,
            status=DeliveryStatus.NOT_IMPLEMENTED,
            timestamp=self._clock(),
        )
