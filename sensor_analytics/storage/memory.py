"""
In-process stand-ins for the Redis adapters.

InMemoryStateStore mirrors RedisStateStore's layout (latest event per
device, newest-N index per sensor type) without a server, and
QueueEventSource feeds payloads from an asyncio.Queue. Both are used when
Redis is disabled and in tests.
"""

import asyncio
from collections import deque
from typing import Any, AsyncIterator, Deque, Dict, List, Optional

from sensor_analytics.models.events import SensorEvent

DEFAULT_RECENT_EVENTS_LIMIT = 1000


class InMemoryStateStore:
    """
    Dictionary-backed last-known state.

    Attributes:
        latest: device_id -> most recent event.
        recent: sensor_type -> newest events, oldest first.
    """

    def __init__(self, recent_events_limit: int = DEFAULT_RECENT_EVENTS_LIMIT) -> None:
        self.recent_events_limit = recent_events_limit
        self.latest: Dict[str, SensorEvent] = {}
        self.recent: Dict[str, Deque[SensorEvent]] = {}

    async def save_event(self, event: SensorEvent) -> None:
        self.latest[event.device_id] = event
        events = self.recent.get(event.sensor_type)
        if events is None:
            events = deque(maxlen=self.recent_events_limit)
            self.recent[event.sensor_type] = events
        events.append(event)

    def get_latest(self, device_id: str) -> Optional[SensorEvent]:
        return self.latest.get(device_id)

    def get_recent(self, sensor_type: str, limit: int = 100) -> List[SensorEvent]:
        """Newest ``limit`` events of a sensor type, oldest first."""
        return list(self.recent.get(sensor_type, ()))[-limit:]


class QueueEventSource:
    """
    Event source fed through an asyncio.Queue.

    Example:
        >>> source = QueueEventSource()
        >>> source.put({"device_id": "d1", "sensor_type": "pir", "value": 1})
        >>> await worker.start(source)
    """

    _STOP = object()

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    def put(self, payload: Dict[str, Any]) -> None:
        self._queue.put_nowait(payload)

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        while True:
            item = await self._queue.get()
            if item is self._STOP:
                break
            yield item

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._STOP)
