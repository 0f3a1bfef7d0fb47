"""State store and event source implementations."""

from sensor_analytics.storage.memory import InMemoryStateStore, QueueEventSource
from sensor_analytics.storage.redis_store import (
    RedisClientError,
    RedisConnectionException,
    RedisStateStore,
    RedisStreamSource,
    decode_stream_fields,
)

__all__ = [
    "InMemoryStateStore",
    "QueueEventSource",
    "RedisClientError",
    "RedisConnectionException",
    "RedisStateStore",
    "RedisStreamSource",
    "decode_stream_fields",
]
