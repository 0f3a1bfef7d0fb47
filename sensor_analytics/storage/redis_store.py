"""
Redis adapters for the event stream and last-known device state.

This module provides the two Redis collaborators of the event worker: the
stream consumer that feeds it normalized events and the write-only state
store it snapshots each event into.

Key Patterns:
    - Latest event per device: `event:{device_id}:latest` (string, 1 h TTL)
    - Recent events per type: `events:{sensor_type}` (sorted set scored by
      event time in ms, trimmed to the newest 1000 members)
    - Ingestion stream: `sensor-events` read by consumer group
      `analytics-workers`; each entry carries a JSON `data` field or the
      event's fields flat

Example:
    >>> from sensor_analytics.config.models import RedisConfig
    >>> store = RedisStateStore(RedisConfig(url="redis://localhost:6379"))
    >>> await store.connect()
    >>> await store.save_event(event)
    >>> source = RedisStreamSource(RedisConfig(), consumer_name="worker-1")
    >>> await source.connect()
    >>> async for payload in source.events():
    ...     await worker.handle_payload(payload)
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import structlog
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from sensor_analytics.config.models import RedisConfig
from sensor_analytics.models.events import SensorEvent

logger = structlog.get_logger(__name__)

READ_RETRY_DELAY_SECONDS = 1.0

# Envelope fields never JSON-decoded from flat stream entries
STRING_FIELDS = frozenset({"device_id", "sensor_type", "location"})


class RedisClientError(Exception):
    """Base exception for Redis adapter errors."""

    pass


class RedisConnectionException(RedisClientError):
    """Raised when Redis connection fails."""

    pass


class _RedisConnection:
    """
    Connection handling shared by the Redis adapters.

    A client passed in by the caller is used as-is and never closed here.
    """

    def __init__(self, config: RedisConfig, client: Optional[Redis] = None) -> None:
        self.config = config
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = client  # type: ignore[type-arg]
        self._owns_client = client is None
        self._connected = client is not None

    @property
    def is_connected(self) -> bool:
        return self._connected and self._client is not None

    @property
    def client(self) -> Redis:  # type: ignore[type-arg]
        """The connected client, for sharing its pool with another adapter."""
        return self._require_connection()

    async def connect(self) -> None:
        """
        Establish connection to Redis.

        Raises:
            RedisConnectionException: If connection fails.
        """
        if self._connected:
            logger.warning("redis_already_connected")
            return

        try:
            self._pool = ConnectionPool.from_url(
                self.config.url,
                db=self.config.db,
                max_connections=self.config.max_connections,
                socket_timeout=self.config.socket_timeout,
                socket_connect_timeout=self.config.socket_timeout,
                decode_responses=True,
            )
            self._client = Redis(connection_pool=self._pool)

            await self._client.ping()
            self._connected = True

            logger.info("redis_connected", url=self.config.url, db=self.config.db)

        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            self._connected = False
            logger.error("redis_connection_failed", url=self.config.url, error=str(e))
            raise RedisConnectionException(
                f"Failed to connect to Redis at {self.config.url}: {e}"
            ) from e

    async def disconnect(self) -> None:
        """Close the connection and release the pool. Safe to call twice."""
        if self._owns_client:
            if self._client is not None:
                try:
                    await self._client.aclose()
                except RedisError as e:
                    logger.warning("redis_close_error", error=str(e))
                finally:
                    self._client = None

            if self._pool is not None:
                try:
                    await self._pool.aclose()
                except RedisError as e:
                    logger.warning("redis_pool_close_error", error=str(e))
                finally:
                    self._pool = None

        self._connected = False
        logger.info("redis_disconnected")

    async def ping(self) -> bool:
        """True if Redis responds to PING."""
        if not self._client:
            return False

        try:
            await self._client.ping()
            return True
        except RedisError as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    def _require_connection(self) -> Redis:  # type: ignore[type-arg]
        if not self._connected or self._client is None:
            raise RedisConnectionException("Redis client is not connected")
        return self._client


class RedisStateStore(_RedisConnection):
    """
    Best-effort persistence of last-known device state.

    Write failures are logged and swallowed so that state persistence can
    never interrupt event processing.
    """

    KEY_LATEST = "event:{device_id}:latest"
    KEY_RECENT = "events:{sensor_type}"

    def __init__(self, config: RedisConfig, client: Optional[Redis] = None) -> None:
        super().__init__(config, client)
        self._failures = 0

    @property
    def failures(self) -> int:
        """Number of writes that failed since startup."""
        return self._failures

    async def save_event(self, event: SensorEvent) -> None:
        """
        Store the event as its device's latest state and index it by type.

        Args:
            event: The processed event.
        """
        if not self.is_connected:
            self._failures += 1
            logger.warning("state_store_not_connected", device_id=event.device_id)
            return

        client = self._require_connection()
        payload = event.to_payload()
        serialized = json.dumps(payload, default=str)
        recent_key = self.KEY_RECENT.format(sensor_type=event.sensor_type)
        score = int(event.timestamp.timestamp() * 1000)

        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(
                    self.KEY_LATEST.format(device_id=event.device_id),
                    serialized,
                    ex=self.config.latest_ttl_seconds,
                )
                pipe.zadd(recent_key, {serialized: score})
                # Keep only the newest N members
                pipe.zremrangebyrank(recent_key, 0, -(self.config.recent_events_limit + 1))
                await pipe.execute()

            logger.debug("event_state_saved", device_id=event.device_id)

        except RedisError as e:
            self._failures += 1
            logger.error(
                "event_state_save_failed",
                device_id=event.device_id,
                sensor_type=event.sensor_type,
                error=str(e),
            )

    async def get_latest(self, device_id: str) -> Optional[Dict[str, Any]]:
        """Read back a device's latest payload, or None."""
        client = self._require_connection()
        raw = await client.get(self.KEY_LATEST.format(device_id=device_id))
        return json.loads(raw) if raw else None


def decode_stream_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Turn a stream entry's fields into an event payload.

    An entry either wraps the whole payload as JSON in a ``data`` field or
    carries the payload's keys flat; flat reading values are JSON-decoded
    when possible so numbers and booleans survive. Identity fields stay
    strings, so a device named "123" keeps its name.

    Raises:
        ValueError: If the ``data`` field is not a JSON object.
    """
    if "data" in fields:
        payload = json.loads(fields["data"])
        if not isinstance(payload, dict):
            raise ValueError("stream entry data is not a JSON object")
        return payload

    payload: Dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, str) and key not in STRING_FIELDS:
            try:
                payload[key] = json.loads(value)
            except ValueError:
                payload[key] = value
        else:
            payload[key] = value
    return payload


class RedisStreamSource(_RedisConnection):
    """
    Consumer-group reader over the ingestion stream.

    Each entry is acknowledged only after the consumer resumes the iterator,
    i.e. after the previous payload has been processed. Undecodable entries
    are logged and acknowledged so they do not block the group.
    """

    def __init__(
        self,
        config: RedisConfig,
        consumer_name: Optional[str] = None,
        client: Optional[Redis] = None,
    ) -> None:
        super().__init__(config, client)
        self.stream = config.stream
        self.group = config.consumer_group
        self.consumer_name = consumer_name or config.consumer_name or "analytics-worker"
        self._closed = False
        self._group_ready = False

    async def ensure_group(self) -> None:
        """Create the consumer group (and stream) if it does not exist."""
        client = self._require_connection()
        try:
            await client.xgroup_create(self.stream, self.group, id="0", mkstream=True)
            logger.info("consumer_group_created", stream=self.stream, group=self.group)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
        self._group_ready = True

    async def read_batch(self) -> List[Tuple[str, Dict[str, Any]]]:
        """One XREADGROUP call; returns (entry_id, fields) pairs."""
        client = self._require_connection()
        response = await client.xreadgroup(
            groupname=self.group,
            consumername=self.consumer_name,
            streams={self.stream: ">"},
            count=self.config.read_count,
            block=self.config.block_ms,
        )
        entries: List[Tuple[str, Dict[str, Any]]] = []
        for _stream, messages in response or []:
            entries.extend(messages)
        return entries

    async def ack(self, entry_id: str) -> None:
        client = self._require_connection()
        await client.xack(self.stream, self.group, entry_id)

    async def _ack_quietly(self, entry_id: str) -> None:
        # A failed ack leaves the entry in the pending list
        try:
            await self.ack(entry_id)
        except RedisError as e:
            logger.error("stream_ack_failed", entry_id=entry_id, error=str(e))

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        """
        Yield decoded payloads until closed.

        Yields:
            Dict[str, Any]: One raw event payload per stream entry.
        """
        if not self._group_ready:
            await self.ensure_group()

        while not self._closed:
            try:
                entries = await self.read_batch()
            except RedisError as e:
                if self._closed:
                    break
                logger.error("stream_read_failed", stream=self.stream, error=str(e))
                await asyncio.sleep(READ_RETRY_DELAY_SECONDS)
                continue

            for entry_id, fields in entries:
                try:
                    payload = decode_stream_fields(fields)
                except ValueError as e:
                    logger.warning("stream_entry_undecodable", entry_id=entry_id, error=str(e))
                    await self._ack_quietly(entry_id)
                    continue

                yield payload
                await self._ack_quietly(entry_id)

    async def close(self) -> None:
        """Stop reading and disconnect."""
        self._closed = True
        await self.disconnect()
