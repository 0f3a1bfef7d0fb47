"""
Sensor event model.

A SensorEvent is one normalized reading from a device at a point in time.
Well-known envelope fields (device, sensor type, location, timestamp) are
typed; every other payload key is kept in ``readings`` and may be nested.

Lookups are explicit: ``lookup`` walks a dot-separated path and returns None
as soon as a segment is missing, which is what lets a rule referencing an
absent field evaluate to false instead of raising.

Example:
    >>> event = SensorEvent.from_payload({
    ...     "device_id": "d1",
    ...     "sensor_type": "mq134",
    ...     "gas_concentration": 612,
    ...     "sensor": {"reading": 750},
    ... })
    >>> event.lookup_number("sensor.reading")
    750.0
    >>> event.location
    'd1'
"""

import copy
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field, model_validator

from sensor_analytics.clock import utc_now

ENVELOPE_FIELDS: Tuple[str, ...] = ("device_id", "sensor_type", "location", "timestamp")

# Epoch values above this are treated as milliseconds.
_EPOCH_MILLIS_CUTOFF = 100_000_000_000

FieldPath = Union[str, Sequence[str]]


def split_path(path: FieldPath) -> Tuple[str, ...]:
    """Normalize a dotted string or a sequence of segments to a tuple."""
    if isinstance(path, str):
        return tuple(part for part in path.split(".") if part)
    return tuple(path)


def _parse_timestamp(value: Any) -> datetime:
    if value is None:
        return utc_now()
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > _EPOCH_MILLIS_CUTOFF else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Unsupported timestamp: {value!r}")


class SensorEvent(BaseModel):
    """
    One normalized, immutable sensor reading.

    Attributes:
        device_id: Identifier of the reporting device.
        sensor_type: Sensor model or kind (e.g. "mq134", "pir").
        location: Location key; defaults to device_id.
        timestamp: When the reading was taken (UTC).
        readings: All remaining payload values, possibly nested.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    device_id: str = Field(
        ...,
        description="Identifier of the reporting device",
        min_length=1,
    )
    sensor_type: str = Field(
        ...,
        description="Sensor model or kind",
        min_length=1,
    )
    location: str = Field(
        ...,
        description="Location key used for correlation",
        min_length=1,
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the reading was taken",
    )
    readings: Dict[str, Any] = Field(
        default_factory=dict,
        description="Reading values, possibly nested",
    )

    @model_validator(mode="before")
    @classmethod
    def default_location(cls, data: Any) -> Any:
        """Fall back to the device id when no location is given."""
        if isinstance(data, dict) and not data.get("location"):
            data = {**data, "location": data.get("device_id")}
        return data

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SensorEvent":
        """
        Build an event from a flat ingestion payload.

        Args:
            payload: Decoded message; envelope keys are lifted out and the
                rest becomes ``readings``.

        Returns:
            SensorEvent: The immutable event.

        Raises:
            pydantic.ValidationError: If device_id or sensor_type is missing.
            ValueError: If the timestamp cannot be parsed.
        """
        readings = {
            key: copy.deepcopy(value)
            for key, value in payload.items()
            if key not in ENVELOPE_FIELDS
        }
        return cls(
            device_id=payload.get("device_id"),
            sensor_type=payload.get("sensor_type"),
            location=payload.get("location"),
            timestamp=_parse_timestamp(payload.get("timestamp")),
            readings=readings,
        )

    def lookup(self, path: FieldPath) -> Optional[Any]:
        """
        Resolve a dot-separated path against the event.

        Single-segment paths naming an envelope field (e.g. "device_id")
        resolve to that attribute unless the payload shadows it.

        Returns:
            The value at the path, or None when any segment is missing.
        """
        parts = split_path(path)
        if not parts:
            return None

        if len(parts) == 1 and parts[0] in ENVELOPE_FIELDS and parts[0] not in self.readings:
            return getattr(self, parts[0])

        current: Any = self.readings
        for part in parts:
            if isinstance(current, Mapping) and part in current:
                current = current[part]
            else:
                return None
        return current

    def lookup_number(self, path: FieldPath) -> Optional[float]:
        """Resolve a path and return it only if it is an int or float."""
        value = self.lookup(path)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value)

    def to_payload(self) -> Dict[str, Any]:
        """Flatten back into a JSON-ready payload."""
        return {
            **self.readings,
            "device_id": self.device_id,
            "sensor_type": self.sensor_type,
            "location": self.location,
            "timestamp": self.timestamp.isoformat(),
        }
