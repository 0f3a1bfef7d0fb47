"""
Multi-sensor correlation and occupancy tracking.

This module provides the CorrelationTracker class which keeps, per location,
a short time-bounded buffer of recent events and a persistent occupancy
flag, and raises alerts for patterns that only make sense across sensors.

Rules (evaluated in this order, each yields at most one alert):
    confirmed_occupancy / stationary_presence (info):
        Presence or motion event. Both a presence-positive and a
        motion-positive event in the window confirms occupancy (high
        confidence). Presence without motion, with more than
        ``stationary_min_events`` windowed events, is reported as stationary
        presence (medium confidence); this is ambiguous between a motionless
        occupant and a stuck presence sensor.
    gas_with_occupancy:
        Gas reading >= 300 in a location that was occupied before this event
        is a warning; >= 500 is critical and adds sms to the channels.
    multi_sensor_anomaly (critical):
        At least two sensor types in the window and at least two windowed
        events flagged anomalous.
    occupancy_change (info):
        Presence readings set occupancy to their boolean value. Motion
        readings can only set it to True; only a negative presence reading
        clears it. Fires only when the flag changes.

Buffers hold at most ``buffer_size`` entries per location, and entries older
than twice the window are purged from every location on each call.

Example:
    >>> tracker = CorrelationTracker(notifier=dispatcher)
    >>> alerts = tracker.process(SensorEvent.from_payload(
    ...     {"device_id": "p1", "sensor_type": "ld2410", "location": "lab", "value": 1}))
    >>> tracker.get_occupancy_state("lab")
    True
"""

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, FrozenSet, Iterable, List, Optional, Sequence

import structlog

from sensor_analytics.clock import Clock, utc_now
from sensor_analytics.interfaces.transports import Notifier
from sensor_analytics.models.alerts import Alert, AlertCategory
from sensor_analytics.models.events import SensorEvent
from sensor_analytics.models.rules import Severity

logger = structlog.get_logger(__name__)


DEFAULT_WINDOW_SECONDS = 60
DEFAULT_STATIONARY_MIN_EVENTS = 5
DEFAULT_BUFFER_SIZE = 100
DEFAULT_GAS_WARNING_LEVEL = 300
DEFAULT_GAS_CRITICAL_LEVEL = 500

PRESENCE_SENSOR_TYPES: FrozenSet[str] = frozenset({"ld2410", "presence"})
MOTION_SENSOR_TYPES: FrozenSet[str] = frozenset({"pir", "motion"})
GAS_SENSOR_TYPES: FrozenSet[str] = frozenset({"mq134", "gas"})


@dataclass(frozen=True)
class BufferedEvent:
    """
    One entry of a location buffer.

    Attributes:
        arrival: When the tracker received the event.
        device_id: Reporting device.
        sensor_type: Reporting sensor type.
        presence_positive: Presence sensor reporting someone present.
        motion_positive: Motion sensor reporting motion.
        anomalous: Event carried an anomaly or critical alert.
    """

    arrival: datetime
    device_id: str
    sensor_type: str
    presence_positive: bool
    motion_positive: bool
    anomalous: bool


@dataclass
class Correlation:
    """A matched pattern, before it becomes an Alert."""

    correlation_type: str
    severity: Severity
    description: str
    channels: Sequence[str]
    value: Optional[Any] = None
    details: Optional[Dict[str, Any]] = None


class CorrelationTracker:
    """
    Correlates events per location and tracks occupancy.

    Attributes:
        notifier: Receives each correlation alert with its channels.
        window: Correlation window.
        stationary_min_events: Windowed entries needed for stationary presence.
        buffer_size: Ring buffer capacity per location.
        _buffers: location -> recent BufferedEvent entries.
        _occupancy: location -> occupancy flag.
    """

    def __init__(
        self,
        notifier: Optional[Notifier] = None,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        stationary_min_events: int = DEFAULT_STATIONARY_MIN_EVENTS,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        gas_warning_level: float = DEFAULT_GAS_WARNING_LEVEL,
        gas_critical_level: float = DEFAULT_GAS_CRITICAL_LEVEL,
        presence_types: Iterable[str] = PRESENCE_SENSOR_TYPES,
        motion_types: Iterable[str] = MOTION_SENSOR_TYPES,
        gas_types: Iterable[str] = GAS_SENSOR_TYPES,
        clock: Clock = utc_now,
    ) -> None:
        """
        Initialize the tracker.

        Args:
            notifier: Alert sink; alerts are only returned when None.
            window_seconds: Correlation window (default 60 s).
            stationary_min_events: Stationary presence needs more entries than this.
            buffer_size: Entries kept per location (default 100).
            gas_warning_level: Gas level for the warning alert.
            gas_critical_level: Gas level for the critical alert.
            presence_types: Sensor types treated as presence sensors.
            motion_types: Sensor types treated as motion sensors.
            gas_types: Sensor types treated as gas sensors.
            clock: Time source.
        """
        self.notifier = notifier
        self.window = timedelta(seconds=window_seconds)
        self.stationary_min_events = stationary_min_events
        self.buffer_size = buffer_size
        self.gas_warning_level = gas_warning_level
        self.gas_critical_level = gas_critical_level
        self.presence_types = frozenset(presence_types)
        self.motion_types = frozenset(motion_types)
        self.gas_types = frozenset(gas_types)
        self._clock = clock
        self._buffers: Dict[str, Deque[BufferedEvent]] = {}
        self._occupancy: Dict[str, bool] = {}

    def process(
        self,
        event: SensorEvent,
        related_alerts: Sequence[Alert] = (),
    ) -> List[Alert]:
        """
        Buffer the event and evaluate every correlation rule.

        Args:
            event: The incoming event.
            related_alerts: Alerts already raised for this event by the
                other evaluators; used to flag it as anomalous.

        Returns:
            List[Alert]: Zero or more correlation alerts.
        """
        now = self._clock()
        location = event.location

        self._add_to_buffer(event, related_alerts, now)
        self._purge(now)

        recent = self._recent(location, now)
        was_occupied = self._occupancy.get(location, False)

        matches = [
            self._detect_presence_with_motion(event, recent),
            self._detect_gas_with_occupancy(event, was_occupied),
            self._detect_multi_sensor_anomaly(location, recent),
            self._track_occupancy(event, was_occupied),
        ]

        alerts: List[Alert] = []
        for match in matches:
            if match is None:
                continue
            alert = self._create_alert(event, match, now)
            alerts.append(alert)

            logger.info(
                "correlation_detected",
                correlation_type=match.correlation_type,
                location=location,
                device_id=event.device_id,
                severity=match.severity.value,
            )

            if self.notifier is not None:
                self.notifier.submit(alert, match.channels)

        return alerts

    def get_occupancy_state(self, location: str) -> bool:
        """Occupancy flag of a location (False if never seen)."""
        return self._occupancy.get(location, False)

    def get_occupancy_stats(self) -> Dict[str, Any]:
        """Occupied/vacant counts and the flag of every known location."""
        occupied = sum(1 for flag in self._occupancy.values() if flag)
        return {
            "total_locations": len(self._occupancy),
            "occupied_count": occupied,
            "vacant_count": len(self._occupancy) - occupied,
            "locations": dict(self._occupancy),
        }

    def get_buffer(self, location: str) -> List[BufferedEvent]:
        """Buffered events for a location, oldest first."""
        return list(self._buffers.get(location, ()))

    def clear_buffer(self, location: str) -> None:
        """Forget a location's buffer and occupancy."""
        self._buffers.pop(location, None)
        self._occupancy.pop(location, None)

    def clear_all_buffers(self) -> None:
        """Forget every location."""
        self._buffers.clear()
        self._occupancy.clear()

    def is_presence_positive(self, event: SensorEvent) -> bool:
        """True when a presence-type event reports someone present."""
        if event.sensor_type not in self.presence_types:
            return False
        return event.lookup_number("value") == 1 or event.lookup("presence") is True

    def is_motion_positive(self, event: SensorEvent) -> bool:
        """True when a motion-type event reports motion."""
        if event.sensor_type not in self.motion_types:
            return False
        return event.lookup_number("value") == 1 or event.lookup("motion") is True

    def _is_anomalous(self, event: SensorEvent, related_alerts: Sequence[Alert]) -> bool:
        for alert in related_alerts:
            if alert.severity.is_critical or alert.category == AlertCategory.ANOMALY:
                return True
        return event.lookup("anomaly_type") is not None or event.lookup("alert_level") == "critical"

    def _add_to_buffer(
        self,
        event: SensorEvent,
        related_alerts: Sequence[Alert],
        now: datetime,
    ) -> None:
        buffer = self._buffers.get(event.location)
        if buffer is None:
            buffer = deque(maxlen=self.buffer_size)
            self._buffers[event.location] = buffer

        buffer.append(
            BufferedEvent(
                arrival=now,
                device_id=event.device_id,
                sensor_type=event.sensor_type,
                presence_positive=self.is_presence_positive(event),
                motion_positive=self.is_motion_positive(event),
                anomalous=self._is_anomalous(event, related_alerts),
            )
        )

    def _purge(self, now: datetime) -> None:
        horizon = self.window * 2
        for location in list(self._buffers):
            buffer = self._buffers[location]
            while buffer and now - buffer[0].arrival >= horizon:
                buffer.popleft()
            if not buffer:
                del self._buffers[location]

    def _recent(self, location: str, now: datetime) -> List[BufferedEvent]:
        return [
            entry
            for entry in self._buffers.get(location, ())
            if now - entry.arrival < self.window
        ]

    def _detect_presence_with_motion(
        self,
        event: SensorEvent,
        recent: List[BufferedEvent],
    ) -> Optional[Correlation]:
        if event.sensor_type not in self.presence_types | self.motion_types:
            return None

        has_presence = any(entry.presence_positive for entry in recent)
        has_motion = any(entry.motion_positive for entry in recent)

        if has_presence and has_motion:
            return Correlation(
                correlation_type="confirmed_occupancy",
                severity=Severity.INFO,
                description="Both presence and motion detected - confirmed occupancy",
                channels=("webhook",),
                details={"confidence": "high"},
            )

        if has_presence and not has_motion and len(recent) > self.stationary_min_events:
            return Correlation(
                correlation_type="stationary_presence",
                severity=Severity.INFO,
                description="Presence detected without motion - person may be stationary",
                channels=("webhook",),
                details={"confidence": "medium", "event_count": len(recent)},
            )

        return None

    def _detect_gas_with_occupancy(
        self,
        event: SensorEvent,
        occupied: bool,
    ) -> Optional[Correlation]:
        if event.sensor_type not in self.gas_types or not occupied:
            return None

        gas_level = event.lookup_number("gas_concentration")
        if gas_level is None:
            gas_level = event.lookup_number("value")
        if gas_level is None or gas_level < self.gas_warning_level:
            return None

        if gas_level >= self.gas_critical_level:
            return Correlation(
                correlation_type="gas_with_occupancy",
                severity=Severity.CRITICAL,
                description=f"High gas concentration ({gas_level:g}) detected in occupied space",
                channels=("email", "sms", "webhook"),
                value=gas_level,
                details={"gas_level": gas_level, "occupied": True},
            )

        return Correlation(
            correlation_type="gas_with_occupancy",
            severity=Severity.WARNING,
            description=f"Elevated gas concentration ({gas_level:g}) detected in occupied space",
            channels=("email", "webhook"),
            value=gas_level,
            details={"gas_level": gas_level, "occupied": True},
        )

    def _detect_multi_sensor_anomaly(
        self,
        location: str,
        recent: List[BufferedEvent],
    ) -> Optional[Correlation]:
        sensor_types = sorted({entry.sensor_type for entry in recent})
        if len(sensor_types) < 2:
            return None

        anomalous = [entry for entry in recent if entry.anomalous]
        if len(anomalous) < 2:
            return None

        return Correlation(
            correlation_type="multi_sensor_anomaly",
            severity=Severity.CRITICAL,
            description=f"Multiple sensors reporting anomalies in {location}",
            channels=("email", "webhook"),
            details={
                "affected_sensors": sensor_types,
                "event_count": len(anomalous),
            },
        )

    def _track_occupancy(self, event: SensorEvent, previous: bool) -> Optional[Correlation]:
        new_state = previous
        if event.sensor_type in self.presence_types:
            new_state = self.is_presence_positive(event)
        elif event.sensor_type in self.motion_types and self.is_motion_positive(event):
            new_state = True

        self._occupancy[event.location] = new_state
        if new_state == previous:
            return None

        return Correlation(
            correlation_type="occupancy_change",
            severity=Severity.INFO,
            description="Space occupied" if new_state else "Space vacated",
            channels=("webhook",),
            value=new_state,
            details={"occupied": new_state, "previous_state": previous},
        )

    def _create_alert(self, event: SensorEvent, match: Correlation, now: datetime) -> Alert:
        return Alert(
            rule_id=f"correlation_{match.correlation_type}",
            category=AlertCategory.CORRELATION,
            severity=match.severity,
            device_id=event.device_id,
            sensor_type=event.sensor_type,
            location=event.location,
            timestamp=now,
            value=match.value,
            message=match.description,
            details={
                "correlation_type": match.correlation_type,
                "channels": list(match.channels),
                **(match.details or {}),
            },
            event=event,
        )
