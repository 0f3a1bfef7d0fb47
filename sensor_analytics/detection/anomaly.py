"""
Statistical anomaly detection over per-device history.

This module provides the AnomalyDetector class which keeps a bounded
history of numeric readings per device and runs four independent detectors
on every event. Each detector yields at most one alert per event.

Detectors:
    sudden_spike / sudden_drop (critical):
        Needs at least 5 readings before the current one. Compares the
        current value with mean +/- 3 * population std of the 5 prior
        readings. A std of 0 never flags.
    flatline (warning):
        Needs 10 readings including the current one; flags when all 10 are
        identical (a stuck sensor).
    out_of_range (critical):
        Fixed inclusive bounds per sensor type; unknown types never flag.
    rapid_fluctuation (warning):
        Needs 10 readings including the current one; flags when the average
        absolute successive change exceeds 20% of their mean (mean > 0).

The device's numeric value is the first int/float among VALUE_FIELDS.
Events without one refresh the device's last-seen time but are not added
to history. Last-seen times also drive check_sensor_failures.

Example:
    >>> detector = AnomalyDetector(notifier=dispatcher)
    >>> for reading in range(100, 110):
    ...     detector.process(SensorEvent.from_payload(
    ...         {"device_id": "d2", "sensor_type": "mq134", "value": reading}))
    >>> alerts = detector.process(SensorEvent.from_payload(
    ...     {"device_id": "d2", "sensor_type": "mq134", "value": 500}))
    >>> [a.rule_id for a in alerts]
    ['anomaly_sudden_spike', 'anomaly_rapid_fluctuation']
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import structlog

from sensor_analytics.clock import Clock, utc_now
from sensor_analytics.detection.statistics import (
    RollingWindow,
    mean,
    mean_abs_change,
    summarize,
)
from sensor_analytics.interfaces.transports import Notifier
from sensor_analytics.models.alerts import Alert, AlertCategory
from sensor_analytics.models.events import SensorEvent
from sensor_analytics.models.rules import Severity

logger = structlog.get_logger(__name__)


VALUE_FIELDS: Tuple[str, ...] = (
    "value",
    "reading",
    "gas_concentration",
    "temperature",
    "humidity",
    "distance",
)

# Inclusive valid ranges per sensor type
DEFAULT_VALID_RANGES: Dict[str, Tuple[float, float]] = {
    "mq134": (0, 1000),
    "gas": (0, 1000),
    "ld2410": (0, 1),
    "presence": (0, 1),
    "pir": (0, 1),
    "motion": (0, 1),
    "temperature": (-40, 85),
    "humidity": (0, 100),
}

DEFAULT_ANOMALY_CHANNELS: Tuple[str, ...] = ("email", "webhook")
DEFAULT_MAX_HISTORY_SIZE = 100
DEFAULT_SENSOR_TIMEOUT_MINUTES = 10

SPIKE_WINDOW = 5
SPIKE_SIGMA = 3.0
FLATLINE_WINDOW = 10
FLUCTUATION_WINDOW = 10
FLUCTUATION_RATIO = 0.2


def extract_value(event: SensorEvent) -> Optional[float]:
    """First numeric value among VALUE_FIELDS, or None."""
    for name in VALUE_FIELDS:
        value = event.lookup_number(name)
        if value is not None:
            return value
    return None


def format_number(value: float) -> str:
    """Render whole floats without a trailing .0."""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


@dataclass
class Anomaly:
    """
    One detector finding, before it is turned into an Alert.

    Attributes:
        anomaly_type: Detector name (sudden_spike, flatline, ...).
        severity: Alert severity.
        description: Human-readable explanation.
        value: The value that triggered the finding.
        details: Detector-specific numbers.
    """

    anomaly_type: str
    severity: Severity
    description: str
    value: Optional[float]
    details: Dict[str, Any] = field(default_factory=dict)


class AnomalyDetector:
    """
    Detects statistical anomalies and silent sensors.

    Attributes:
        notifier: Receives each anomaly alert with ``channels``.
        channels: Channels used for anomaly alerts.
        max_history_size: Ring buffer capacity per device.
        valid_ranges: Inclusive (min, max) per sensor type.
        _history: device_id -> RollingWindow of readings.
        _last_seen: device_id -> time of the device's latest event.
    """

    def __init__(
        self,
        notifier: Optional[Notifier] = None,
        channels: Sequence[str] = DEFAULT_ANOMALY_CHANNELS,
        max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
        valid_ranges: Optional[Mapping[str, Tuple[float, float]]] = None,
        clock: Clock = utc_now,
    ) -> None:
        """
        Initialize the detector.

        Args:
            notifier: Alert sink; alerts are only returned when None.
            channels: Channels for anomaly alerts (default email, webhook).
            max_history_size: Readings kept per device (default 100).
            valid_ranges: Override of DEFAULT_VALID_RANGES.
            clock: Time source.
        """
        self.notifier = notifier
        self.channels = tuple(channels)
        self.max_history_size = max_history_size
        self.valid_ranges = dict(valid_ranges if valid_ranges is not None else DEFAULT_VALID_RANGES)
        self._clock = clock
        self._history: Dict[str, RollingWindow] = {}
        self._last_seen: Dict[str, datetime] = {}

    def process(self, event: SensorEvent) -> List[Alert]:
        """
        Record the event and run every detector.

        Args:
            event: The incoming event.

        Returns:
            List[Alert]: Zero or more anomaly alerts (at most one per detector).
        """
        now = self._clock()
        self._last_seen[event.device_id] = now

        value = extract_value(event)
        if value is None:
            return []

        history = self._history.get(event.device_id)
        if history is None:
            history = RollingWindow(self.max_history_size)
            self._history[event.device_id] = history

        prior = history.last(SPIKE_WINDOW)
        history.append(value, now)

        findings = [
            self._detect_spike_or_drop(prior, value),
            self._detect_flatline(history),
            self._detect_out_of_range(event.sensor_type, value),
            self._detect_rapid_fluctuation(history),
        ]

        alerts: List[Alert] = []
        for finding in findings:
            if finding is None:
                continue
            alert = self._create_alert(event, finding, now)
            alerts.append(alert)

            logger.info(
                "anomaly_detected",
                anomaly_type=finding.anomaly_type,
                device_id=event.device_id,
                sensor_type=event.sensor_type,
                value=value,
            )

            if self.notifier is not None:
                self.notifier.submit(alert, self.channels)

        return alerts

    def check_sensor_failures(
        self,
        timeout_minutes: float = DEFAULT_SENSOR_TIMEOUT_MINUTES,
    ) -> List[Alert]:
        """
        Report devices that have been silent for longer than the timeout.

        Computed on demand from last-seen times; does not notify.

        Args:
            timeout_minutes: Inactivity threshold.

        Returns:
            List[Alert]: One critical sensor_failure alert per silent device.
        """
        now = self._clock()
        timeout = timedelta(minutes=timeout_minutes)

        alerts: List[Alert] = []
        for device_id, last_seen in self._last_seen.items():
            if now - last_seen <= timeout:
                continue
            alerts.append(
                Alert(
                    rule_id="anomaly_sensor_failure",
                    category=AlertCategory.SENSOR_FAILURE,
                    severity=Severity.CRITICAL,
                    device_id=device_id,
                    timestamp=now,
                    message=(
                        f"Sensor {device_id} has not reported data for "
                        f"{format_number(timeout_minutes)} minutes"
                    ),
                    details={
                        "last_seen": last_seen.isoformat(),
                        "timeout_minutes": timeout_minutes,
                    },
                )
            )

        if alerts:
            logger.warning(
                "sensor_failures_detected",
                devices=[alert.device_id for alert in alerts],
                timeout_minutes=timeout_minutes,
            )
        return alerts

    def get_history(self, device_id: str) -> List[float]:
        """Readings held for a device, oldest first."""
        history = self._history.get(device_id)
        return history.last(history.capacity) if history is not None else []

    def get_last_seen(self, device_id: str) -> Optional[datetime]:
        """Last time the device reported, or None if never seen."""
        return self._last_seen.get(device_id)

    def clear_history(self, device_id: str) -> None:
        """Forget a device's readings and last-seen time."""
        self._history.pop(device_id, None)
        self._last_seen.pop(device_id, None)

    def clear_all_history(self) -> None:
        """Forget every device."""
        self._history.clear()
        self._last_seen.clear()

    def _detect_spike_or_drop(self, prior: List[float], value: float) -> Optional[Anomaly]:
        if len(prior) < SPIKE_WINDOW:
            return None

        stats = summarize(prior)
        if stats.std <= 0:
            return None

        details = {
            "mean": stats.mean,
            "std": stats.std,
            "expected_range": [stats.mean - stats.std, stats.mean + stats.std],
        }
        if value > stats.mean + SPIKE_SIGMA * stats.std:
            return Anomaly(
                anomaly_type="sudden_spike",
                severity=Severity.CRITICAL,
                description=(
                    f"Value spiked to {format_number(value)} "
                    f"(avg: {stats.mean:.2f}, stddev: {stats.std:.2f})"
                ),
                value=value,
                details=details,
            )
        if value < stats.mean - SPIKE_SIGMA * stats.std:
            return Anomaly(
                anomaly_type="sudden_drop",
                severity=Severity.CRITICAL,
                description=(
                    f"Value dropped to {format_number(value)} "
                    f"(avg: {stats.mean:.2f}, stddev: {stats.std:.2f})"
                ),
                value=value,
                details=details,
            )
        return None

    def _detect_flatline(self, history: RollingWindow) -> Optional[Anomaly]:
        if len(history) < FLATLINE_WINDOW:
            return None

        recent = history.last(FLATLINE_WINDOW)
        if len(set(recent)) != 1:
            return None

        return Anomaly(
            anomaly_type="flatline",
            severity=Severity.WARNING,
            description=f"Sensor reporting constant value: {format_number(recent[0])}",
            value=recent[0],
            details={"window": FLATLINE_WINDOW},
        )

    def _detect_out_of_range(self, sensor_type: str, value: float) -> Optional[Anomaly]:
        bounds = self.valid_ranges.get(sensor_type)
        if bounds is None:
            return None

        low, high = bounds
        if low <= value <= high:
            return None

        return Anomaly(
            anomaly_type="out_of_range",
            severity=Severity.CRITICAL,
            description=(
                f"Value {format_number(value)} is outside valid range "
                f"[{format_number(low)}, {format_number(high)}]"
            ),
            value=value,
            details={"valid_range": {"min": low, "max": high}},
        )

    def _detect_rapid_fluctuation(self, history: RollingWindow) -> Optional[Anomaly]:
        if len(history) < FLUCTUATION_WINDOW:
            return None

        recent = history.last(FLUCTUATION_WINDOW)
        avg = mean(recent)
        if avg <= 0:
            return None

        avg_change = mean_abs_change(recent)
        if avg_change <= avg * FLUCTUATION_RATIO:
            return None

        return Anomaly(
            anomaly_type="rapid_fluctuation",
            severity=Severity.WARNING,
            description=f"Sensor values fluctuating rapidly (avg change: {avg_change:.2f})",
            value=recent[-1],
            details={"avg_change": avg_change, "avg_value": avg},
        )

    def _create_alert(self, event: SensorEvent, finding: Anomaly, now: datetime) -> Alert:
        return Alert(
            rule_id=f"anomaly_{finding.anomaly_type}",
            category=AlertCategory.ANOMALY,
            severity=finding.severity,
            device_id=event.device_id,
            sensor_type=event.sensor_type,
            location=event.location,
            timestamp=now,
            value=finding.value,
            message=finding.description,
            details={"anomaly_type": finding.anomaly_type, **finding.details},
            event=event,
        )
