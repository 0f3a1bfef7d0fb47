"""
Alert and delivery data models.

Models:
    AlertCategory: Which evaluator produced the alert
    Alert: One qualifying match, immutable once built
    DeliveryStatus: Outcome of a single channel delivery
    DeliveryResult: Per-channel delivery record
    NotificationSummary: Result of dispatching one alert to its channels
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from sensor_analytics.clock import utc_now
from sensor_analytics.models.events import SensorEvent
from sensor_analytics.models.rules import Severity


class AlertCategory(str, Enum):
    """
    Alert origin.

    Attributes:
        THRESHOLD: Raised by an operator-defined rule.
        ANOMALY: Raised by a statistical detector.
        CORRELATION: Raised by the multi-sensor tracker.
        SENSOR_FAILURE: Raised when a device stops reporting.
    """

    THRESHOLD = "threshold"
    ANOMALY = "anomaly"
    CORRELATION = "correlation"
    SENSOR_FAILURE = "sensor_failure"


class Alert(BaseModel):
    """
    Alert instance.

    Attributes:
        alert_id: Unique identifier for this alert instance.
        rule_id: Rule (or synthetic detector id) that produced it.
        category: Which evaluator produced it.
        severity: Alert severity.
        device_id: Device the alert concerns.
        sensor_type: Sensor type of the triggering event, if any.
        location: Location of the triggering event, if any.
        timestamp: When the alert was raised.
        value: The triggering value.
        condition: The rule condition, for threshold alerts.
        message: Human-readable summary.
        details: Detector-specific context.
        event: The source event, if the alert came from one.

    Example:
        >>> alert = Alert(
        ...     rule_id="gas_crit",
        ...     category=AlertCategory.THRESHOLD,
        ...     severity=Severity.CRITICAL,
        ...     device_id="d1",
        ...     value=600,
        ...     message="CRITICAL: gas_crit - gas_concentration > 500 (value: 600)",
        ... )
    """

    model_config = {"frozen": True, "extra": "forbid"}

    alert_id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique identifier for this alert instance",
    )
    rule_id: str = Field(
        ...,
        description="Rule or detector identifier",
        min_length=1,
    )
    category: AlertCategory = Field(
        ...,
        description="Which evaluator produced the alert",
    )
    severity: Severity = Field(
        ...,
        description="Alert severity",
    )
    device_id: str = Field(
        ...,
        description="Device the alert concerns",
    )
    sensor_type: Optional[str] = Field(
        default=None,
        description="Sensor type of the triggering event",
    )
    location: Optional[str] = Field(
        default=None,
        description="Location of the triggering event",
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the alert was raised",
    )
    value: Optional[Any] = Field(
        default=None,
        description="The triggering value",
    )
    condition: Optional[str] = Field(
        default=None,
        description="Rule condition (threshold alerts only)",
    )
    message: str = Field(
        ...,
        description="Human-readable summary",
    )
    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Detector-specific context",
    )
    event: Optional[SensorEvent] = Field(
        default=None,
        description="Source event",
    )

    @property
    def dedup_key(self) -> tuple:
        """Key used by the dispatcher to drop repeats."""
        return (self.rule_id, self.device_id, self.severity.value)

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready representation for webhooks and logs."""
        data = self.model_dump(mode="json", exclude={"event"})
        if self.event is not None:
            data["event"] = self.event.to_payload()
        return data


class DeliveryStatus(str, Enum):
    """
    Outcome of one channel delivery.

    Attributes:
        SENT: Every target accepted the notification.
        PARTIAL: Some targets failed.
        FAILED: Nothing was delivered.
        SKIPPED: Channel unknown or not configured.
        NOT_IMPLEMENTED: Channel exists but has no transport.
    """

    SENT = "sent"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOT_IMPLEMENTED = "not_implemented"


class DeliveryResult(BaseModel):
    """
    Result of delivering one alert over one channel.

    Attributes:
        channel: Channel name.
        status: Delivery outcome.
        timestamp: When the attempt finished.
        detail: Reason or transport message.
        results: Per-target outcomes (webhook URLs, SMS recipients).
    """

    model_config = {"frozen": True, "extra": "forbid"}

    channel: str = Field(..., description="Channel name")
    status: DeliveryStatus = Field(..., description="Delivery outcome")
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the attempt finished",
    )
    detail: Optional[str] = Field(default=None, description="Reason or transport message")
    results: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Per-target outcomes",
    )

    @property
    def ok(self) -> bool:
        return self.status == DeliveryStatus.SENT


class NotificationSummary(BaseModel):
    """
    Result of AlertDispatcher.notify.

    Attributes:
        alert_id: The dispatched alert.
        timestamp: When dispatch finished.
        deliveries: One result per requested channel (empty for duplicates).
        duplicate: True if the alert was dropped by deduplication.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    alert_id: str = Field(..., description="The dispatched alert")
    timestamp: datetime = Field(default_factory=utc_now, description="When dispatch finished")
    deliveries: List[DeliveryResult] = Field(default_factory=list)
    duplicate: bool = Field(default=False)
