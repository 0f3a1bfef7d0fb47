"""
Rule data models.

Models:
    Severity: Alert severity levels (info, warning, critical)
    Rule: Operator-defined condition with severity, channels and throttle
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field, PrivateAttr

from sensor_analytics.clock import utc_now
from sensor_analytics.models.conditions import Condition, try_compile_condition
from sensor_analytics.models.events import SensorEvent


class Severity(str, Enum):
    """
    Alert severity levels.

    Attributes:
        CRITICAL: Severe condition requiring immediate attention.
        WARNING: Elevated condition requiring investigation.
        INFO: Informational, no immediate concern.
    """

    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def is_critical(self) -> bool:
        """Check if this is the critical level."""
        return self == Severity.CRITICAL


class Rule(BaseModel):
    """
    Threshold rule definition.

    A rule with no sensor_type or device_id applies to every event. The
    condition is compiled once, when the model is built; ``compiled`` is None
    if the expression is malformed (the rules store refuses such rules, but
    rules built elsewhere are still tolerated and simply never fire).

    Attributes:
        rule_id: Unique identifier.
        sensor_type: Sensor type this rule is restricted to, if any.
        device_id: Device this rule is restricted to, if any.
        condition: Comparison expression, e.g. "gas_concentration > 500".
        severity: Severity of the alerts this rule raises.
        channels: Notification channel names, in delivery order.
        throttle_minutes: Suppression window after the rule fires.
        enabled: Whether the rule is evaluated.
        description: Free-form operator note.

    Example:
        >>> rule = Rule(
        ...     rule_id="gas_crit",
        ...     sensor_type="mq134",
        ...     condition="gas_concentration > 500",
        ...     severity=Severity.CRITICAL,
        ...     channels=("email", "sms"),
        ...     throttle_minutes=15,
        ... )
    """

    model_config = {"frozen": True, "extra": "forbid"}

    rule_id: str = Field(
        ...,
        description="Unique identifier for this rule",
        min_length=1,
    )
    sensor_type: Optional[str] = Field(
        default=None,
        description="Sensor type filter (None matches any)",
    )
    device_id: Optional[str] = Field(
        default=None,
        description="Device filter (None matches any)",
    )
    condition: str = Field(
        ...,
        description="Comparison expression",
        min_length=1,
    )
    severity: Severity = Field(
        ...,
        description="Severity of raised alerts",
    )
    channels: Tuple[str, ...] = Field(
        default=(),
        description="Notification channels",
    )
    throttle_minutes: float = Field(
        default=0,
        description="Minutes the rule stays silent after firing",
        ge=0,
    )
    enabled: bool = Field(
        default=True,
        description="Whether this rule is active",
    )
    description: Optional[str] = Field(
        default=None,
        description="Operator note",
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        description="When the rule was first added",
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        description="When the rule was last changed",
    )

    _compiled: Optional[Condition] = PrivateAttr(default=None)

    def model_post_init(self, __context: Any) -> None:
        self._compiled = try_compile_condition(self.condition)

    @property
    def compiled(self) -> Optional[Condition]:
        """The compiled condition, or None if the expression is malformed."""
        return self._compiled

    @property
    def throttle(self) -> timedelta:
        """Throttle window as a timedelta."""
        return timedelta(minutes=self.throttle_minutes)

    @property
    def is_global(self) -> bool:
        """True when the rule is not restricted to a sensor type."""
        return self.sensor_type is None

    def applies_to(self, event: SensorEvent) -> bool:
        """Check the sensor_type/device_id filters against an event."""
        if self.sensor_type is not None and self.sensor_type != event.sensor_type:
            return False
        if self.device_id is not None and self.device_id != event.device_id:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation used by export."""
        data = self.model_dump(mode="json")
        data["channels"] = list(self.channels)
        return data
