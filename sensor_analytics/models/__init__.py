"""
Shared Pydantic data models for the analytics engine.

Modules:
    events: Normalized sensor events with path lookup
    conditions: Compiled rule conditions
    rules: Rule definitions and severity levels
    alerts: Alerts, delivery results and notification summaries

Example:
    >>> from sensor_analytics.models import SensorEvent, Rule, Severity
    >>> from sensor_analytics.models import Alert, AlertCategory, DeliveryStatus
"""

# Event models
from sensor_analytics.models.events import (
    ENVELOPE_FIELDS,
    SensorEvent,
    split_path,
)

# Condition compiler
from sensor_analytics.models.conditions import (
    ComparisonOperator,
    Condition,
    compile_condition,
    try_compile_condition,
)

# Rule models
from sensor_analytics.models.rules import (
    Rule,
    Severity,
)

# Alert models
from sensor_analytics.models.alerts import (
    Alert,
    AlertCategory,
    DeliveryResult,
    DeliveryStatus,
    NotificationSummary,
)

__all__ = [
    "ENVELOPE_FIELDS",
    "SensorEvent",
    "split_path",
    "ComparisonOperator",
    "Condition",
    "compile_condition",
    "try_compile_condition",
    "Rule",
    "Severity",
    "Alert",
    "AlertCategory",
    "DeliveryResult",
    "DeliveryStatus",
    "NotificationSummary",
]
