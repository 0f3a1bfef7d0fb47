"""
Threshold evaluator for operator-defined rules.

This module provides the ThresholdEvaluator class which checks each
applicable rule's compiled condition against an event and raises an Alert
for every violated rule that is not currently throttled.

Key Features:
    - Sensor type / device filters (unset filter matches any event)
    - Missing, non-numeric or malformed conditions evaluate to False
    - Per-rule throttle window, keyed by rule_id only
    - Alerts handed to the notifier with the rule's channel set

Throttle semantics:
    After a rule fires at t0 with throttle T > 0, it is suppressed while
    now < t0 + T and can fire again at exactly t0 + T. A throttle of 0 never
    suppresses.

Example:
    >>> evaluator = ThresholdEvaluator(notifier=dispatcher)
    >>> alerts = evaluator.evaluate(event, rules_store.for_event(event))
    >>> alerts[0].message
    'CRITICAL: gas_crit - gas_concentration > 500 (value: 600)'
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

import structlog

from sensor_analytics.clock import Clock, utc_now
from sensor_analytics.interfaces.transports import Notifier
from sensor_analytics.models.alerts import Alert, AlertCategory
from sensor_analytics.models.events import SensorEvent
from sensor_analytics.models.rules import Rule

logger = structlog.get_logger(__name__)


class ThresholdEvaluator:
    """
    Evaluates threshold rules and applies per-rule throttling.

    Attributes:
        notifier: Receives each raised alert with the rule's channels.
        _suppressed_until: rule_id -> time the throttle window ends.
    """

    def __init__(
        self,
        notifier: Optional[Notifier] = None,
        clock: Clock = utc_now,
    ) -> None:
        """
        Initialize the evaluator.

        Args:
            notifier: Alert sink; alerts are only returned when None.
            clock: Time source for throttling.
        """
        self.notifier = notifier
        self._clock = clock
        self._suppressed_until: Dict[str, datetime] = {}

    def evaluate(self, event: SensorEvent, rules: Iterable[Rule]) -> List[Alert]:
        """
        Evaluate rules against an event.

        Args:
            event: The incoming event.
            rules: Candidate rules; disabled and non-matching ones are skipped.

        Returns:
            List[Alert]: One alert per violated, unthrottled rule.
        """
        now = self._clock()
        self._purge_expired(now)

        alerts: List[Alert] = []
        for rule in rules:
            if not rule.enabled or not rule.applies_to(event):
                continue

            condition = rule.compiled
            if condition is None:
                logger.warning("invalid_condition", rule_id=rule.rule_id, condition=rule.condition)
                continue

            if not condition.evaluate(event):
                continue

            if self.is_throttled(rule.rule_id, now):
                logger.debug(
                    "alert_throttled",
                    rule_id=rule.rule_id,
                    device_id=event.device_id,
                    suppressed_until=self._suppressed_until[rule.rule_id].isoformat(),
                )
                continue

            alert = self._create_alert(event, rule, now)
            alerts.append(alert)

            if rule.throttle_minutes > 0:
                self._suppressed_until[rule.rule_id] = now + rule.throttle

            logger.info(
                "rule_fired",
                rule_id=rule.rule_id,
                device_id=event.device_id,
                severity=rule.severity.value,
                value=alert.value,
            )

            if self.notifier is not None:
                self.notifier.submit(alert, rule.channels)

        return alerts

    def is_throttled(self, rule_id: str, now: Optional[datetime] = None) -> bool:
        """Check whether a rule is inside its throttle window."""
        until = self._suppressed_until.get(rule_id)
        if until is None:
            return False
        return (now or self._clock()) < until

    def clear_throttle(self, rule_id: str) -> None:
        """Forget the throttle window of one rule."""
        self._suppressed_until.pop(rule_id, None)

    def clear_all_throttles(self) -> None:
        """Forget every throttle window."""
        self._suppressed_until.clear()

    @property
    def throttled_rules(self) -> List[str]:
        """Rule ids with a throttle entry (expired ones may linger until purged)."""
        return list(self._suppressed_until)

    def _purge_expired(self, now: datetime) -> None:
        expired = [rule_id for rule_id, until in self._suppressed_until.items() if until <= now]
        for rule_id in expired:
            del self._suppressed_until[rule_id]

    def _create_alert(self, event: SensorEvent, rule: Rule, now: datetime) -> Alert:
        value = event.lookup(rule.compiled.path) if rule.compiled else None
        return Alert(
            rule_id=rule.rule_id,
            category=AlertCategory.THRESHOLD,
            severity=rule.severity,
            device_id=event.device_id,
            sensor_type=event.sensor_type,
            location=event.location,
            timestamp=now,
            value=value,
            condition=rule.condition,
            message=f"{rule.severity.value.upper()}: {rule.rule_id} - {rule.condition} (value: {value})",
            details={"throttle_minutes": rule.throttle_minutes},
            event=event,
        )
