"""
Rules store for threshold rule lifecycle management.

The RulesStore owns the set of operator-defined rules, keyed by rule_id.
Every write is validated in full before anything is stored, so a rejected
rule never leaves a partial entry behind.

Key Features:
    - Add/replace, get, delete and enable/disable rules
    - Filtered listing and per-event rule lookup (unset filters are wildcards)
    - Bulk import with per-rule error reporting, and export
    - Template catalog and instantiation
    - Dry-run evaluation of a rule against a sample payload

Rule dictionaries accept ``rule_id`` (or ``id``), ``severity`` (or
``alert_level``) and ``channels`` (or ``actions``).

Example:
    >>> store = RulesStore()
    >>> store.add({
    ...     "rule_id": "gas_crit",
    ...     "sensor_type": "mq134",
    ...     "condition": "gas_concentration > 500",
    ...     "severity": "critical",
    ...     "channels": ["email", "sms"],
    ... })
    >>> [rule.rule_id for rule in store.for_event(event)]
    ['gas_crit']
"""

from collections import Counter
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pydantic
import structlog

from sensor_analytics.clock import Clock, utc_now
from sensor_analytics.exceptions import EvaluationFailure, NotFoundError, ValidationError
from sensor_analytics.models.conditions import compile_condition
from sensor_analytics.models.events import SensorEvent
from sensor_analytics.models.rules import Rule, Severity
from sensor_analytics.rules.templates import get_template, list_templates

logger = structlog.get_logger(__name__)

_FIELD_ALIASES = {
    "id": "rule_id",
    "alert_level": "severity",
    "actions": "channels",
}

_ALLOWED_FIELDS = frozenset(Rule.model_fields)

_SEVERITIES = tuple(level.value for level in Severity)


def normalize_rule_data(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Map alias keys to canonical Rule field names."""
    normalized: Dict[str, Any] = {}
    for key, value in data.items():
        canonical = _FIELD_ALIASES.get(key, key)
        if canonical in normalized and key != canonical:
            # The canonical spelling wins over an alias.
            continue
        normalized[canonical] = value
    return normalized


def validate_rule_data(data: Mapping[str, Any]) -> List[str]:
    """
    Check a normalized rule dict and collect every violation.

    Args:
        data: Rule fields using canonical names.

    Returns:
        List[str]: Violations in check order; empty if the rule is valid.
    """
    errors: List[str] = []

    rule_id = data.get("rule_id")
    if not rule_id:
        errors.append("rule_id is required")
    elif not isinstance(rule_id, str):
        errors.append("rule_id must be a string")

    condition = data.get("condition")
    if not condition:
        errors.append("condition is required")
    else:
        try:
            compile_condition(condition)
        except EvaluationFailure as e:
            errors.append(f"condition is invalid ({e.reason}): {condition!r}")

    severity = data.get("severity")
    if not severity:
        errors.append("severity is required")
    elif isinstance(severity, Severity):
        pass
    elif severity not in _SEVERITIES:
        errors.append(f"severity must be one of: {', '.join(_SEVERITIES)}")

    channels = data.get("channels")
    if channels is not None:
        if isinstance(channels, (str, bytes)) or not isinstance(channels, (list, tuple)):
            errors.append("channels must be a list")
        elif not all(isinstance(channel, str) for channel in channels):
            errors.append("channels must contain only channel names")

    if "throttle_minutes" in data:
        throttle = data["throttle_minutes"]
        if isinstance(throttle, bool) or not isinstance(throttle, (int, float)) or throttle < 0:
            errors.append("throttle_minutes must be a non-negative number")

    for key in ("sensor_type", "device_id", "description"):
        value = data.get(key)
        if value is not None and not isinstance(value, str):
            errors.append(f"{key} must be a string")

    if "enabled" in data and not isinstance(data["enabled"], bool):
        errors.append("enabled must be a boolean")

    unknown = sorted(set(data) - _ALLOWED_FIELDS)
    if unknown:
        errors.append(f"unknown fields: {', '.join(unknown)}")

    return errors


class RulesStore:
    """
    In-memory registry of threshold rules.

    All operations are synchronous and perform no I/O.

    Attributes:
        _rules: Rules keyed by rule_id, in insertion order.
        _clock: Time source for created_at/updated_at.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        """
        Initialize an empty store.

        Args:
            clock: Time source (injectable for tests).
        """
        self._rules: Dict[str, Rule] = {}
        self._clock = clock

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._rules

    def add(self, rule_data: Mapping[str, Any]) -> Rule:
        """
        Validate and store a rule, replacing any rule with the same id.

        Replacing keeps the original created_at and refreshes updated_at.

        Args:
            rule_data: Rule fields (aliases accepted).

        Returns:
            Rule: The stored rule.

        Raises:
            ValidationError: With every violation if the rule is malformed.
        """
        if isinstance(rule_data, Rule):
            rule_data = rule_data.model_dump()
        if not isinstance(rule_data, Mapping):
            raise ValidationError(["rule must be a mapping"])

        data = normalize_rule_data(rule_data)
        errors = validate_rule_data(data)
        rule_id = data.get("rule_id") if isinstance(data.get("rule_id"), str) else None
        if errors:
            raise ValidationError(errors, rule_id=rule_id)

        now = self._clock()
        existing = self._rules.get(data["rule_id"])
        if existing is not None:
            data["created_at"] = existing.created_at
        else:
            data.setdefault("created_at", now)
        data["updated_at"] = now
        if data.get("channels") is not None:
            data["channels"] = tuple(data["channels"])
        else:
            data.pop("channels", None)

        try:
            rule = Rule(**data)
        except pydantic.ValidationError as e:
            messages = [
                f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
            raise ValidationError(messages, rule_id=rule_id) from e

        self._rules[rule.rule_id] = rule
        logger.info(
            "rule_updated" if existing is not None else "rule_added",
            rule_id=rule.rule_id,
            sensor_type=rule.sensor_type,
            severity=rule.severity.value,
        )
        return rule

    def get(self, rule_id: str) -> Rule:
        """
        Return a rule by id.

        Raises:
            NotFoundError: If the rule does not exist.
        """
        rule = self._rules.get(rule_id)
        if rule is None:
            raise NotFoundError("rule", rule_id)
        return rule

    def delete(self, rule_id: str) -> bool:
        """Remove a rule. Returns False if it did not exist."""
        removed = self._rules.pop(rule_id, None)
        if removed is not None:
            logger.info("rule_deleted", rule_id=rule_id)
        return removed is not None

    def toggle(self, rule_id: str, enabled: bool) -> Rule:
        """
        Enable or disable a rule.

        Raises:
            NotFoundError: If the rule does not exist.
        """
        rule = self.get(rule_id)
        updated = rule.model_copy(update={"enabled": bool(enabled), "updated_at": self._clock()})
        self._rules[rule_id] = updated
        logger.info("rule_toggled", rule_id=rule_id, enabled=updated.enabled)
        return updated

    def list(
        self,
        sensor_type: Optional[str] = None,
        device_id: Optional[str] = None,
        severity: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> List[Rule]:
        """
        List rules matching every given filter.

        The device_id filter also keeps rules that are not bound to any
        device, since those apply to every device.

        Args:
            sensor_type: Exact sensor type.
            device_id: Device id (global rules included).
            severity: Severity name or Severity.
            enabled: Enabled flag.

        Returns:
            List[Rule]: Matching rules in insertion order.
        """
        rules: Iterable[Rule] = self._rules.values()
        if sensor_type is not None:
            rules = [r for r in rules if r.sensor_type == sensor_type]
        if device_id is not None:
            rules = [r for r in rules if r.device_id is None or r.device_id == device_id]
        if severity is not None:
            level = Severity(severity)
            rules = [r for r in rules if r.severity == level]
        if enabled is not None:
            rules = [r for r in rules if r.enabled == enabled]
        return list(rules)

    def for_event(self, event: SensorEvent) -> List[Rule]:
        """Enabled rules whose sensor_type/device_id match the event or are unset."""
        return [rule for rule in self._rules.values() if rule.enabled and rule.applies_to(event)]

    def bulk_import(self, rules: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
        """
        Add many rules, validating each independently.

        Returns:
            Dict with ``imported`` and ``failed`` counts and an ``errors``
            list of ``{"rule_id", "error"}`` entries.
        """
        results: Dict[str, Any] = {"imported": 0, "failed": 0, "errors": []}
        for rule_data in rules:
            try:
                self.add(rule_data)
                results["imported"] += 1
            except ValidationError as e:
                results["failed"] += 1
                results["errors"].append({"rule_id": _raw_rule_id(rule_data), "error": str(e)})

        logger.info(
            "rules_imported",
            imported=results["imported"],
            failed=results["failed"],
        )
        return results

    def export(self, **filters: Any) -> List[Dict[str, Any]]:
        """JSON-ready dicts of the rules matching ``filters`` (see list)."""
        return [rule.to_dict() for rule in self.list(**filters)]

    def templates(self) -> List[Dict[str, Any]]:
        """The built-in template catalog."""
        return list_templates()

    def create_from_template(
        self,
        template_name: str,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> Rule:
        """
        Instantiate and store a template.

        Args:
            template_name: Name from the catalog.
            overrides: Field overrides; rule_id defaults to
                ``<template>_<epoch millis>``.

        Returns:
            Rule: The stored rule.

        Raises:
            NotFoundError: If the template does not exist.
            ValidationError: If the overrides make the rule invalid.
        """
        data = get_template(template_name)
        data.update(normalize_rule_data(overrides or {}))
        if not data.get("rule_id"):
            millis = int(self._clock().timestamp() * 1000)
            data["rule_id"] = f"{template_name}_{millis}"
        return self.add(data)

    def test_rule(self, rule_id: str, sample_payload: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Report whether a stored rule would fire on a sample payload.

        Filters and throttling are ignored; only the condition is checked.

        Raises:
            NotFoundError: If the rule does not exist.
        """
        rule = self.get(rule_id)
        payload = {
            "device_id": rule.device_id or "test-device",
            "sensor_type": rule.sensor_type or "test",
            **sample_payload,
        }
        event = SensorEvent.from_payload(payload)
        compiled = rule.compiled
        return {
            "rule_id": rule.rule_id,
            "condition": rule.condition,
            "sample_data": dict(sample_payload),
            "value": compiled.extract(event) if compiled else None,
            "would_trigger": compiled.evaluate(event) if compiled else False,
            "severity": rule.severity.value,
            "channels": list(rule.channels),
        }

    def get_stats(self) -> Dict[str, Any]:
        """Counts by state, sensor type (``global`` when unset) and severity."""
        rules = list(self._rules.values())
        enabled = sum(1 for rule in rules if rule.enabled)
        return {
            "total": len(rules),
            "enabled": enabled,
            "disabled": len(rules) - enabled,
            "by_sensor_type": dict(Counter(rule.sensor_type or "global" for rule in rules)),
            "by_severity": dict(Counter(rule.severity.value for rule in rules)),
        }

    def clear(self) -> None:
        """Remove every rule."""
        self._rules.clear()
        logger.info("rules_cleared")


def _raw_rule_id(rule_data: Any) -> Optional[str]:
    if isinstance(rule_data, Mapping):
        return rule_data.get("rule_id") or rule_data.get("id")
    return None
