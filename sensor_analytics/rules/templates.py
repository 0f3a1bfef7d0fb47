"""
Built-in rule templates.

Templates are partial rule definitions for the common sensors (MQ134 gas,
LD2410 presence, PIR motion, temperature and humidity probes). They are
instantiated through RulesStore.create_from_template, which fills in a
unique rule_id and applies operator overrides.
"""

import copy
from typing import Any, Dict, List

from sensor_analytics.exceptions import NotFoundError

TEMPLATES: Dict[str, Dict[str, Any]] = {
    "gas_high_critical": {
        "sensor_type": "mq134",
        "condition": "gas_concentration > 500",
        "severity": "critical",
        "channels": ["email", "webhook", "sms"],
        "throttle_minutes": 15,
        "description": "Critical gas concentration level detected",
    },
    "gas_high_warning": {
        "sensor_type": "mq134",
        "condition": "gas_concentration > 300",
        "severity": "warning",
        "channels": ["email", "webhook"],
        "throttle_minutes": 30,
        "description": "Elevated gas concentration level detected",
    },
    "presence_detected": {
        "sensor_type": "ld2410",
        "condition": "value == 1",
        "severity": "info",
        "channels": ["webhook"],
        "throttle_minutes": 0,
        "description": "Presence detected in area",
    },
    "motion_detected": {
        "sensor_type": "pir",
        "condition": "value == 1",
        "severity": "info",
        "channels": ["webhook"],
        "throttle_minutes": 0,
        "description": "Motion detected in area",
    },
    "temperature_high": {
        "sensor_type": "temperature",
        "condition": "temperature > 35",
        "severity": "warning",
        "channels": ["email", "webhook"],
        "throttle_minutes": 20,
        "description": "High temperature detected",
    },
    "temperature_low": {
        "sensor_type": "temperature",
        "condition": "temperature < 10",
        "severity": "warning",
        "channels": ["email", "webhook"],
        "throttle_minutes": 20,
        "description": "Low temperature detected",
    },
    "humidity_high": {
        "sensor_type": "humidity",
        "condition": "humidity > 80",
        "severity": "warning",
        "channels": ["email", "webhook"],
        "throttle_minutes": 30,
        "description": "High humidity detected",
    },
}


def get_template(name: str) -> Dict[str, Any]:
    """
    Return a copy of a template definition.

    Raises:
        NotFoundError: If no template has that name.
    """
    if name not in TEMPLATES:
        raise NotFoundError("template", name)
    return copy.deepcopy(TEMPLATES[name])


def list_templates() -> List[Dict[str, Any]]:
    """All templates, each tagged with its name."""
    return [{"name": name, **copy.deepcopy(body)} for name, body in TEMPLATES.items()]
