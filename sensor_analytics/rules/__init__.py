"""
Rule management.

Modules:
    store: RulesStore (validation, CRUD, bulk import/export, stats)
    templates: Built-in rule templates
"""

from sensor_analytics.rules.store import RulesStore, normalize_rule_data, validate_rule_data
from sensor_analytics.rules.templates import TEMPLATES, get_template, list_templates

__all__ = [
    "RulesStore",
    "normalize_rule_data",
    "validate_rule_data",
    "TEMPLATES",
    "get_template",
    "list_templates",
]
