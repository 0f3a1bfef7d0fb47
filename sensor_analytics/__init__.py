"""
Sensor Analytics Alerting Engine.

A real-time rule-based alerting and correlation engine for normalized IoT
sensor events.

This package provides:
- Data models for rules, sensor events, alerts and delivery results
- A rules store with a template catalog and a compiled condition language
- Threshold, anomaly and correlation/occupancy evaluators
- A multi-channel alert dispatcher with deduplication
- An event worker orchestrating ingestion, evaluation and delivery
"""

__version__ = "0.1.0"
