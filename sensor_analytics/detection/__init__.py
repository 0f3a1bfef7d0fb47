"""
Event evaluators.

Modules:
    threshold: ThresholdEvaluator (rule conditions with throttling)
    anomaly: AnomalyDetector (statistical detectors, sensor failures)
    correlation: CorrelationTracker (multi-sensor patterns, occupancy)
    statistics: Rolling window and summary statistics
"""

from sensor_analytics.detection.anomaly import AnomalyDetector, extract_value
from sensor_analytics.detection.correlation import CorrelationTracker
from sensor_analytics.detection.statistics import RollingWindow
from sensor_analytics.detection.threshold import ThresholdEvaluator

__all__ = [
    "AnomalyDetector",
    "CorrelationTracker",
    "RollingWindow",
    "ThresholdEvaluator",
    "extract_value",
]
