"""
Service runners.

Modules:
    runner: ServiceRunner base class and setup_logging
    analytics: AnalyticsService and the build_* factories
"""

from sensor_analytics.services.analytics import (
    AnalyticsService,
    build_channels,
    build_dispatcher,
    build_worker,
)
from sensor_analytics.services.runner import ServiceRunner, setup_logging

__all__ = [
    "AnalyticsService",
    "ServiceRunner",
    "build_channels",
    "build_dispatcher",
    "build_worker",
    "setup_logging",
]
