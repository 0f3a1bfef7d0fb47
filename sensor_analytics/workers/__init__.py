"""Event processing workers."""

from sensor_analytics.workers.event_worker import EventWorker

__all__ = ["EventWorker"]
