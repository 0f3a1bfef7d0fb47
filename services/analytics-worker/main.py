"""
Analytics Worker Service entry point.

This service is responsible for:
- Consuming normalized sensor events from the Redis stream
- Evaluating threshold rules, anomalies and multi-sensor correlations
- Dispatching alerts to email, webhook and SMS channels
- Reporting silent sensors
- Writing last-known device state back to Redis

Usage:
    python services/analytics-worker/main.py

Environment Variables:
    CONFIG_PATH: YAML configuration file (default: config/analytics.yaml if present)
    LOG_LEVEL, LOG_FORMAT, REDIS_URL, WEBHOOK_URLS, ...: see
        sensor_analytics.config.loader
"""

import asyncio
import os
import sys
from pathlib import Path

import structlog

# Add project root to path for imports
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from sensor_analytics import __version__
from sensor_analytics.config.loader import ConfigLoadError
from sensor_analytics.services import AnalyticsService, setup_logging

logger = structlog.get_logger(__name__)


async def main() -> None:
    """Main entry point."""
    # Initial logging until the configuration is loaded
    setup_logging(os.getenv("LOG_LEVEL", "INFO"), os.getenv("LOG_FORMAT", "json"))

    config_path = os.getenv("CONFIG_PATH")

    logger.info(
        "analytics_worker_service_starting",
        version=__version__,
        config_path=config_path,
    )

    service = AnalyticsService(config_path=config_path)

    try:
        await service.run()
    except ConfigLoadError as e:
        logger.error("config_load_failed", error=e.message, file_path=str(e.file_path))
        sys.exit(2)
    except Exception as e:
        logger.error("service_failed", error=str(e), exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
