"""
Service lifecycle and logging setup.

ServiceRunner is the base class for long-running services: it loads the
configuration, configures logging, installs signal handlers and drives the
_initialize / _run / _cleanup hooks that subclasses implement.

Example:
    >>> class EchoService(ServiceRunner):
    ...     @property
    ...     def service_name(self) -> str:
    ...         return "echo"
    ...     async def _initialize(self) -> None: ...
    ...     async def _run(self) -> None:
    ...         await self.shutdown_event.wait()
    ...     async def _cleanup(self) -> None: ...
    >>> await EchoService().run()
"""

import asyncio
import logging
import signal
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import structlog

from sensor_analytics.config.loader import load_config
from sensor_analytics.config.models import AppConfig


def setup_logging(level: str = "INFO", format: str = "json") -> None:
    """
    Configure structlog over the standard library logger.

    Args:
        level: Log level name (DEBUG, INFO, ...).
        format: "json" for machine-readable lines, "console" for humans.
    """
    renderer = (
        structlog.dev.ConsoleRenderer()
        if format == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )

    # Reduce noise from client libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


class ServiceRunner(ABC):
    """
    Base class for long-running services.

    Attributes:
        config_path: YAML configuration file, or None for defaults.
        config: Loaded configuration (set by run()).
        shutdown_event: Set on SIGINT/SIGTERM or request_shutdown().
        logger: Logger bound to the service name.
    """

    def __init__(self, config_path: Optional[Union[Path, str]] = None) -> None:
        self.config_path = config_path
        self.config: Optional[AppConfig] = None
        self.shutdown_event = asyncio.Event()
        self.logger = structlog.get_logger(self.service_name)

    @property
    @abstractmethod
    def service_name(self) -> str:
        """Name used in logs."""

    @abstractmethod
    async def _initialize(self) -> None:
        """Build and connect the service's components."""

    @abstractmethod
    async def _run(self) -> None:
        """Main loop; returns once shutdown_event is set."""

    @abstractmethod
    async def _cleanup(self) -> None:
        """Release resources; called even when _initialize or _run fail."""

    def request_shutdown(self) -> None:
        if not self.shutdown_event.is_set():
            self.logger.info("shutdown_requested", service=self.service_name)
            self.shutdown_event.set()

    async def run(self) -> None:
        """
        Load config, then initialize, run and clean up the service.

        Raises:
            ConfigLoadError: If the configuration is invalid.
        """
        if self.config is None:
            self.config = load_config(self.config_path)
        setup_logging(self.config.logging.level.value, self.config.logging.format.value)
        self._install_signal_handlers()

        self.logger.info("service_starting", service=self.service_name)
        try:
            await self._initialize()
            await self._run()
        finally:
            await self._cleanup()
            self.logger.info("service_stopped", service=self.service_name)

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread
                self.logger.debug("signal_handler_unavailable", signal=sig.name)
