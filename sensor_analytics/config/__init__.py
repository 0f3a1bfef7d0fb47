"""Configuration models and loading."""

from sensor_analytics.config.loader import (
    ConfigLoadError,
    ConfigLoader,
    load_config,
    load_rules_file,
)
from sensor_analytics.config.models import (
    AppConfig,
    DispatchConfig,
    EmailConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    ProcessingConfig,
    RedisConfig,
    ServiceConfig,
    SmsConfig,
    WebhookConfig,
)

__all__ = [
    "AppConfig",
    "ConfigLoadError",
    "ConfigLoader",
    "DispatchConfig",
    "EmailConfig",
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "ProcessingConfig",
    "RedisConfig",
    "ServiceConfig",
    "SmsConfig",
    "WebhookConfig",
    "load_config",
    "load_rules_file",
]
