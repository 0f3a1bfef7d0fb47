"""
Pydantic models for application configuration.

This module defines the configuration models validated when loading
config/analytics.yaml (and environment overrides). Every section has
defaults, so an empty file or no file at all yields a runnable
configuration with notifications effectively disabled.

Sections:
    - service: Service identity and periodic task intervals
    - logging: Log level and renderer
    - redis: Connection, event stream and state snapshot settings
    - email / sms / webhook: Notification channel settings
    - processing: Evaluator feature flags and window sizes
    - dispatch: Dedup window, timeouts and queue sizes
    - rules_file: Optional YAML file of rules imported at startup

Example:
    >>> from sensor_analytics.config.models import AppConfig
    >>> config = AppConfig()
    >>> config.processing.correlation_window_seconds
    60.0
    >>> config.validate_channels()
    ['Webhook enabled but no URLs configured']
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# ENUMS
# =============================================================================


class LogFormat(str, Enum):
    """Logging format options."""

    JSON = "json"
    CONSOLE = "console"


class LogLevel(str, Enum):
    """Logging level options."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# =============================================================================
# SERVICE / LOGGING
# =============================================================================


class ServiceConfig(BaseModel):
    """Service identity and periodic task intervals."""

    model_config = {"frozen": True, "extra": "forbid"}

    name: str = Field(
        default="sensor-analytics",
        description="Service name used in logs and as consumer name prefix",
    )
    sensor_check_interval_seconds: float = Field(
        default=60.0,
        description="How often silent sensors are checked",
        gt=0,
    )
    metrics_log_interval_seconds: float = Field(
        default=60.0,
        description="How often worker metrics are logged",
        gt=0,
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = {"frozen": True, "extra": "forbid"}

    format: LogFormat = Field(
        default=LogFormat.JSON,
        description="Log output format",
    )
    level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Default log level",
    )

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v):
        return v.upper() if isinstance(v, str) else v


# =============================================================================
# STORAGE
# =============================================================================


class RedisConfig(BaseModel):
    """Redis connection, stream and snapshot settings."""

    model_config = {"frozen": True, "extra": "forbid"}

    enabled: bool = Field(
        default=True,
        description="Consume the event stream and persist state snapshots",
    )
    url: str = Field(
        default="redis://localhost:6379",
        description="Redis connection URL",
    )
    db: int = Field(
        default=0,
        description="Redis database number",
        ge=0,
    )
    max_connections: int = Field(
        default=10,
        description="Maximum connection pool size",
        ge=1,
    )
    socket_timeout: float = Field(
        default=10.0,
        description="Socket timeout in seconds (must exceed the stream block time)",
        gt=0,
    )
    stream: str = Field(
        default="sensor-events",
        description="Stream holding normalized sensor events",
    )
    consumer_group: str = Field(
        default="analytics-workers",
        description="Consumer group shared by worker instances",
    )
    consumer_name: Optional[str] = Field(
        default=None,
        description="Consumer name (defaults to service name and pid)",
    )
    read_count: int = Field(
        default=10,
        description="Messages fetched per XREADGROUP",
        ge=1,
    )
    block_ms: int = Field(
        default=5000,
        description="XREADGROUP block time in milliseconds",
        ge=0,
    )
    latest_ttl_seconds: int = Field(
        default=3600,
        description="TTL of event:<device>:latest snapshots",
        ge=1,
    )
    recent_events_limit: int = Field(
        default=1000,
        description="Entries kept in each events:<sensor_type> index",
        ge=1,
    )


# =============================================================================
# CHANNELS
# =============================================================================


class EmailConfig(BaseModel):
    """SMTP email channel settings."""

    model_config = {"frozen": True, "extra": "forbid"}

    enabled: bool = Field(default=False, description="Whether email is sent")
    smtp_host: Optional[str] = Field(default=None, description="SMTP server host")
    smtp_port: int = Field(default=587, description="SMTP server port", ge=1, le=65535)
    smtp_user: Optional[str] = Field(default=None, description="SMTP username")
    smtp_pass: Optional[str] = Field(default=None, description="SMTP password")
    use_tls: bool = Field(default=True, description="Upgrade with STARTTLS")
    from_address: Optional[str] = Field(default=None, description="Sender address")
    recipients: List[str] = Field(default_factory=list, description="Recipient addresses")


class SmsConfig(BaseModel):
    """Twilio SMS channel settings."""

    model_config = {"frozen": True, "extra": "forbid"}

    enabled: bool = Field(default=False, description="Whether SMS is sent")
    twilio_account_sid: Optional[str] = Field(default=None, description="Twilio account SID")
    twilio_auth_token: Optional[str] = Field(default=None, description="Twilio auth token")
    twilio_phone_number: Optional[str] = Field(default=None, description="Sending number")
    recipients: List[str] = Field(default_factory=list, description="Recipient numbers")

    @property
    def has_credentials(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number)


class WebhookConfig(BaseModel):
    """Webhook channel settings."""

    model_config = {"frozen": True, "extra": "forbid"}

    enabled: bool = Field(default=True, description="Whether webhooks are posted")
    urls: List[str] = Field(default_factory=list, description="Endpoints to post to")
    timeout_seconds: float = Field(default=5.0, description="Per-URL timeout", gt=0)


# =============================================================================
# PROCESSING / DISPATCH
# =============================================================================


class ProcessingConfig(BaseModel):
    """Evaluator feature flags and window sizes."""

    model_config = {"frozen": True, "extra": "forbid"}

    anomaly_detection: bool = Field(default=True, description="Run the anomaly detector")
    correlation: bool = Field(default=True, description="Run the correlation tracker")
    max_history_size: int = Field(
        default=100,
        description="Readings kept per device for anomaly detection",
        ge=10,
    )
    correlation_window_seconds: float = Field(
        default=60.0,
        description="Correlation window",
        gt=0,
    )
    stationary_min_events: int = Field(
        default=5,
        description="Stationary presence needs more windowed events than this",
        ge=0,
    )
    location_buffer_size: int = Field(
        default=100,
        description="Events kept per location for correlation",
        ge=1,
    )
    sensor_timeout_minutes: float = Field(
        default=10.0,
        description="Silence after which a sensor is reported failed",
        gt=0,
    )
    anomaly_channels: List[str] = Field(
        default_factory=lambda: ["email", "webhook"],
        description="Channels for anomaly and sensor failure alerts",
    )
    slow_event_seconds: float = Field(
        default=1.0,
        description="Processing time above which an event is logged as slow",
        gt=0,
    )
    rate_window_seconds: float = Field(
        default=10.0,
        description="Window of the rolling events-per-second figure",
        gt=0,
    )


class DispatchConfig(BaseModel):
    """Alert dispatcher settings."""

    model_config = {"frozen": True, "extra": "forbid"}

    dedup_window_seconds: float = Field(default=300.0, description="Duplicate window", ge=0)
    dedup_retention_seconds: float = Field(default=3600.0, description="Dedup entry lifetime", ge=0)
    channel_timeout_seconds: float = Field(default=10.0, description="Per-channel timeout", gt=0)
    queue_size: int = Field(default=1000, description="Pending notification capacity", ge=1)
    delivery_history_size: int = Field(default=1000, description="Delivery records kept", ge=1)


# =============================================================================
# ROOT CONFIGURATION
# =============================================================================


class AppConfig(BaseModel):
    """
    Root application configuration.

    Example:
        >>> config = AppConfig(webhook={"urls": ["https://hooks.example.com/a"]})
        >>> config.webhook.urls
        ['https://hooks.example.com/a']
    """

    model_config = {"frozen": True, "extra": "forbid"}

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    sms: SmsConfig = Field(default_factory=SmsConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    processing: ProcessingConfig = Field(default_factory=ProcessingConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    rules_file: Optional[str] = Field(
        default=None,
        description="YAML file of rules imported at startup",
    )

    def validate_channels(self) -> List[str]:
        """
        Check enabled channels for missing settings.

        Returns:
            List[str]: One warning per misconfigured channel; empty if fine.
        """
        warnings: List[str] = []

        if self.email.enabled:
            if not self.email.smtp_host:
                warnings.append("Email enabled but SMTP_HOST not configured")
            if not self.email.recipients:
                warnings.append("Email enabled but no recipients configured")

        if self.sms.enabled:
            if not self.sms.has_credentials:
                warnings.append("SMS enabled but Twilio credentials not configured")
            if not self.sms.recipients:
                warnings.append("SMS enabled but no recipients configured")

        if self.webhook.enabled and not self.webhook.urls:
            warnings.append("Webhook enabled but no URLs configured")

        return warnings
