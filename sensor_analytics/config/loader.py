"""
Configuration loader for YAML-based application configuration.

This module loads config/analytics.yaml (optional), applies environment
variable overrides and validates the result with the Pydantic models in
sensor_analytics.config.models. It also loads rule files for bulk import.

Environment variables override:
    - LOG_LEVEL, LOG_FORMAT: Logging
    - REDIS_URL, REDIS_ENABLED, REDIS_STREAM: Event stream and state store
    - SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, EMAIL_FROM,
      EMAIL_RECIPIENTS, EMAIL_ENABLED: Email channel
    - TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER,
      SMS_RECIPIENTS, SMS_ENABLED: SMS channel
    - WEBHOOK_URLS: Webhook channel (comma separated)
    - ANOMALY_DETECTION, CORRELATION, MAX_HISTORY_SIZE,
      CORRELATION_WINDOW_SECONDS, SENSOR_TIMEOUT_MINUTES: Processing
    - RULES_FILE: Rules imported at startup

Example:
    >>> from sensor_analytics.config.loader import load_config
    >>> config = load_config("config/analytics.yaml")
    >>> config.redis.stream
    'sensor-events'
"""

import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from sensor_analytics.config.models import AppConfig

DEFAULT_CONFIG_PATH = Path("config") / "analytics.yaml"


class ConfigLoadError(Exception):
    """
    Raised when configuration loading fails.

    Attributes:
        message: Error message describing what went wrong.
        file_path: Path to the file that caused the error, if applicable.
        cause: Original exception that caused the error, if any.
    """

    def __init__(
        self,
        message: str,
        file_path: Optional[Path] = None,
        cause: Optional[Exception] = None,
    ):
        self.message = message
        self.file_path = file_path
        self.cause = cause
        super().__init__(message)


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"not a boolean: {raw!r}")


def _parse_list(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


# Environment variable -> (section, key, parser); section None is top-level
ENV_OVERRIDES: Dict[str, Tuple[Optional[str], str, Callable[[str], Any]]] = {
    "LOG_LEVEL": ("logging", "level", str.upper),
    "LOG_FORMAT": ("logging", "format", str.lower),
    "REDIS_URL": ("redis", "url", str),
    "REDIS_ENABLED": ("redis", "enabled", _parse_bool),
    "REDIS_STREAM": ("redis", "stream", str),
    "SMTP_HOST": ("email", "smtp_host", str),
    "SMTP_PORT": ("email", "smtp_port", int),
    "SMTP_USER": ("email", "smtp_user", str),
    "SMTP_PASS": ("email", "smtp_pass", str),
    "EMAIL_FROM": ("email", "from_address", str),
    "EMAIL_RECIPIENTS": ("email", "recipients", _parse_list),
    "EMAIL_ENABLED": ("email", "enabled", _parse_bool),
    "TWILIO_ACCOUNT_SID": ("sms", "twilio_account_sid", str),
    "TWILIO_AUTH_TOKEN": ("sms", "twilio_auth_token", str),
    "TWILIO_PHONE_NUMBER": ("sms", "twilio_phone_number", str),
    "SMS_RECIPIENTS": ("sms", "recipients", _parse_list),
    "SMS_ENABLED": ("sms", "enabled", _parse_bool),
    "WEBHOOK_URLS": ("webhook", "urls", _parse_list),
    "ANOMALY_DETECTION": ("processing", "anomaly_detection", _parse_bool),
    "CORRELATION": ("processing", "correlation", _parse_bool),
    "MAX_HISTORY_SIZE": ("processing", "max_history_size", int),
    "CORRELATION_WINDOW_SECONDS": ("processing", "correlation_window_seconds", float),
    "SENSOR_TIMEOUT_MINUTES": ("processing", "sensor_timeout_minutes", float),
    "RULES_FILE": (None, "rules_file", str),
}


class ConfigLoader:
    """
    Loads and validates application configuration.

    The YAML file is optional: without one every section takes its defaults
    and only environment overrides apply.

    Example:
        >>> loader = ConfigLoader("config/analytics.yaml", environ={"WEBHOOK_URLS": "https://a,https://b"})
        >>> loader.load().webhook.urls
        ['https://a', 'https://b']
    """

    def __init__(
        self,
        config_path: Optional[Union[Path, str]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize config loader.

        Args:
            config_path: YAML file to load; None means defaults plus environment.
            environ: Environment mapping (default: os.environ).

        Raises:
            ConfigLoadError: If config_path is given but does not exist.
        """
        self.config_path = Path(config_path) if config_path is not None else None
        self.environ = environ if environ is not None else os.environ

        if self.config_path is not None and not self.config_path.is_file():
            raise ConfigLoadError(
                f"Configuration file not found: {self.config_path}",
                file_path=self.config_path,
            )

    def _load_yaml(self, file_path: Path) -> Any:
        """
        Load a YAML file.

        Returns:
            Parsed YAML content.

        Raises:
            ConfigLoadError: If file not found, empty, or invalid YAML.
        """
        if not file_path.exists():
            raise ConfigLoadError(
                f"Configuration file not found: {file_path}",
                file_path=file_path,
            )

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
                if data is None:
                    raise ConfigLoadError(
                        f"Configuration file is empty: {file_path}",
                        file_path=file_path,
                    )
                return data
        except yaml.YAMLError as e:
            raise ConfigLoadError(
                f"Invalid YAML syntax in {file_path}: {e}",
                file_path=file_path,
                cause=e,
            ) from e
        except OSError as e:
            raise ConfigLoadError(
                f"Error reading {file_path}: {e}",
                file_path=file_path,
                cause=e,
            ) from e

    def _apply_env_overrides(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Overlay environment variables onto raw configuration data.

        Raises:
            ConfigLoadError: If a variable cannot be parsed.
        """
        merged: Dict[str, Any] = {
            key: dict(value) if isinstance(value, dict) else value
            for key, value in data.items()
        }

        for env_name, (section, key, parse) in ENV_OVERRIDES.items():
            raw = self.environ.get(env_name)
            if raw is None:
                continue
            try:
                value = parse(raw)
            except ValueError as e:
                raise ConfigLoadError(
                    f"Invalid value for {env_name}: {raw!r}",
                    cause=e,
                ) from e

            if section is None:
                merged[key] = value
            else:
                target = merged.setdefault(section, {})
                if not isinstance(target, dict):
                    raise ConfigLoadError(f"Configuration section '{section}' must be a mapping")
                target[key] = value

        return merged

    def load(self) -> AppConfig:
        """
        Load the file, apply environment overrides and validate.

        Returns:
            AppConfig: Validated application configuration.

        Raises:
            ConfigLoadError: If any configuration is invalid.
        """
        data: Dict[str, Any] = {}
        if self.config_path is not None:
            raw = self._load_yaml(self.config_path)
            if not isinstance(raw, dict):
                raise ConfigLoadError(
                    f"Configuration root must be a mapping: {self.config_path}",
                    file_path=self.config_path,
                )
            data = raw

        data = self._apply_env_overrides(data)

        try:
            return AppConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigLoadError(
                f"Configuration validation failed: {e}",
                file_path=self.config_path,
                cause=e,
            ) from e

    def load_rules(self, rules_path: Union[Path, str]) -> List[Dict[str, Any]]:
        """
        Load raw rule definitions from a YAML file.

        The file holds either a list of rules or a mapping with a ``rules`` list.

        Raises:
            ConfigLoadError: If the file is missing, invalid or not a rule list.
        """
        file_path = Path(rules_path)
        data = self._load_yaml(file_path)

        if isinstance(data, dict):
            data = data.get("rules")
        if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
            raise ConfigLoadError(
                f"Rules file must contain a list of rule mappings: {file_path}",
                file_path=file_path,
            )
        return data


def load_config(
    config_path: Optional[Union[Path, str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """
    Convenience function to load application configuration.

    Without an explicit path, config/analytics.yaml is used when present.

    Raises:
        ConfigLoadError: If configuration loading fails.
    """
    if config_path is None and DEFAULT_CONFIG_PATH.is_file():
        config_path = DEFAULT_CONFIG_PATH
    return ConfigLoader(config_path, environ=environ).load()


def load_rules_file(rules_path: Union[Path, str]) -> List[Dict[str, Any]]:
    """Load raw rule definitions from a YAML file."""
    return ConfigLoader(environ={}).load_rules(rules_path)
