"""Configuration management for the account baseline applier.

This module handles YAML configuration loading, validation, and
environment variable override support. Every setting has a default so a
minimal file only needs the ``aws.region`` key.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
import yaml


DEFAULT_CONFIG_PATHS = ("config.yaml", "config/baseline.yaml")

DEFAULT_TAG_KEY = "account-baseline:managed-by"
DEFAULT_TAG_VALUE = "account-baseline"

DEFAULT_EXECUTION = {
    "max_workers": 4,
    "call_timeout_seconds": 30,
    "run_deadline_seconds": 900,
    "retry": {
        "max_attempts": 3,
        "base_delay_seconds": 1.0,
        "backoff_factor": 2.0,
        "jitter_seconds": 1.0,
        "max_delay_seconds": 30.0,
    },
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class Configuration:
    """Configuration management with YAML loading and validation.

    This class handles loading configuration from YAML files,
    validating the structure, and supporting environment variable
    overrides.
    """

    def __init__(self, config_path: Optional[str] = None) -> None:
        """Initialize configuration manager.

        Args:
            config_path: Optional path to configuration file.
                        If None, auto-detects config.yaml in current directory.

        Raises:
            ConfigurationError: When configuration file is invalid
        """
        self._config: Dict[str, Any] = {}
        self._config_path = self._resolve_config_path(config_path)
        self._load_configuration()
        self._apply_environment_overrides()
        self._validate_configuration()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Configuration":
        """Build a configuration from an in-memory dictionary.

        Environment overrides are applied the same way as for files.

        Args:
            data: Configuration dictionary

        Returns:
            Validated Configuration instance

        Raises:
            ConfigurationError: When configuration is invalid
        """
        instance = cls.__new__(cls)
        instance._config = dict(data or {})
        instance._config_path = None
        instance._apply_environment_overrides()
        instance._validate_configuration()
        return instance

    def _resolve_config_path(self, config_path: Optional[str]) -> Path:
        """Resolve configuration file path.

        Args:
            config_path: Optional path to configuration file

        Returns:
            Resolved Path object to configuration file

        Raises:
            ConfigurationError: When configuration file not found
        """
        if config_path:
            path = Path(config_path)
        else:
            path = Path(DEFAULT_CONFIG_PATHS[0])
            for candidate in DEFAULT_CONFIG_PATHS:
                if Path(candidate).exists():
                    path = Path(candidate)
                    break

        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}. "
                "Please create a configuration file or specify a valid path."
            )

        return path

    def _load_configuration(self) -> None:
        """Load configuration from YAML file.

        Raises:
            ConfigurationError: When YAML file is invalid
        """
        try:
            with open(self._config_path, "r", encoding="utf-8") as f:
                self._config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file {self._config_path}: {e}"
            )
        except IOError as e:
            raise ConfigurationError(
                f"Unable to read configuration file {self._config_path}: {e}"
            )

        if not isinstance(self._config, dict):
            raise ConfigurationError(
                f"Configuration file {self._config_path} must contain a mapping"
            )

    def _validate_configuration(self) -> None:
        """Validate configuration has required fields and sane values.

        Raises:
            ConfigurationError: When required fields are missing or invalid
        """
        if "aws" not in self._config or not isinstance(self._config["aws"], dict):
            raise ConfigurationError("Required configuration section 'aws' is missing")

        region = self._config["aws"].get("region")
        if region is None:
            raise ConfigurationError("Required field 'aws.region' is missing")
        if not isinstance(region, str) or not region:
            raise ConfigurationError("Field 'aws.region' must be a non-empty string")

        # A section with every key commented out loads as None.
        execution = self._config.get("execution")
        if execution is None:
            execution = self._config["execution"] = {}
        if not isinstance(execution, dict):
            raise ConfigurationError("Field 'execution' must be a mapping")
        if execution.get("retry") is None:
            execution.pop("retry", None)
        elif not isinstance(execution["retry"], dict):
            raise ConfigurationError("Field 'execution.retry' must be a mapping")

        for key in ("max_workers", "call_timeout_seconds", "run_deadline_seconds"):
            self._require_positive(f"execution.{key}")
        self._require_positive("execution.retry.max_attempts")
        for key in ("base_delay_seconds", "backoff_factor", "jitter_seconds", "max_delay_seconds"):
            value = self.get(f"execution.retry.{key}")
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
                raise ConfigurationError(
                    f"Field 'execution.retry.{key}' must be a non-negative number"
                )

        tag_key, tag_value = self.get_ownership_tag()
        if not isinstance(tag_key, str) or not tag_key:
            raise ConfigurationError("Field 'ownership.tag_key' must be a non-empty string")
        if not isinstance(tag_value, str) or not tag_value:
            raise ConfigurationError("Field 'ownership.tag_value' must be a non-empty string")

        if self.get_log_level() not in LOG_LEVELS:
            raise ConfigurationError(
                f"Field 'logging.level' must be one of: {', '.join(LOG_LEVELS)}"
            )

        controls = self.get("baseline.controls") or {}
        if not isinstance(controls, dict):
            raise ConfigurationError("Field 'baseline.controls' must be a mapping")
        for identifier, settings in controls.items():
            if settings is not None and not isinstance(settings, dict):
                raise ConfigurationError(
                    f"Field 'baseline.controls.{identifier}' must be a mapping"
                )

        subscribers = self.get("baseline.controls.budget.subscribers") or []
        if not isinstance(subscribers, list):
            raise ConfigurationError(
                "Field 'baseline.controls.budget.subscribers' must be a list"
            )

    def _require_positive(self, key_path: str) -> None:
        """Ensure an integer setting is present and positive.

        Raises:
            ConfigurationError: When the value is not a positive integer
        """
        value = self.get(key_path)
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ConfigurationError(f"Field '{key_path}' must be a positive integer")

    def _apply_environment_overrides(self) -> None:
        """Apply environment variable overrides to configuration."""
        if "AWS_REGION" in os.environ:
            self._set_nested_value("aws.region", os.environ["AWS_REGION"])

        if "AWS_PROFILE" in os.environ:
            self._set_nested_value("aws.profile_name", os.environ["AWS_PROFILE"])

        if "ACCOUNT_BASELINE_LOG_LEVEL" in os.environ:
            self._set_nested_value(
                "logging.level", os.environ["ACCOUNT_BASELINE_LOG_LEVEL"].upper()
            )

    def _set_nested_value(self, key_path: str, value: Any) -> None:
        """Set nested configuration value using dot notation.

        Args:
            key_path: Dot-separated key path (e.g., 'aws.region')
            value: Value to set
        """
        keys = key_path.split(".")
        current = self._config

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def set_override(self, key_path: str, value: Any) -> None:
        """Override a value after loading (used for command line flags).

        Raises:
            ConfigurationError: When the override makes the configuration invalid
        """
        self._set_nested_value(key_path, value)
        self._validate_configuration()

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation.

        Falls back to the built-in execution defaults before ``default``.

        Args:
            key_path: Dot-separated key path (e.g., 'aws.region')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        for source in (self._config, {"execution": DEFAULT_EXECUTION}):
            current = source
            try:
                for key in key_path.split("."):
                    current = current[key]
                return current
            except (KeyError, TypeError):
                continue
        return default

    def get_region(self) -> str:
        """Get the AWS region the baseline is applied in."""
        return self.get("aws.region")

    def get_profile_name(self) -> Optional[str]:
        """Get the AWS profile name, if one is configured."""
        return self.get("aws.profile_name")

    def get_max_workers(self) -> int:
        """Get the concurrency limit for parallel inspections."""
        return self.get("execution.max_workers")

    def get_call_timeout(self) -> int:
        """Get the per-call connect/read timeout in seconds."""
        return self.get("execution.call_timeout_seconds")

    def get_run_deadline(self) -> int:
        """Get the overall run deadline in seconds."""
        return self.get("execution.run_deadline_seconds")

    def get_retry_settings(self) -> Dict[str, Any]:
        """Get retry settings merged over the defaults.

        Returns:
            Dictionary with max_attempts, base_delay_seconds, backoff_factor,
            jitter_seconds and max_delay_seconds
        """
        settings = dict(DEFAULT_EXECUTION["retry"])
        settings.update((self._config.get("execution") or {}).get("retry") or {})
        return settings

    def get_ownership_tag(self) -> Tuple[str, str]:
        """Get the ownership marker tag as a (key, value) pair."""
        return (
            self.get("ownership.tag_key", DEFAULT_TAG_KEY),
            self.get("ownership.tag_value", DEFAULT_TAG_VALUE),
        )

    def get_log_level(self) -> str:
        """Get the configured log level name."""
        return str(self.get("logging.level", "INFO")).upper()

    def get_resource_prefix(self) -> str:
        """Get the prefix used when naming baseline resources."""
        return self.get("baseline.resource_prefix", "account-baseline")

    def get_control_settings(self, identifier: str) -> Dict[str, Any]:
        """Get the settings block for one control.

        Args:
            identifier: Control identifier (e.g., 'cloudtrail')

        Returns:
            Settings dictionary, empty when the control is not configured
        """
        return self.get(f"baseline.controls.{identifier}") or {}

    def is_control_enabled(self, identifier: str) -> bool:
        """Check whether a control is enabled (controls default to enabled)."""
        return bool(self.get_control_settings(identifier).get("enabled", True))

    def to_dict(self) -> Dict[str, Any]:
        """Get complete configuration as dictionary.

        Returns:
            Complete configuration dictionary
        """
        return self._config.copy()
