"""Configuration loading and processing."""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ..exceptions import ConfigurationError
from .schema import AdminGateConfig


class AdminGateConfigLoader:
    """Loads and validates admin gate configuration."""

    # Pattern for environment variable substitution
    ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
    SECTION = "admin_gate"

    @classmethod
    def load_config(cls, config_path: Path) -> AdminGateConfig:
        """Load admin gate configuration from a YAML file.

        Args:
            config_path: Path to the YAML file holding an ``admin_gate`` section

        Returns:
            Validated AdminGateConfig instance

        Raises:
            ConfigurationError: If configuration is invalid or cannot be loaded
        """
        try:
            with open(config_path, "r") as f:
                raw_config = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")

        if not raw_config:
            raise ConfigurationError("Configuration file is empty")

        section = raw_config.get(cls.SECTION, {})
        if not section:
            raise ConfigurationError(
                f"No '{cls.SECTION}' section found in configuration"
            )

        return cls.load_dict(section)

    @classmethod
    def load_dict(cls, config: dict[str, Any]) -> AdminGateConfig:
        """Validate an already parsed configuration mapping.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        processed_config = cls._substitute_env_vars(config)

        try:
            return AdminGateConfig(**processed_config)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid admin gate configuration: {e}")

    @classmethod
    def _substitute_env_vars(cls, config: Any) -> Any:
        """Recursively substitute environment variables in configuration.

        Supports these patterns:
        - ${VAR_NAME} - simple substitution
        - ${VAR_NAME:-default} - substitution with default value
        - ${VAR_NAME:?error message} - required variable with error message

        Raises:
            ConfigurationError: If required environment variable is missing
        """
        if isinstance(config, dict):
            return {
                key: cls._substitute_env_vars(value) for key, value in config.items()
            }
        elif isinstance(config, list):
            return [cls._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            return cls._substitute_env_var_string(config)
        else:
            return config

    @classmethod
    def _substitute_env_var_string(cls, value: str) -> str:
        def replace_var(match):
            var_expr = match.group(1)

            if ":-" in var_expr:
                var_name, default_value = var_expr.split(":-", 1)
                return os.getenv(var_name, default_value)

            elif ":?" in var_expr:
                var_name, error_msg = var_expr.split(":?", 1)
                env_value = os.getenv(var_name)
                if env_value is None:
                    raise ConfigurationError(
                        f"Required environment variable '{var_name}' not set: {error_msg}"
                    )
                return env_value

            else:
                env_value = os.getenv(var_expr)
                if env_value is None:
                    raise ConfigurationError(
                        f"Environment variable '{var_expr}' not set"
                    )
                return env_value

        return cls.ENV_VAR_PATTERN.sub(replace_var, value)

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Path to admin_gate.yaml in the current directory."""
        return Path.cwd() / "admin_gate.yaml"
