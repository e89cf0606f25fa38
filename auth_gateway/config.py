"""
Configuration loading and management for the auth gateway.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of gateway configuration."""

    # Per-backend environment overrides: <NAME>_<SUFFIX> -> auth.<key>
    BACKEND_ENV_OVERRIDES = {
        'PASSWORD': 'password',
        'TOKEN': 'token',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for backend secrets."""
        for i, backend in enumerate(self.config.get('backends') or []):
            backend_name = backend.get('name', f'backend_{i}')
            for suffix, key in self.BACKEND_ENV_OVERRIDES.items():
                env_var = f"{backend_name.upper()}_{suffix}"
                env_value = os.getenv(env_var)
                if env_value:
                    backend.setdefault('auth', {})[key] = env_value
                    logger.debug(f"Applied environment override for {backend_name} {key}")

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        gateway = self.config.get('gateway') or {}
        timeout = gateway.get('timeout_seconds')
        if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
            errors.append("gateway.timeout_seconds must be a positive number")

        max_workers = gateway.get('max_workers')
        if max_workers is not None and (not isinstance(max_workers, int) or max_workers <= 0):
            errors.append("gateway.max_workers must be a positive integer")

        backends = self.config.get('backends') or []
        if not backends:
            errors.append("At least one backend must be configured")

        names = set()
        for i, backend in enumerate(backends):
            backend_prefix = f"backends[{i}]"
            for field in ['name', 'module']:
                if not backend.get(field):
                    errors.append(f"Missing required field {backend_prefix}.{field}")

            name = backend.get('name')
            if name in names:
                errors.append(f"Duplicate backend name {name} at {backend_prefix}")
            names.add(name)

            if backend.get('module') == 'hdfs':
                for field in ['webhdfs_url', 'technical_principal']:
                    if not backend.get(field):
                        errors.append(f"Missing required field {backend_prefix}.{field}")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        gateway_defaults = {
            'timeout_seconds': 30,
            'max_workers': 8
        }
        gateway_config = self.config.setdefault('gateway', {})
        for key, value in gateway_defaults.items():
            gateway_config.setdefault(key, value)

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        for backend in self.config.get('backends', []):
            backend.setdefault('verify_ssl', True)
            backend.setdefault('timeout', 30)


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()
