"""
InvoiceX Configuration Management

Loads the packaged defaults, merges an optional user configuration file and
exposes values with dot notation. Configuration is read at the edges (CLI and
the InvoiceX facade) and handed to the pipeline as explicit settings objects.
"""

import os
import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / 'default_config.yaml'
USER_CONFIG_PATH = Path.home() / '.invoicex' / 'config.yaml'

# Environment variable -> (config key, converter)
ENV_OVERRIDES = {
    'WORKER_MODE': ('worker.mode', str),
    'WORKER_CONCURRENCY': ('worker.concurrency', int),
    'WORKER_MAX_JOBS': ('worker.max_jobs', int),
    'WORKER_DURATION': ('worker.duration_ms', int),
    'DATABASE_URL': ('database.url', str),
    'QUEUE_DATABASE_URL': ('queue.database.url', str),
    'STORAGE_PATH': ('storage.path', str),
    'S3_BUCKET': ('storage.s3.bucket', str),
    'AI_PROVIDER': ('llm.provider', str),
    'AI_MODEL': ('llm.model', str),
    'OPENAI_API_KEY': ('llm.api_key', str),
    'AI_API_KEY': ('llm.api_key', str),
}


class InvoiceXConfig:
    """
    Configuration container for InvoiceX

    Usage:
        config = InvoiceXConfig.load()
        mode = config.get('worker.mode')

        # Explicit file plus environment overrides
        config = InvoiceXConfig.load('invoicex.yaml').apply_env()
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        with open(DEFAULT_CONFIG_PATH, 'r') as f:
            self.config: Dict[str, Any] = yaml.safe_load(f)
        if config:
            self._update_config_recursive(self.config, config)

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> 'InvoiceXConfig':
        """
        Load configuration from defaults plus a user file

        Args:
            config_path: Explicit YAML file. Falls back to ~/.invoicex/config.yaml
                when it exists.

        Returns:
            InvoiceXConfig instance
        """
        instance = cls()
        path = Path(config_path) if config_path else USER_CONFIG_PATH
        if config_path or path.exists():
            try:
                with open(path, 'r') as f:
                    file_config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.error(f"Failed to load configuration from {path}: {e}")
                raise
            instance._update_config_recursive(instance.config, file_config)
            logger.info(f"Configuration loaded from {path}")
        return instance

    def apply_env(self, environ: Optional[Dict[str, str]] = None) -> 'InvoiceXConfig':
        """Apply environment variable overrides and return self"""
        environ = os.environ if environ is None else environ
        for var, (key, convert) in ENV_OVERRIDES.items():
            raw = environ.get(var)
            if raw in (None, ''):
                continue
            try:
                self.set(key, convert(raw))
            except ValueError:
                logger.warning(f"Ignoring invalid value for {var}: {raw!r}")
        return self

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value

        Args:
            key: Configuration key (dot notation)
            default: Default value if key not found

        Returns:
            Configuration value
        """
        try:
            value = self.config
            for k in key.split('.'):
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation"""
        keys = key.split('.')
        config = self.config
        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value

    def section(self, name: str) -> Dict[str, Any]:
        """Return a copy of a top-level section"""
        return copy.deepcopy(self.config.get(name) or {})

    def _update_config_recursive(self, base: Dict[str, Any], update: Dict[str, Any]) -> None:
        """Update configuration recursively"""
        for key, value in update.items():
            if isinstance(value, dict) and key in base and isinstance(base[key], dict):
                self._update_config_recursive(base[key], value)
            else:
                base[key] = value
