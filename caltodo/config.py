"""
Configuration management for caltodo.

Loads settings from config.ini with environment variable overrides.
Provides centralized configuration for the database and the ordering and
nesting limits.
"""

import configparser
import os
from pathlib import Path
from typing import Optional, Dict, Any

from caltodo.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_DATABASE_URL = f"sqlite+aiosqlite:///{Path.home() / '.caltodo' / 'caltodo.db'}"

# (config key, environment override, default)
LIMIT_SETTINGS = (
    ('max_tasks_per_day', 'MAX_TASKS_PER_DAY', 50),
    ('max_task_nesting_depth', 'MAX_TASK_NESTING_DEPTH', 2),
    ('max_document_nesting_depth', 'MAX_DOCUMENT_NESTING_DEPTH', 5),
)


class Config:
    """Application configuration manager."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config file, defaults to ~/.caltodo/config.ini
        """
        self.config_path = config_path or self._default_config_path()
        self._config = configparser.ConfigParser()
        self._load()

    def _default_config_path(self) -> Path:
        """Get default config path."""
        return Path.home() / ".caltodo" / "config.ini"

    def _load(self):
        """Load configuration from file."""
        if self.config_path.exists():
            try:
                self._config.read(self.config_path)
                logger.info(f"Loaded configuration from {self.config_path}")
            except configparser.Error as e:
                logger.warning(f"Failed to read config file: {e}. Using defaults.")
        else:
            logger.debug(f"Config file not found at {self.config_path}. Using defaults.")

    def _env_int(self, env_name: str, section: str, key: str, fallback: int) -> int:
        raw = os.getenv(env_name)
        if raw:
            try:
                return int(raw)
            except ValueError:
                logger.warning(f"Ignoring non-integer {env_name}={raw!r}")
        try:
            return self._config.getint(section, key, fallback=fallback)
        except ValueError:
            logger.warning(
                f"Ignoring non-integer [{section}] {key}={self._config.get(section, key)!r}"
            )
            return fallback

    def get_database_config(self) -> Dict[str, Any]:
        """
        Get database configuration with environment overrides.

        Environment variables take precedence over config file:
        - CALTODO_DATABASE_URL
        - CALTODO_DATABASE_ECHO

        Returns:
            Dictionary with database configuration
        """
        echo_env = os.getenv('CALTODO_DATABASE_ECHO', '').lower()
        config = {
            'url': os.getenv('CALTODO_DATABASE_URL') or
                   self._config.get('database', 'url', fallback=DEFAULT_DATABASE_URL),
            'echo': (
                echo_env == 'true'
                if echo_env
                else self._config.getboolean('database', 'echo', fallback=False)
            ),
        }

        logger.debug(f"Database config: url={config['url']}, echo={config['echo']}")

        return config

    def get_limits_config(self) -> Dict[str, Any]:
        """
        Get ordering and nesting limits with environment overrides.

        Environment variables take precedence over config file:
        - MAX_TASKS_PER_DAY
        - MAX_TASK_NESTING_DEPTH
        - MAX_DOCUMENT_NESTING_DEPTH

        Returns:
            Dictionary with limit values
        """
        config = {
            key: self._env_int(env_name, 'limits', key, default)
            for key, env_name, default in LIMIT_SETTINGS
        }

        logger.debug(f"Limits config: {config}")

        return config

    def get(self, section: str, key: str, fallback: Any = None) -> Any:
        """
        Get configuration value with fallback.

        Args:
            section: Config section name
            key: Config key name
            fallback: Default value if not found

        Returns:
            Configuration value or fallback
        """
        return self._config.get(section, key, fallback=fallback)

    def get_int(self, section: str, key: str, fallback: int = 0) -> int:
        return self._config.getint(section, key, fallback=fallback)

    def sections(self) -> list:
        """
        Get list of all configuration sections.

        Returns:
            List of section names
        """
        return self._config.sections()
