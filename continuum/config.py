"""
Configuration management for Continuum.

This module handles loading and accessing configuration values from config.yaml.
Budgets, model names and session defaults live here so they can be tuned
without touching the engine code.
"""

import yaml
from pathlib import Path
from typing import Any, Dict, Optional
import logging


class ConfigManager:
    """
    Manages configuration loading and access for Continuum.
    """

    def __init__(self, config_path: str = "config.yaml"):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file
        """
        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML file."""
        try:
            if not self.config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._config = yaml.safe_load(f) or {}

            logging.info(f"Configuration loaded from {self.config_path}")

        except (OSError, yaml.YAMLError) as e:
            logging.warning(f"Failed to load configuration, using defaults: {e}")
            self._config = self._get_default_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values as fallback."""
        return {
            "ai": {
                "ollama_host": "http://localhost:11434",
                "model": "llama3.1",
                "timeout": 120.0
            },
            "database": {
                "filename": "continuum.db"
            },
            "compression": {
                "threshold_tokens": 8000
            },
            "entities": {
                "extraction_char_limit": 4000,
                "trend_window_days": 30
            },
            "session": {
                "incremental": True,
                "auto_approve": False
            },
            "pricing": {
                "default_model": "claude-3-5-sonnet-20241022"
            },
            "snapshots": {
                "directory": "snapshots",
                "enabled": False,
                "author_name": "Continuum",
                "author_email": "continuum@localhost"
            },
            "paths": {
                "log_file": "continuum.log"
            },
            "logging": {
                "level": "INFO",
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            }
        }

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key_path: Dot-separated path to the configuration value (e.g., "ai.model")
            default: Default value if key is not found

        Returns:
            The configuration value

        Examples:
            config.get("ai.model")  # Returns "llama3.1"
            config.get("compression.threshold_tokens")  # Returns 8000
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def get_section(self, section: str) -> Dict[str, Any]:
        """
        Get an entire configuration section.

        Args:
            section: Name of the configuration section

        Returns:
            Dictionary containing the section configuration
        """
        return self._config.get(section, {})

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    # Convenience properties for commonly used values

    @property
    def ollama_host(self) -> str:
        """Get Ollama host URL."""
        return self.get("ai.ollama_host", "http://localhost:11434")

    @property
    def model_name(self) -> str:
        """Get AI model name."""
        return self.get("ai.model", "llama3.1")

    @property
    def ollama_timeout(self) -> float:
        """Get Ollama timeout."""
        return self.get("ai.timeout", 120.0)

    @property
    def database_filename(self) -> str:
        """Get database filename."""
        return self.get("database.filename", "continuum.db")

    @property
    def compression_threshold(self) -> int:
        """Get the estimated-token budget above which context is compressed."""
        return int(self.get("compression.threshold_tokens", 8000))

    @property
    def extraction_char_limit(self) -> int:
        """Get how many characters of a text are sent for entity extraction."""
        return int(self.get("entities.extraction_char_limit", 4000))

    @property
    def trend_window_days(self) -> int:
        """Get how many days of mentions feed an entity's sentiment trend."""
        return int(self.get("entities.trend_window_days", 30))

    @property
    def default_pricing_model(self) -> str:
        """Get the pricing entry used for models missing from the price table."""
        return self.get("pricing.default_model", "claude-3-5-sonnet-20241022")

    @property
    def snapshot_directory(self) -> str:
        """Get snapshot repository path."""
        return self.get("snapshots.directory", "snapshots")

    @property
    def snapshots_enabled(self) -> bool:
        """Whether markdown snapshots are written after each revision."""
        return bool(self.get("snapshots.enabled", False))

    @property
    def log_filename(self) -> str:
        """Get log file name."""
        return self.get("paths.log_file", "continuum.log")

    @property
    def default_session_policy(self) -> Dict[str, bool]:
        """Get the session policy applied when a caller passes none."""
        return {
            "incremental": bool(self.get("session.incremental", True)),
            "auto_approve": bool(self.get("session.auto_approve", False)),
        }


# Global configuration instance
config = ConfigManager()


def get_config() -> ConfigManager:
    """
    Get the global configuration instance.

    Returns:
        The global ConfigManager instance
    """
    return config
