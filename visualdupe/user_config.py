"""
User configuration management for visualdupe.

Supports configuration from multiple sources (in order of priority):
1. Runtime parameters (highest priority)
2. Environment variables
3. User config file (~/.visualdupe/config.json)
4. Default values from config.py (lowest priority)

Example config.json:
{
    "workers": 4,
    "device_concurrency": 4,
    "incremental_threshold": 500,
    "grouping_threshold": 0.8,
    "cache_max_entries": 100,
    "cache_max_bytes": 52428800,
    "max_texture_dimension": 1024,
    "memory_budget": null
}
"""

import json
import os
from pathlib import Path
from typing import Any, Optional
import logging

from .config import (
    CONFIG_DIR,
    DEFAULT_WORKERS,
    DEVICE_CONCURRENCY,
    INCREMENTAL_THRESHOLD,
    GROUPING_THRESHOLD,
    CACHE_MAX_ENTRIES,
    CACHE_MAX_BYTES,
    MAX_TEXTURE_DIMENSION,
)

logger = logging.getLogger(__name__)


class UserConfig:
    """
    Manages user configuration from file and environment variables.

    The file is read lazily and cached until reload().
    """

    _instance: Optional['UserConfig'] = None
    _config_data: Optional[dict] = None

    def __new__(cls):
        """Singleton pattern to ensure one config instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def config_dir(self) -> Path:
        """Get the configuration directory path."""
        env_dir = os.getenv('VISUALDUPE_CONFIG_DIR')
        if env_dir:
            return Path(env_dir)
        return Path(CONFIG_DIR)

    @property
    def config_file_path(self) -> Path:
        return self.config_dir / 'config.json'

    def _load_config_file(self) -> dict:
        """Load configuration from JSON file."""
        if not self.config_file_path.exists():
            return {}

        try:
            with open(self.config_file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load config file {self.config_file_path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Ignoring config file {self.config_file_path}: not a JSON object")
            return {}

        logger.debug(f"Loaded configuration from {self.config_file_path}")
        return data

    def _get_config_data(self) -> dict:
        if self._config_data is None:
            self._config_data = self._load_config_file()
        return self._config_data

    def reload(self):
        """Reload configuration from file."""
        self._config_data = None

    def get(self, key: str, default: Any = None, env_var: Optional[str] = None) -> Any:
        """
        Get a configuration value with priority:
        1. Environment variable (if env_var specified)
        2. Config file
        3. Default value
        """
        if env_var:
            env_value = os.getenv(env_var)
            if env_value is not None:
                # Parse numbers and booleans, keep anything else as a string
                try:
                    return json.loads(env_value)
                except (json.JSONDecodeError, TypeError):
                    return env_value

        config_data = self._get_config_data()
        if key in config_data:
            return config_data[key]

        return default

    @property
    def workers(self) -> int:
        """Thread pool size for extraction and the CPU backend."""
        return int(self.get('workers', default=DEFAULT_WORKERS, env_var='VISUALDUPE_WORKERS'))

    @property
    def device_concurrency(self) -> int:
        """Images allowed on the compute device at once."""
        return int(self.get(
            'device_concurrency',
            default=DEVICE_CONCURRENCY,
            env_var='VISUALDUPE_DEVICE_CONCURRENCY'
        ))

    @property
    def incremental_threshold(self) -> int:
        """Collections larger than this are scanned in small batches."""
        return int(self.get(
            'incremental_threshold',
            default=INCREMENTAL_THRESHOLD,
            env_var='VISUALDUPE_INCREMENTAL_THRESHOLD'
        ))

    @property
    def grouping_threshold(self) -> float:
        """Fused score at which the scan merges two images into a group."""
        return float(self.get(
            'grouping_threshold',
            default=GROUPING_THRESHOLD,
            env_var='VISUALDUPE_GROUPING_THRESHOLD'
        ))

    @property
    def cache_max_entries(self) -> int:
        return int(self.get(
            'cache_max_entries',
            default=CACHE_MAX_ENTRIES,
            env_var='VISUALDUPE_CACHE_MAX_ENTRIES'
        ))

    @property
    def cache_max_bytes(self) -> int:
        return int(self.get(
            'cache_max_bytes',
            default=CACHE_MAX_BYTES,
            env_var='VISUALDUPE_CACHE_MAX_BYTES'
        ))

    @property
    def max_texture_dimension(self) -> int:
        """Decoded images are downscaled to fit this before upload."""
        return int(self.get(
            'max_texture_dimension',
            default=MAX_TEXTURE_DIMENSION,
            env_var='VISUALDUPE_MAX_TEXTURE_DIMENSION'
        ))

    @property
    def memory_budget(self) -> Optional[int]:
        """Per-batch memory budget in bytes; null disables re-splitting."""
        value = self.get('memory_budget', default=None, env_var='VISUALDUPE_MEMORY_BUDGET')
        return None if value is None else int(value)

    def as_dict(self) -> dict:
        """Effective configuration values."""
        return {
            'workers': self.workers,
            'device_concurrency': self.device_concurrency,
            'incremental_threshold': self.incremental_threshold,
            'grouping_threshold': self.grouping_threshold,
            'cache_max_entries': self.cache_max_entries,
            'cache_max_bytes': self.cache_max_bytes,
            'max_texture_dimension': self.max_texture_dimension,
            'memory_budget': self.memory_budget,
        }

    def create_example_config(self) -> bool:
        """Create an example configuration file."""
        example_config = {
            "_comment": "visualdupe user configuration",
            "workers": DEFAULT_WORKERS,
            "device_concurrency": DEVICE_CONCURRENCY,
            "incremental_threshold": INCREMENTAL_THRESHOLD,
            "grouping_threshold": GROUPING_THRESHOLD,
            "cache_max_entries": CACHE_MAX_ENTRIES,
            "cache_max_bytes": CACHE_MAX_BYTES,
            "max_texture_dimension": MAX_TEXTURE_DIMENSION,
            "memory_budget": None,
        }

        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, 'w', encoding='utf-8') as f:
                json.dump(example_config, f, indent=2)
        except OSError as e:
            logger.error(f"Failed to create example config: {e}")
            return False

        logger.info(f"Created example config file at {self.config_file_path}")
        self.reload()
        return True


# Global instance
_user_config = UserConfig()


def get_user_config() -> UserConfig:
    """Get the global UserConfig instance."""
    return _user_config
