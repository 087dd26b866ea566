"""
Configuration management for WikiFeed.
"""
import os
import copy
import json
import logging
import yaml
from pathlib import Path
from typing import Any, Dict, Optional
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load environment variables from .env file
load_dotenv()

ENV_PREFIX = 'WIKIFEED_'
ENV_SEPARATOR = '__'

# Default configuration
DEFAULT_CONFIG = {
    "language": {
        "default": "en"
    },
    "storage": {
        "backend": "sqlite",
        "path": "cache/wikifeed.db"
    },
    "cache": {
        "ttl_minutes": {
            "articles": 30,
            "categories": 60,
            "summaries": 15,
            "images": 24 * 60,
            "recommendations": 15
        },
        "sweep_interval_seconds": 300
    },
    "rate_limiting": {
        "min_interval_seconds": 0.3,
        "timeout_seconds": 10,
        "max_attempts": 3,
        "base_delay_seconds": 1.0
    },
    "buffer": {
        "batch_size": 5,
        "low_water_mark": 10,
        "max_size": 50,
        "diversity_window": 5
    },
    "interactions": {
        "debounce_ms": 1000,
        "min_view_ms": 2000,
        "history_size": 50,
        "history_days": 15,
        "log_size": 500,
        "log_days": 30
    },
    "recommendations": {
        "max_results": 10,
        "seed_count": 5,
        "per_category": 2,
        "min_results": 3,
        "max_errors": 2,
        "fallback_size": 5,
        "cooldown_minutes": 30
    },
    "feed": {
        "page_size": 10,
        "interval": 3,
        "ad_start": 30,
        "ad_interval": 50
    },
    "wikipedia": {
        "user_agent": "wikifeed/0.1 (https://github.com/wikifeed/wikifeed)"
    },
    "logging": {
        "level": "INFO",
        "file": None
    }
}


class Config:
    """
    Configuration manager for WikiFeed.
    """
    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the Config.

        Args:
            config_path: Path to the configuration file
        """
        self.config_path = config_path
        self.config = self._load_config()

    def _load_config(self) -> Dict:
        """
        Load configuration from file or use defaults.

        Returns:
            Configuration dictionary
        """
        config = copy.deepcopy(DEFAULT_CONFIG)

        if self.config_path:
            try:
                path = Path(self.config_path)
                if path.exists():
                    if path.suffix.lower() in ['.yaml', '.yml']:
                        with open(path, 'r') as f:
                            user_config = yaml.safe_load(f) or {}
                    elif path.suffix.lower() == '.json':
                        with open(path, 'r') as f:
                            user_config = json.load(f)
                    else:
                        raise ValueError(f"Unsupported config file format: {path.suffix}")

                    self._update_dict(config, user_config)
                else:
                    logger.warning(f"Config file {self.config_path} not found, using defaults")
            except Exception as e:
                logger.error(f"Error loading config from {self.config_path}: {e}")
                logger.info("Using default configuration")

        self._override_from_env(config)

        return config

    def _update_dict(self, target: Dict, source: Dict) -> None:
        """
        Recursively update a dictionary.

        Args:
            target: Target dictionary to update
            source: Source dictionary with new values
        """
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._update_dict(target[key], value)
            else:
                target[key] = value

    def _override_from_env(self, config: Dict, prefix: str = ENV_PREFIX) -> None:
        """
        Override configuration with environment variables.

        ``WIKIFEED_BUFFER__LOW_WATER_MARK=20`` sets ``buffer.low_water_mark``.
        Values are parsed as JSON where possible.

        Args:
            config: Configuration dictionary to update
            prefix: Prefix for environment variables
        """
        for key, value in os.environ.items():
            if not key.startswith(prefix) or ENV_SEPARATOR not in key:
                continue

            parts = key[len(prefix):].lower().split(ENV_SEPARATOR)

            current = config
            for part in parts[:-1]:
                if not isinstance(current.get(part), dict):
                    current[part] = {}
                current = current[part]

            try:
                current[parts[-1]] = json.loads(value)
            except json.JSONDecodeError:
                current[parts[-1]] = value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.

        Args:
            key: Dot-separated key path (e.g., 'buffer.low_water_mark')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        current = self.config

        for part in key.split('.'):
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]

        return current

    def save(self, path: Optional[str] = None) -> bool:
        """
        Save the current configuration to a file.

        Args:
            path: Path to save the configuration to

        Returns:
            True if successful, False otherwise
        """
        save_path = path or self.config_path
        if not save_path:
            logger.error("No path specified for saving configuration")
            return False

        try:
            path = Path(save_path)
            if path.suffix.lower() in ['.yaml', '.yml']:
                with open(path, 'w') as f:
                    yaml.dump(self.config, f, default_flow_style=False)
            elif path.suffix.lower() == '.json':
                with open(path, 'w') as f:
                    json.dump(self.config, f, indent=2)
            else:
                raise ValueError(f"Unsupported config file format: {path.suffix}")

            return True
        except Exception as e:
            logger.error(f"Error saving config to {save_path}: {e}")
            return False


_config: Optional[Config] = None


def default_config() -> Config:
    """Process-wide configuration, created on first use."""
    global _config
    if _config is None:
        _config = Config(os.getenv('WIKIFEED_CONFIG_PATH'))
    return _config


def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value.

    Args:
        key: Dot-separated key path (e.g., 'cache.sweep_interval_seconds')
        default: Default value if key not found

    Returns:
        Configuration value
    """
    return default_config().get(key, default)
