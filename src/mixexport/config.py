"""
Configuration management for the mix export engine.

Loads and validates a TOML config against strict bounds.
All tunable parameters are bounded and validated at startup.
"""

import copy
import os
from pathlib import Path
from typing import Dict, Any, Optional
import toml
import logging

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when config validation fails."""
    pass


class Config:
    """Configuration loader and validator."""

    PARAM_BOUNDS = {
        "archive": {
            "compression_level": (1, 9),
            "chunk_size_bytes": (64 * 1024, 16 * 1024 * 1024),
            "spool_max_bytes": (1024 * 1024, 256 * 1024 * 1024),
            "prefetch_workers": (1, 8),
        },
        "retention": {
            "artifact_ttl_minutes": (5, 10080),
            "reservation_ttl_minutes": (5, 1440),
        },
    }

    # Enumerated string parameters
    PARAM_CHOICES = {
        "storage": {
            "backend": ("local", "s3"),
        },
    }

    DEFAULT_CONFIG = {
        "config_version": "1.0",
        "database": {
            "path": "data/db/mixexport.sqlite",
        },
        "storage": {
            "backend": "local",
            "local_root": "uploads",
            "bucket": "thevideopool",
            "endpoint_url": "",
            "region": "us-east-1",
        },
        "export": {
            "temp_dir": "temp/mixes",
            "download_path_prefix": "/api/mix-exports",
        },
        "archive": {
            "compression_level": 5,
            "chunk_size_bytes": 1024 * 1024,
            "spool_max_bytes": 8 * 1024 * 1024,
            "prefetch_workers": 2,
            "store_media_uncompressed": True,
        },
        "retention": {
            "delete_after_download": True,
            "artifact_ttl_minutes": 60,
            "reservation_ttl_minutes": 120,
        },
    }

    def __init__(self, config_dict: Dict[str, Any]):
        """Initialize config from dictionary."""
        self.data = config_dict
        self._validate()

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "Config":
        """
        Load config from TOML file.

        Args:
            config_path: Path to mixexport.toml. If None, uses MIXEXPORT_CONFIG_PATH
                        env var or defaults to configs/mixexport.toml.

        Returns:
            Config instance.

        Raises:
            ConfigError: If config is invalid or missing.
        """
        if config_path is None:
            config_path = os.getenv("MIXEXPORT_CONFIG_PATH", "configs/mixexport.toml")

        config_path = Path(config_path)

        if not config_path.exists():
            logger.warning(f"Config file not found: {config_path}. Using defaults.")
            return cls.defaults()

        try:
            config_dict = toml.load(config_path)
        except Exception as e:
            raise ConfigError(f"Failed to load config from {config_path}: {e}")

        logger.info(f"Loaded config from {config_path}")
        return cls(config_dict)

    @classmethod
    def defaults(cls) -> "Config":
        """Config built purely from DEFAULT_CONFIG."""
        return cls(copy.deepcopy(cls.DEFAULT_CONFIG))

    def _validate(self) -> None:
        """
        Validate all config parameters against their bounds.

        Missing sections and parameters are filled from DEFAULT_CONFIG.

        Raises:
            ConfigError: If any parameter is out of bounds or not an allowed choice.
        """
        for section, defaults in self.DEFAULT_CONFIG.items():
            if not isinstance(defaults, dict):
                continue
            if section not in self.data:
                logger.warning(f"Missing config section: {section}. Using defaults.")
                self.data[section] = copy.deepcopy(defaults)
                continue
            section_data = self.data[section]
            for param, default_val in defaults.items():
                if param not in section_data:
                    logger.warning(f"Missing param {section}.{param}. Using default: {default_val}")
                    section_data[param] = default_val

        for section, params in self.PARAM_BOUNDS.items():
            section_data = self.data[section]
            for param, (min_val, max_val) in params.items():
                value = section_data[param]
                if not isinstance(value, (int, float)) or isinstance(value, bool):
                    raise ConfigError(f"Parameter {section}.{param}={value!r} is not a number")
                if not (min_val <= value <= max_val):
                    raise ConfigError(
                        f"Parameter {section}.{param}={value} out of bounds "
                        f"[{min_val}, {max_val}]"
                    )

        for section, params in self.PARAM_CHOICES.items():
            section_data = self.data[section]
            for param, choices in params.items():
                value = section_data[param]
                if value not in choices:
                    raise ConfigError(
                        f"Parameter {section}.{param}={value!r} must be one of {list(choices)}"
                    )

        logger.info("✅ Config validation passed")

    def get(self, section: str, param: str, default: Any = None) -> Any:
        """Get a config parameter safely."""
        return self.data.get(section, {}).get(param, default)

    def __getitem__(self, section: str) -> Dict[str, Any]:
        """Allow dict-like access: config["archive"]"""
        return self.data.get(section, {})

    def __repr__(self) -> str:
        version = self.data.get('config_version', 'unknown')
        backend = self.get("storage", "backend")
        return f"Config(version={version}, storage={backend})"
