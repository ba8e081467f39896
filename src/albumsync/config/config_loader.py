"""
Configuration loader for albumsync.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..core.exceptions import ConfigError


logger = logging.getLogger(__name__)


@dataclass
class StoreSettings:
    """
    Store configuration.

    Attributes:
        base_dir: Root directory of the on-disk store
        cleanup_after_minutes: Collections not accessed for this long are evicted
    """
    base_dir: str = "./cache/images"
    cleanup_after_minutes: float = 1440

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoreSettings":
        defaults = cls()
        return cls(
            base_dir=str(data.get("base_dir") or defaults.base_dir),
            cleanup_after_minutes=float(
                data.get("cleanup_after_minutes", defaults.cleanup_after_minutes)
            ),
        )


class AlbumSyncConfig:
    """
    Configuration for albumsync.

    Loads a YAML file (or built-in defaults) and applies environment
    overrides. Components never read configuration directly; callers build
    their config objects from the sections returned here.
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML config file (optional)
        """
        self.config_path = Path(config_path) if config_path else None
        self.config = self._default_config()
        if self.config_path:
            self._merge(self.config, self._load_config())
        self._apply_env_overrides()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        logger.info(f"Loading config from: {self.config_path}")

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {self.config_path}: {e}") from e

        if config is not None and not isinstance(config, dict):
            raise ConfigError(f"Config root must be a mapping: {self.config_path}")
        return config or {}

    def _default_config(self) -> Dict[str, Any]:
        """Return default configuration."""
        return {
            "store": {
                "base_dir": "./cache/images",
                "cleanup_after_minutes": 1440,
            },
            "sync": {
                "staleness_minutes": 1440,
                "snapshot_timeout_seconds": 15,
                "download_timeout_seconds": 10,
                "retry_attempts": 3,
                "retry_backoff_seconds": [1, 2, 4],
                "rate_limit_backoff_seconds": 5,
                "download_delay_seconds": 1,
                "background_refresh_seconds": 3600,
            },
            "client": {
                "max_concurrent": 4,
                "window_back": 5,
                "window_forward": 20,
                "window_margin": 5,
                "page_size": 20,
                "max_page_size": 100,
            },
            "source": {
                "type": "shared_album",
                "user_agent": None,
                "timeout_seconds": 15,
            },
        }

    def _merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> None:
        """Recursively merge override into base."""
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                self._merge(base[key], value)
            else:
                base[key] = value

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to loaded config."""
        cache_dir = os.environ.get("ALBUMSYNC_CACHE_DIR")
        if cache_dir:
            self.config.setdefault("store", {})["base_dir"] = cache_dir

        for env_name, section, key in (
            ("ALBUMSYNC_STALENESS_MINUTES", "sync", "staleness_minutes"),
            ("ALBUMSYNC_CLEANUP_MINUTES", "store", "cleanup_after_minutes"),
        ):
            raw = os.environ.get(env_name)
            if not raw:
                continue
            try:
                self.config.setdefault(section, {})[key] = float(raw)
            except ValueError:
                raise ConfigError(f"{env_name} must be a number, got {raw!r}")

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ConfigError describing the first invalid value
        """
        checks = [
            ("sync.staleness_minutes", 0, False),
            ("store.cleanup_after_minutes", 0, False),
            ("sync.retry_attempts", 1, True),
            ("client.max_concurrent", 1, True),
            ("client.window_back", 0, True),
            ("client.window_forward", 0, True),
            ("client.window_margin", 0, True),
            ("client.page_size", 1, True),
            ("client.max_page_size", 1, True),
        ]
        for key, minimum, inclusive in checks:
            value = self.get(key)
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise ConfigError(f"{key} must be a number, got {value!r}")
            if number < minimum or (not inclusive and number == minimum):
                op = ">=" if inclusive else ">"
                raise ConfigError(f"{key} must be {op} {minimum}, got {value!r}")

        backoff = self.get("sync.retry_backoff_seconds")
        if not isinstance(backoff, list) or not backoff:
            raise ConfigError("sync.retry_backoff_seconds must be a non-empty list")

    def get_store_config(self) -> Dict[str, Any]:
        """Get store configuration."""
        return self.config.get("store", {})

    def get_sync_config(self) -> Dict[str, Any]:
        """Get sync orchestrator configuration."""
        return self.config.get("sync", {})

    def get_client_config(self) -> Dict[str, Any]:
        """Get client session configuration."""
        return self.config.get("client", {})

    def get_source_config(self) -> Dict[str, Any]:
        """Get remote source configuration."""
        return self.config.get("source", {})

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dotted key."""
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default
