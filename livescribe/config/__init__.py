"""Simple YAML configuration loader for LiveScribe."""

import os
import logging
from pathlib import Path
from typing import Any, Dict

import yaml

from ..models.audio import CaptureConfig
from ..models.connection import RetryPolicy

logger = logging.getLogger(__name__)

BACKEND_KINDS = ("native", "chunked", "streaming", "realtime")

# Per-backend retry defaults; backends differ in how expensive a reconnect is
DEFAULT_RETRY = {
    "native": RetryPolicy(max_attempts=3, base_delay_seconds=1.0, multiplier=2.0),
    "chunked": RetryPolicy(max_attempts=2, base_delay_seconds=1.0, multiplier=2.0),
    "streaming": RetryPolicy(max_attempts=2, base_delay_seconds=1.0, multiplier=2.0),
    "realtime": RetryPolicy(max_attempts=3, base_delay_seconds=1.0, multiplier=2.0),
}

_RELATIVE_PATH_KEYS = (
    ("google_cloud", "credentials_path"),
    ("logging", "file_path"),
)


class LiveScribeConfig:
    """LiveScribe configuration loader."""

    def __init__(self, config_path: str):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file
        """
        self.config_file = Path(config_path)

        if not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        logger.info(f"Loading configuration from: {self.config_file}")
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}") from e

        if not config:
            raise ValueError("Configuration file is empty")
        if not isinstance(config, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")

        self._resolve_paths(config)
        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent
        for section, key in _RELATIVE_PATH_KEYS:
            value = (config.get(section) or {}).get(key)
            if value and not os.path.isabs(value):
                config[section][key] = str(config_dir / value)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'transcription.backend').

        Args:
            key_path: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        value = self.config
        for key in key_path.split('.'):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation."""
        keys = key_path.split('.')
        config_dict = self.config
        for key in keys[:-1]:
            if not isinstance(config_dict.get(key), dict):
                config_dict[key] = {}
            config_dict = config_dict[key]
        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    @property
    def backend_kind(self) -> str:
        kind = self.get('transcription.backend', 'chunked')
        if kind not in BACKEND_KINDS:
            raise ValueError(f"Unknown transcription backend '{kind}' (expected one of {', '.join(BACKEND_KINDS)})")
        return kind

    def retry_policy(self, kind: str) -> RetryPolicy:
        """Retry policy for a backend, config values overriding the per-backend defaults."""
        default = DEFAULT_RETRY.get(kind, RetryPolicy())
        prefix = f'transcription.{kind}.retry'
        return RetryPolicy(
            max_attempts=int(self.get(f'{prefix}.max_attempts', default.max_attempts)),
            base_delay_seconds=float(self.get(f'{prefix}.base_delay_seconds', default.base_delay_seconds)),
            multiplier=float(self.get(f'{prefix}.multiplier', default.multiplier)),
        )

    def capture_config(self) -> CaptureConfig:
        return CaptureConfig(
            sample_rate=int(self.get('audio.sample_rate', 16000)),
            channels=int(self.get('audio.channels', 1)),
            frames_per_read=int(self.get('audio.frames_per_read', 1024)),
        )

    def get_google_credentials_path(self) -> str:
        """Get Google credentials path - raises if not configured or missing."""
        creds_path = self.get('google_cloud.credentials_path')
        if not creds_path:
            raise ValueError("Google credentials path not configured")

        creds_file = Path(creds_path)
        if not creds_file.exists():
            raise FileNotFoundError(f"Google credentials file not found: {creds_path}")
        return str(creds_file.absolute())
