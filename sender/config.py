"""Configuration management for the chunk-relay sender."""

import json
import logging
import os
import shutil
from pathlib import Path

from common.constants import DEFAULT_CHUNK_SIZE_BYTES, DEFAULT_RECEIVER_PORT

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / '.chunk-relay' / 'config.json'


class Config:
    """Manages sender configuration stored in JSON file."""

    DEFAULT_CONFIG = {
        "receiver_host": os.environ.get("CHUNK_RELAY_RECEIVER_HOST", "localhost"),
        "receiver_port": int(os.environ.get("CHUNK_RELAY_RECEIVER_PORT", str(DEFAULT_RECEIVER_PORT))),
        "chunk_size": DEFAULT_CHUNK_SIZE_BYTES,
        "transfer_method": "wifi",
        "timeout": 30,
        "max_retries": 3,
        "retry_backoff_multiplier": 2,
    }

    def __init__(self, config_path: Path = DEFAULT_CONFIG_PATH):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (typically ~/.chunk-relay/config.json)
        """
        self.config_path = Path(config_path)
        self.data = self._load()

    def _load(self) -> dict:
        """
        Load configuration from file, creating defaults if necessary.

        Returns:
            Configuration dictionary
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            import tempfile
            self.config_path = Path(tempfile.gettempdir()) / '.chunk-relay' / 'config.json'
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                config = self.DEFAULT_CONFIG.copy()
                config.update(data)
                return config
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Unreadable config {self.config_path}: {e}; using defaults")
                backup_path = self.config_path.with_suffix('.json.bak')
                try:
                    shutil.copy(self.config_path, backup_path)
                except OSError as copy_error:
                    logger.warning(f"Could not back up config: {copy_error}")
                return self.DEFAULT_CONFIG.copy()
        else:
            config = self.DEFAULT_CONFIG.copy()
            try:
                with open(self.config_path, 'w') as f:
                    json.dump(config, f, indent=2)
            except IOError as e:
                logger.warning(f"Could not write default config: {e}")
            return config

    def save(self) -> None:
        """Save current configuration to file."""
        try:
            with open(self.config_path, 'w') as f:
                json.dump(self.data, f, indent=2)
        except IOError as e:
            logger.warning(f"Could not save config: {e}")

    def get_base_url(self) -> str:
        """
        Get receiver base URL.

        Returns:
            Base URL string (e.g., "http://localhost:5050")
        """
        host = self.data.get('receiver_host', 'localhost')
        port = self.data.get('receiver_port', DEFAULT_RECEIVER_PORT)
        return f"http://{host}:{port}"

    def get_chunk_size(self) -> int:
        return int(self.data.get('chunk_size', DEFAULT_CHUNK_SIZE_BYTES))

    def get_transfer_method(self) -> str:
        return self.data.get('transfer_method', 'wifi')

    def get_timeout(self) -> int:
        return self.data.get('timeout', 30)

    def get_retry_config(self) -> dict:
        """
        Get retry configuration.

        Returns:
            Dictionary with 'max_retries' and 'retry_backoff_multiplier'
        """
        return {
            'max_retries': self.data.get('max_retries', 3),
            'retry_backoff_multiplier': self.data.get('retry_backoff_multiplier', 2),
        }
