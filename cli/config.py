"""Configuration management for the chunk upload client."""

import json
import logging
import os
from pathlib import Path

from common.constants import DEFAULT_CHUNK_SIZE_BYTES, DEFAULT_SERVER_PORT

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / '.chunkmerge' / 'config.json'


class Config:
    """Manages client configuration stored in JSON file."""

    DEFAULT_CONFIG = {
        "server_host": os.environ.get("CHUNKMERGE_SERVER_HOST", "localhost"),
        "server_port": int(os.environ.get("CHUNKMERGE_SERVER_PORT", str(DEFAULT_SERVER_PORT))),
        "timeout": 30,
        "chunk_size": DEFAULT_CHUNK_SIZE_BYTES,
        "max_workers": 4,
    }

    def __init__(self, config_path: Path = DEFAULT_CONFIG_PATH):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (typically ~/.chunkmerge/config.json)
        """
        self.config_path = Path(config_path)
        self.data = self._load()

    def _load(self) -> dict:
        """
        Load configuration from file, falling back to defaults.

        A missing file is not created; a corrupt file is logged and ignored.

        Returns:
            Configuration dictionary
        """
        config = self.DEFAULT_CONFIG.copy()

        if not self.config_path.exists():
            return config

        try:
            with open(self.config_path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable config file {self.config_path}: {e}")
            return config

        if not isinstance(data, dict):
            logger.warning(f"Ignoring config file {self.config_path}: expected a JSON object")
            return config

        config.update(data)
        return config

    def save(self) -> None:
        """
        Save current configuration to file.

        Raises:
            OSError: If the file cannot be written
        """
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w') as f:
            json.dump(self.data, f, indent=2)

    def set(self, key: str, value) -> None:
        self.data[key] = value

    def get_base_url(self) -> str:
        """
        Get server base URL.

        Returns:
            Base URL string (e.g., "http://localhost:3001")
        """
        host = self.data.get('server_host', 'localhost')
        port = self.data.get('server_port', DEFAULT_SERVER_PORT)
        return f"http://{host}:{port}"

    def get_timeout(self) -> float:
        """
        Get request timeout in seconds.
        """
        return self.data.get('timeout', 30)

    def get_chunk_size(self) -> int:
        return int(self.data.get('chunk_size', DEFAULT_CHUNK_SIZE_BYTES))

    def get_max_workers(self) -> int:
        return int(self.data.get('max_workers', 4))
