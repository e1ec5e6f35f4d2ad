"""
Settings for the sync engine and their JSON persistence.

`Settings` describes where the download server lives and how the engine
behaves when the stream drops; `ConfigManager` reads and writes it under the
user data directory.
"""

import json
import time
import logging
from pathlib import Path
from typing import Tuple
from urllib.parse import urljoin

from pydantic import BaseModel, Field, field_validator, ValidationError

from .constants import DEFAULT_SERVER_URL, RECONNECT_DELAY, REQUEST_TIMEOUT, SNAPSHOT_PATH, STREAM_PATH

LOG_LEVELS: Tuple[str, ...] = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
TERMINAL_POLICIES: Tuple[str, ...] = ('accept', 'ignore')


class Settings(BaseModel):
    """
    Server location, timing and merge behaviour.

    Attributes:
        server_url: Base URL of the download server, without a trailing slash.
        snapshot_path: Path of the full job listing endpoint.
        stream_path: Path of the server-sent event endpoint.
        reconnect_delay: Seconds between a stream drop and the next attempt.
        request_timeout: Total timeout for the snapshot request, in seconds.
        resync_on_reconnect: Reload the snapshot whenever the stream reopens.
        terminal_policy: 'accept' or 'ignore' status changes on finished jobs.
        log_level: Minimum level written to the log handlers.
    """
    server_url: str = DEFAULT_SERVER_URL
    snapshot_path: str = SNAPSHOT_PATH
    stream_path: str = STREAM_PATH
    reconnect_delay: float = Field(default=RECONNECT_DELAY, gt=0)
    request_timeout: float = Field(default=REQUEST_TIMEOUT, gt=0)
    resync_on_reconnect: bool = True
    terminal_policy: str = 'accept'
    log_level: str = 'INFO'

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"'{value}' is not a valid log level. Must be one of {list(LOG_LEVELS)}.")
        return level

    @field_validator('server_url')
    @classmethod
    def validate_server_url(cls, value: str) -> str:
        """Requires an absolute http(s) URL and strips any trailing slash."""
        value = value.strip()
        if not value.startswith(('http://', 'https://')):
            raise ValueError("Server URL must start with http:// or https://.")
        return value.rstrip('/')

    @field_validator('snapshot_path', 'stream_path')
    @classmethod
    def validate_endpoint_path(cls, value: str) -> str:
        if not value.startswith('/'):
            raise ValueError("Endpoint paths must start with '/'.")
        return value

    @field_validator('terminal_policy')
    @classmethod
    def validate_terminal_policy(cls, value: str) -> str:
        policy = value.lower()
        if policy not in TERMINAL_POLICIES:
            raise ValueError(f"'{value}' is not a valid terminal policy. Must be one of {list(TERMINAL_POLICIES)}.")
        return policy

    def endpoint(self, path: str) -> str:
        """Resolves an endpoint path against `server_url`, keeping any base path."""
        return urljoin(self.server_url + '/', path.lstrip('/'))

    @property
    def snapshot_url(self) -> str:
        return self.endpoint(self.snapshot_path)

    @property
    def stream_url(self) -> str:
        return self.endpoint(self.stream_path)


class ConfigManager:
    """Reads and writes `Settings` as JSON, falling back to defaults."""

    def __init__(self, config_path: Path):
        """
        Initializes the ConfigManager.

        Args:
            config_path: Location of the JSON config file. Its parent
                directory is created if missing.
        """
        self.config_path = config_path
        self.logger = logging.getLogger(__name__)
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> Settings:
        """
        Returns the stored settings, with defaults for any missing key.

        A missing file is created with the defaults. A file that is not valid
        JSON or fails validation is moved aside to a `.bak` copy and the
        defaults are used instead.
        """
        if not self.config_path.exists():
            self.logger.info(f"No config at {self.config_path}; writing defaults.")
            settings = Settings()
            self.save(settings)
            return settings

        try:
            raw = json.loads(self.config_path.read_text(encoding='utf-8'))
            return Settings.model_validate(raw)
        except (ValidationError, json.JSONDecodeError, OSError) as e:
            self.logger.error(f"Unusable config {self.config_path}: {e}. Falling back to defaults.")
            self._back_up()
            return Settings()

    def save(self, settings: Settings):
        """Writes `settings` to the config file; failures are logged."""
        try:
            self.config_path.write_text(settings.model_dump_json(indent=4), encoding='utf-8')
        except OSError as e:
            self.logger.error(f"Could not write config to {self.config_path}: {e}")

    def _back_up(self):
        backup_path = self.config_path.with_suffix(f".{int(time.time())}.bak")
        try:
            self.config_path.rename(backup_path)
        except OSError as e:
            self.logger.error(f"Could not back up config file: {e}")
            return
        self.logger.info(f"Moved unusable config to {backup_path}")
