"""Configuration management for the PrintBridge agent."""

import json
import logging
import os
import threading
from pathlib import Path

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "printbridge"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.json"
DEFAULT_PRINTERS_FILE = DEFAULT_CONFIG_DIR / "printers.json"


class BridgeConfig(BaseSettings):
    """Configuration for the PrintBridge agent.

    Values come from the JSON config file; ``PRINTBRIDGE_*`` environment
    variables fill in anything the file does not set.

    Attributes:
        instance_name: Instance identity, sent as ``spooler_name`` on every remote call.
        server_url: Base URL of the remote print-job service.
        api_prefix: Path prefix of the remote API.
        api_username: Login used to refresh the API token.
        api_password: Password used to refresh the API token.
        api_token: Current bearer token (refreshed at runtime).
        printer_check_interval: Seconds between printer directory syncs.
        job_check_interval: Seconds between job polls (poll mode only).
        status_check_interval: Seconds between in-flight job status checks.
        job_timeout: Seconds an in-flight job may stay invisible to the spooler.
        request_timeout: HTTP request timeout in seconds.
        shutdown_timeout: Seconds to wait for each loop on shutdown.
        push_enabled: Receive jobs over the push channel instead of polling.
        push_app_id: Push application id.
        push_app_key: Push application key.
        push_app_secret: Push application secret, signs private channel subscriptions.
        push_host: Push server host name.
        push_port: Push server port (None = scheme default).
        push_use_tls: Connect with wss:// instead of ws://.
        push_auth_endpoint: Optional remote endpoint authorizing channel subscriptions.
        push_reconnect_delay: Seconds to wait before reconnecting the push channel.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        printers_file: Where the synced printer map is persisted.
    """

    model_config = SettingsConfigDict(
        env_prefix="PRINTBRIDGE_",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    instance_name: str = "default-instance"
    server_url: str = "http://example.com"
    api_prefix: str = "/api"
    api_username: str = ""
    api_password: str = ""
    api_token: str | None = None

    printer_check_interval: float = 300
    job_check_interval: float = 120
    status_check_interval: float = 15
    job_timeout: float = 300
    request_timeout: float = 30
    shutdown_timeout: float = 5

    push_enabled: bool = True
    push_app_id: str = ""
    push_app_key: str = ""
    push_app_secret: str = ""
    push_host: str | None = None
    push_port: int | None = None
    push_use_tls: bool = True
    push_auth_endpoint: str | None = None
    push_reconnect_delay: float = 5

    log_level: str = "INFO"
    printers_file: Path = DEFAULT_PRINTERS_FILE

    def api_url(self, path: str) -> str:
        """Build full API URL.

        Args:
            path: API path (e.g., '/printers').

        Returns:
            str: Full URL.
        """
        base = self.server_url.rstrip("/")
        prefix = "/" + self.api_prefix.strip("/") if self.api_prefix.strip("/") else ""
        return f"{base}{prefix}{path}"

    @property
    def push_channel(self) -> str:
        """Private channel this instance listens on."""
        return f"private-print_job.{self.instance_name}"

    def save(self, config_path: Path | None = None) -> None:
        """Save configuration to file.

        Args:
            config_path: Path to config file (default: ~/.config/printbridge/config.json).
        """
        path = config_path or DEFAULT_CONFIG_FILE
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            f.write(self.model_dump_json(indent=2))

        # Secure the config file (contains credentials)
        os.chmod(path, 0o600)

    @classmethod
    def load(cls, config_path: Path | None = None) -> "BridgeConfig":
        """Load configuration from file.

        Args:
            config_path: Path to config file.

        Returns:
            BridgeConfig: Loaded configuration or default.
        """
        path = config_path or DEFAULT_CONFIG_FILE

        if not path.exists():
            logger.debug(f"Config file {path} not found, using defaults")
            return cls()

        try:
            with open(path) as f:
                data = json.load(f)
            return cls(**data)
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            logger.warning(f"Error loading config from {path}: {e}. Using defaults.")
            return cls()


def get_config(config_path: Path | None = None) -> BridgeConfig:
    """Get the current configuration.

    Args:
        config_path: Optional custom config path.

    Returns:
        BridgeConfig: Current configuration.
    """
    return BridgeConfig.load(config_path)


class SharedConfig:
    """Config shared between concurrent loops.

    Readers take a snapshot. The only runtime mutation is the API token,
    which is replaced wholesale and never overwritten with a stale value.
    """

    def __init__(self, config: BridgeConfig):
        self._config = config
        self._lock = threading.Lock()

    def snapshot(self) -> BridgeConfig:
        """Return the current configuration value."""
        with self._lock:
            return self._config

    @property
    def token(self) -> str | None:
        with self._lock:
            return self._config.api_token

    def update_token(self, token: str, previous: str | None) -> bool:
        """Replace the API token unless another writer already replaced it.

        Args:
            token: Freshly obtained token.
            previous: Token the caller saw before refreshing.

        Returns:
            bool: True if the token was stored.
        """
        with self._lock:
            if self._config.api_token != previous:
                logger.debug("API token already refreshed by another task, keeping newer one")
                return False
            self._config = self._config.model_copy(update={"api_token": token})
            return True
