"""
Configuration schema for the power control service.

Broker credentials and connection parameters, plus the service's own tuning
knobs. Loaded from YAML (a superset of JSON, so JSON-shaped files written by
other tools load unchanged) and validated at construction.

Example YAML:
    broker:
      username: "panel"
      password_blob: "base64..."
      server: "broker.local"
      port: 1883
      subscribe_filter: "power/#"
    message_log_capacity: 1000
    connect_timeout: 20.0
    log_level: "INFO"
"""

import logging
import os
from dataclasses import dataclass, field, asdict, replace
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import yaml

from powerctl_mqtt.errors import ConfigError
from powerctl_mqtt.topics import DEFAULT_SUBSCRIBE_FILTER

logger = logging.getLogger(__name__)

APP_DIR_NAME = "powerctl"
WINDOWS_APP_DIR_NAME = "PowerControl"
CONFIG_FILE_NAME = "config.yaml"

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class PasswordCipher(Protocol):
    """Opaque secret protection: encrypt(secret) -> blob, decrypt(blob) -> secret."""

    def encrypt(self, secret: str) -> str: ...

    def decrypt(self, blob: str) -> str: ...


@dataclass(frozen=True)
class BrokerSettings:
    """
    Broker credentials and connection parameters.

    The password is only ever stored encrypted (password_blob).
    """

    username: str = ""
    password_blob: str = ""
    server: str = ""
    port: int = 1883
    subscribe_filter: str = DEFAULT_SUBSCRIBE_FILTER

    def __post_init__(self):
        """Validate broker settings."""
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise ConfigError(f"MQTT port must be an integer, got {self.port!r}")

        if not 1 <= self.port <= 65535:
            raise ConfigError(
                f"MQTT port must be in [1, 65535], got {self.port}"
            )

        if "/" in self.server:
            raise ConfigError(
                f"server must be a hostname or address, got {self.server!r}"
            )

    @classmethod
    def create(
        cls,
        username: str,
        password: str,
        server: str,
        port: int,
        subscribe_filter: str,
        cipher: PasswordCipher,
    ) -> 'BrokerSettings':
        """Build settings from user input, encrypting the password."""
        return cls(
            username=username.strip(),
            password_blob=cipher.encrypt(password),
            server=server.strip(),
            port=port,
            subscribe_filter=subscribe_filter.strip() or DEFAULT_SUBSCRIBE_FILTER,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BrokerSettings':
        """
        Deserialize from dict.

        Accepts the snake_case keys written by to_dict() and the camelCase
        keys of the desktop application's JSON file.
        """
        def pick(*keys, default=None):
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        try:
            port = int(pick("port", "serverPort", default=1883))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid MQTT port: {e}") from e

        return cls(
            username=str(pick("username", default="")),
            password_blob=str(pick("password_blob", "passwordHash", default="")),
            server=str(pick("server", "mqttServer", default="")),
            port=port,
            subscribe_filter=str(pick("subscribe_filter", "subscribeString", default="")) or DEFAULT_SUBSCRIBE_FILTER,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_public_dict(self) -> Dict[str, Any]:
        """Everything except the password."""
        return {
            "username": self.username,
            "server": self.server,
            "port": self.port,
            "subscribe_filter": self.subscribe_filter,
        }

    def is_empty(self) -> bool:
        """True until both server and username are configured."""
        return not self.server or not self.username

    def get_password(self, cipher: PasswordCipher) -> str:
        """
        Decrypt the stored password.

        Returns:
            Plaintext password ("" when none is stored)

        Raises:
            DecryptError: Blob cannot be recovered on this machine
        """
        if not self.password_blob:
            return ""
        return cipher.decrypt(self.password_blob)


@dataclass(frozen=True)
class AppConfig:
    """
    Main configuration for the power control service.

    Immutable after construction (frozen dataclass).
    """

    broker: BrokerSettings = field(default_factory=BrokerSettings)
    message_log_capacity: int = 1000
    connect_timeout: float = 20.0
    subscribe_timeout: float = 10.0
    publish_timeout: float = 10.0
    client_id_prefix: str = "powerctl"
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate service configuration."""
        if self.message_log_capacity <= 0:
            raise ConfigError(
                f"message_log_capacity must be > 0, got {self.message_log_capacity}"
            )

        for name in ("connect_timeout", "subscribe_timeout", "publish_timeout"):
            value = getattr(self, name)
            if not 0 < value <= 300:
                raise ConfigError(f"{name} must be in (0, 300], got {value}")

        if not self.client_id_prefix:
            raise ConfigError("client_id_prefix cannot be empty")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ConfigError(
                f"Invalid log_level: {self.log_level}. "
                f"Must be one of {sorted(VALID_LOG_LEVELS)}"
            )

    def with_broker(self, broker: BrokerSettings) -> 'AppConfig':
        return replace(self, broker=broker)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AppConfig':
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration must be a mapping, got {type(data).__name__}")

        broker_data = data.get("broker")
        if broker_data is None:
            # Flat desktop-application layout: broker keys at top level
            broker_data = {k: v for k, v in data.items() if k in _FLAT_BROKER_KEYS}

        try:
            return cls(
                broker=BrokerSettings.from_dict(broker_data),
                message_log_capacity=int(data.get("message_log_capacity", 1000)),
                connect_timeout=float(data.get("connect_timeout", 20.0)),
                subscribe_timeout=float(data.get("subscribe_timeout", 10.0)),
                publish_timeout=float(data.get("publish_timeout", 10.0)),
                client_id_prefix=str(data.get("client_id_prefix", "powerctl")),
                log_level=str(data.get("log_level", "INFO")),
            )
        except (TypeError, ValueError) as e:
            if isinstance(e, ConfigError):
                raise
            raise ConfigError(f"Invalid configuration value: {e}") from e

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> 'AppConfig':
        """
        Load configuration from a YAML (or JSON) file.

        Raises:
            ConfigError: Unreadable or unparseable file, or invalid values
        """
        try:
            with open(yaml_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {yaml_path}: {e}") from e
        except UnicodeDecodeError as e:
            raise ConfigError(f"{yaml_path} is not UTF-8 text: {e}") from e
        except OSError as e:
            raise ConfigError(f"Cannot read {yaml_path}: {e}") from e

        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["broker"] = self.broker.to_dict()
        return data


_FLAT_BROKER_KEYS = {
    "username", "passwordHash", "mqttServer", "serverPort", "subscribeString",
}


def default_config_path() -> Path:
    """
    OS-specific configuration file location.

    %APPDATA%/PowerControl/config.yaml on Windows,
    ~/.config/powerctl/config.yaml elsewhere.
    """
    appdata = os.environ.get("APPDATA")
    if appdata:
        return Path(appdata) / WINDOWS_APP_DIR_NAME / CONFIG_FILE_NAME
    return Path.home() / ".config" / APP_DIR_NAME / CONFIG_FILE_NAME


class SettingsStore:
    """
    Loads and persists AppConfig.

    Example:
        store = SettingsStore()
        config = store.load()          # defaults if the file is missing
        store.save(config.with_broker(new_settings))
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else default_config_path()

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> AppConfig:
        if not self.path.exists():
            return AppConfig()
        return AppConfig.from_yaml(self.path)

    def load_or_default(self) -> AppConfig:
        """Like load(), but a broken file is logged and replaced by defaults."""
        try:
            return self.load()
        except ConfigError as e:
            logger.error(f"Error loading config from {self.path}: {e}")
            return AppConfig()

    def save(self, config: AppConfig) -> None:
        """Write the file readable by the current user only (0600)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            yaml.safe_dump(config.to_dict(), f, sort_keys=False)

        os.chmod(self.path, 0o600)
