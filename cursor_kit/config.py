"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional
import json

from dotenv import load_dotenv

from .errors import ConfigurationError

TUNNEL_PROVIDERS = ('localtunnel', 'ngrok')

# Field name -> environment variable
ENV_VARS = {
    'host': 'CURSOR_KIT_HOST',
    'port': 'CURSOR_KIT_PORT',
    'max_port_retries': 'CURSOR_KIT_MAX_PORT_RETRIES',
    'confirm_timeout': 'CURSOR_KIT_CONFIRM_TIMEOUT',
    'connect_timeout': 'CURSOR_KIT_CONNECT_TIMEOUT',
    'confirm_request_timeout': 'CURSOR_KIT_CONFIRM_REQUEST_TIMEOUT',
    'tunnel_timeout': 'CURSOR_KIT_TUNNEL_TIMEOUT',
    'tunnel_provider': 'CURSOR_KIT_TUNNEL',
    'compression_level': 'CURSOR_KIT_COMPRESSION_LEVEL',
    'chunk_size': 'CURSOR_KIT_CHUNK_SIZE',
    'log_level': 'CURSOR_KIT_LOG_LEVEL',
}


def _coerce(name: str, kind: type, value: Any, source: str) -> Any:
    """Convert a raw env/JSON value to the field's type."""
    if kind is str:
        if not isinstance(value, str):
            raise ConfigurationError(f"{source}: {name} must be a string, got {value!r}")
        return value
    # JSON true/false would otherwise pass int()
    if isinstance(value, bool):
        raise ConfigurationError(f"{source}: {name} must be a number, got {value!r}")
    if kind is int and isinstance(value, float) and not value.is_integer():
        raise ConfigurationError(f"{source}: {name} must be an integer, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"{source}: {name} must be a number, got {value!r}"
        ) from None


@dataclass
class Config:
    """
    cursor-kit Configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (CURSOR_KIT_*)
    2. Config file (JSON)
    3. Default values
    """
    # Network
    host: str = '0.0.0.0'
    port: int = 8080
    max_port_retries: int = 10

    # Timeouts (seconds)
    confirm_timeout: float = 30.0
    connect_timeout: float = 30.0
    confirm_request_timeout: float = 5.0
    tunnel_timeout: float = 30.0

    # Internet mode
    tunnel_provider: str = 'localtunnel'

    # Archive
    compression_level: int = 6
    chunk_size: int = 64 * 1024  # 64KB

    # Logging
    log_level: str = 'INFO'

    @classmethod
    def _field_types(cls) -> Dict[str, type]:
        return {f.name: type(f.default) for f in fields(cls)}

    @classmethod
    def env_overrides(cls) -> Dict[str, Any]:
        """CURSOR_KIT_* variables that are set, converted to field types."""
        load_dotenv()

        types = cls._field_types()
        overrides = {}
        for name, var in ENV_VARS.items():
            raw = os.getenv(var)
            if raw is not None:
                overrides[name] = _coerce(name, types[name], raw, var)
        return overrides

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        return cls(**cls.env_overrides())

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        try:
            with open(path) as f:
                data = json.load(f)
        except ValueError as e:
            raise ConfigurationError(f"Config file {path} is not valid JSON: {e}") from None
        except OSError as e:
            raise ConfigurationError(
                f"Could not read config file {path}: {e.strerror or e}"
            ) from None

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a JSON object")

        types = cls._field_types()
        values = {}
        for name, value in data.items():
            if name not in types:
                # Unknown keys are ignored so newer files still load
                continue
            values[name] = _coerce(name, types[name], value, str(path))

        return cls(**values)

    def validate(self) -> 'Config':
        """
        Check value ranges.

        Raises:
            ConfigurationError: on the first invalid value
        """
        if not 1 <= self.port <= 65535:
            raise ConfigurationError(
                "Invalid port number. Please specify a port between 1 and 65535."
            )
        if self.max_port_retries < 1:
            raise ConfigurationError("max_port_retries must be at least 1")
        if not 0 <= self.compression_level <= 9:
            raise ConfigurationError("compression_level must be between 0 and 9")
        if self.chunk_size <= 0:
            raise ConfigurationError("chunk_size must be positive")
        for name in ('confirm_timeout', 'connect_timeout',
                     'confirm_request_timeout', 'tunnel_timeout'):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if self.tunnel_provider not in TUNNEL_PROVIDERS:
            raise ConfigurationError(
                f"Unknown tunnel provider: {self.tunnel_provider} "
                f"(expected one of: {', '.join(TUNNEL_PROVIDERS)})"
            )
        return self

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'port': self.port,
            'max_port_retries': self.max_port_retries,
            'confirm_timeout': self.confirm_timeout,
            'connect_timeout': self.connect_timeout,
            'confirm_request_timeout': self.confirm_request_timeout,
            'tunnel_timeout': self.tunnel_timeout,
            'tunnel_provider': self.tunnel_provider,
            'compression_level': self.compression_level,
            'chunk_size': self.chunk_size,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings whenever they are set,
    even to a value that matches the default.
    """
    # Start with defaults
    config = Config()

    # Load from file if provided
    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    # Override with environment variables
    for key, value in Config.env_overrides().items():
        setattr(config, key, value)

    return config.validate()


# Example config file template
EXAMPLE_CONFIG = """
{
  "host": "0.0.0.0",
  "port": 8080,
  "max_port_retries": 10,
  "confirm_timeout": 30.0,
  "connect_timeout": 30.0,
  "tunnel_provider": "localtunnel",
  "compression_level": 6,
  "log_level": "INFO"
}
"""
