"""Client configuration."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable

import yaml

from .errors import ConfigurationError

# Config file search paths (in order of precedence, last wins)
CONFIG_SEARCH_PATHS = [
    Path.home() / ".rs-api" / "client.yaml",  # User-level defaults
    Path(".rs-api.yaml"),  # Project-level overrides
]

# RightLink10 writes the proxy port and shared secret here
if sys.platform == "win32":
    DEFAULT_SECRET_FILE = r"C:\ProgramData\RightScale\RightLink\secret"
else:
    DEFAULT_SECRET_FILE = "/var/run/rll-secret"

DEFAULT_API_VERSION = "1.5"
DEFAULT_TIMEOUT = 300.0


def _env_number(name: str, default: Any, convert: Callable[[Any], Any]) -> Any:
    value = os.environ.get(name, default)
    try:
        return convert(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None


@dataclass
class ClientConfig:
    """
    Configuration for the rs-api client.

    Precedence (lowest to highest):
    1. Defaults
    2. ~/.rs-api/client.yaml
    3. .rs-api.yaml (project root)
    4. Explicit config file
    5. Environment variables (RS_api_hostname, RS_api_key, RS_API_*)
    6. Command line flags (applied with ``with_overrides``)
    """
    # API endpoint (direct mode only)
    host: str | None = field(
        default_factory=lambda: os.environ.get("RS_api_hostname")
    )

    # API key (direct mode only)
    key: str | None = field(
        default_factory=lambda: os.environ.get("RS_api_key")
    )

    # RightLink10 proxy host:port and secret. Never read from the environment;
    # when unset they come from the secret file.
    proxy_host: str | None = None
    proxy_secret: str | None = None

    # Route requests through the RightLink10 proxy
    rl10: bool = False

    # Account ID sent in X-Account
    account: str | None = field(
        default_factory=lambda: os.environ.get("RS_API_ACCOUNT")
    )

    # "1.5" or "1.6"
    api_version: str = field(
        default_factory=lambda: os.environ.get("RS_API_VERSION", DEFAULT_API_VERSION)
    )

    # Timeout for one HTTP attempt (seconds). httpx applies it to each phase
    # (connect, write, each read, pool) rather than to the attempt as a whole.
    timeout: float = field(
        default_factory=lambda: _env_number("RS_API_TIMEOUT", DEFAULT_TIMEOUT, float)
    )

    secret_file: str = field(
        default_factory=lambda: os.environ.get("RS_RLL_SECRET_FILE", DEFAULT_SECRET_FILE)
    )

    debug: bool = False

    # Accept broken TLS certificates (test servers only)
    insecure: bool = False

    # Retry configuration for transient failures
    retry_max_attempts: int = field(
        default_factory=lambda: _env_number("RS_API_RETRY_MAX_ATTEMPTS", 3, int)
    )
    retry_backoff_factor: float = field(
        default_factory=lambda: _env_number("RS_API_RETRY_BACKOFF_FACTOR", 0.0, float)
    )

    def with_overrides(self, **overrides: Any) -> ClientConfig:
        """Return a copy with every override that is not None applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientConfig:
        """Create config from dictionary; environment variables win over file values."""
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config must be a mapping, got {type(data).__name__}")
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {', '.join(sorted(unknown))}")

        env = cls()
        values = dict(data)
        for name, env_var in (
            ("host", "RS_api_hostname"),
            ("key", "RS_api_key"),
            ("account", "RS_API_ACCOUNT"),
            ("api_version", "RS_API_VERSION"),
            ("timeout", "RS_API_TIMEOUT"),
            ("secret_file", "RS_RLL_SECRET_FILE"),
            ("retry_max_attempts", "RS_API_RETRY_MAX_ATTEMPTS"),
            ("retry_backoff_factor", "RS_API_RETRY_BACKOFF_FACTOR"),
        ):
            if env_var in os.environ:
                values[name] = getattr(env, name)

        config = cls(**values)
        for name, convert in (("timeout", float), ("retry_max_attempts", int), ("retry_backoff_factor", float)):
            value = getattr(config, name)
            try:
                setattr(config, name, convert(value))
            except (TypeError, ValueError):
                raise ConfigurationError(f"{name} must be a number, got {value!r}") from None
        return config

    @classmethod
    def from_yaml(cls, path: str | Path) -> ClientConfig:
        """Load config from YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def load(cls, config_file: str | Path | None = None) -> ClientConfig:
        """
        Load config with auto-discovery.

        Search order (last wins):
        1. ~/.rs-api/client.yaml
        2. .rs-api.yaml
        3. Explicit config_file argument
        4. Environment variables always override file values
        """
        merged: dict[str, Any] = {}

        paths = [p for p in CONFIG_SEARCH_PATHS if p.exists()]
        if config_file:
            paths.append(Path(config_file))

        for path in paths:
            try:
                with open(path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigurationError(f"Config file {path} must contain a mapping")
            merged.update(data)

        return cls.from_dict(merged)
