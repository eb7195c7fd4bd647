"""
Configuration for the remote client, the local cache and the orchestrator.

Each config is a dataclass with a ``from_env()`` constructor. ``StoreSettings``
bundles them and can also be loaded from a YAML settings file:

```yaml
log_json: false
remote:
  host: localhost
  port: 5001
  protocol: http
  timeout_ms: 10000
  retry_attempts: 3
  retry_delay_ms: 2000
  debug_mode: false
  fallback_endpoints:
    - https://ipfs.infura.io:5001
    - http://localhost:5001
  pinning:
    enabled: true
    api_key: "..."
    secret_key: "..."
cache:
  db_path: ~/.resilient-ipfs/cache.db
  retention_days: 30
  message_limit: 50
```
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 5001
DEFAULT_PROTOCOL = "http"
DEFAULT_TIMEOUT_MS = 10000
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_MS = 2000
DEFAULT_FALLBACK_ENDPOINTS = (
    "https://ipfs.infura.io:5001",
    "http://localhost:5001",
)

DEFAULT_MESSAGE_LIMIT = 50
DEFAULT_CACHE_RETENTION_DAYS = 30

DEFAULT_SETTINGS_PATH = Path.home() / ".resilient-ipfs" / "settings.yaml"

PINATA_PIN_URL = "https://api.pinata.cloud/pinning/pinByHash"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(name, f"expected an integer, got {raw!r}") from None


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _coerce_int(key: str, value: Any) -> int:
    """Integer from a settings file value; numeric strings are accepted."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ConfigurationError(key, f"expected an integer, got {value!r}")


def _section(name: str, data: Any) -> dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(name, f"expected a mapping, got {type(data).__name__}")
    return dict(data)


@dataclass
class PinningConfig:
    """Credentials for the secondary pinning service (Pinata)."""

    enabled: bool = False
    api_key: str | None = None
    secret_key: str | None = None
    url: str = PINATA_PIN_URL

    @property
    def usable(self) -> bool:
        return self.enabled and bool(self.api_key) and bool(self.secret_key)

    @classmethod
    def from_env(cls) -> PinningConfig:
        api_key = os.environ.get("PINATA_API_KEY")
        return cls(
            enabled=_env_bool("PINATA_ENABLED", default=bool(api_key)),
            api_key=api_key,
            secret_key=os.environ.get("PINATA_SECRET_KEY"),
        )


@dataclass
class RemoteStoreConfig:
    """Configuration for the remote content store client.

    Attributes:
        host: Primary IPFS API host
        port: Primary IPFS API port
        protocol: http or https
        timeout_ms: Per-request timeout applied when a connection is created
        retry_attempts: Total attempts per add/get (not extra retries)
        retry_delay_ms: Base backoff; attempt N waits retry_delay_ms * N
        debug_mode: Log at DEBUG level
        fallback_endpoints: Endpoints tried after the primary, in order
        pinning: Secondary pinning service settings
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    protocol: str = DEFAULT_PROTOCOL
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    debug_mode: bool = False
    fallback_endpoints: list[str] = field(default_factory=lambda: list(DEFAULT_FALLBACK_ENDPOINTS))
    pinning: PinningConfig = field(default_factory=PinningConfig)

    def __post_init__(self) -> None:
        if self.protocol not in ("http", "https"):
            raise ConfigurationError("protocol", f"must be http or https, got {self.protocol!r}")
        if self.retry_attempts < 1:
            raise ConfigurationError("retry_attempts", "must be at least 1")
        if self.timeout_ms <= 0:
            raise ConfigurationError("timeout_ms", "must be positive")
        if self.retry_delay_ms < 0:
            raise ConfigurationError("retry_delay_ms", "must not be negative")

    @property
    def primary_endpoint(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}"

    def candidate_endpoints(self) -> list[str]:
        """Endpoints in priority order, primary first, without duplicates."""
        endpoints: list[str] = []
        for endpoint in [self.primary_endpoint, *self.fallback_endpoints]:
            endpoint = endpoint.rstrip("/")
            if endpoint not in endpoints:
                endpoints.append(endpoint)
        return endpoints

    def summary(self) -> dict[str, Any]:
        """Config fields safe to expose in status output (no credentials)."""
        return {
            "host": self.host,
            "port": self.port,
            "protocol": self.protocol,
            "timeout_ms": self.timeout_ms,
            "retry_attempts": self.retry_attempts,
            "pinning_enabled": self.pinning.enabled,
        }

    @classmethod
    def from_env(cls) -> RemoteStoreConfig:
        """Create config from environment variables."""
        fallback_raw = os.environ.get("IPFS_FALLBACK_ENDPOINTS")
        fallback = (
            [e.strip() for e in fallback_raw.split(",") if e.strip()]
            if fallback_raw is not None
            else list(DEFAULT_FALLBACK_ENDPOINTS)
        )
        return cls(
            host=os.environ.get("IPFS_HOST", DEFAULT_HOST),
            port=_env_int("IPFS_PORT", DEFAULT_PORT),
            protocol=os.environ.get("IPFS_PROTOCOL", DEFAULT_PROTOCOL),
            timeout_ms=_env_int("IPFS_TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
            retry_attempts=_env_int("IPFS_RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS),
            retry_delay_ms=_env_int("IPFS_RETRY_DELAY_MS", DEFAULT_RETRY_DELAY_MS),
            debug_mode=_env_bool("IPFS_DEBUG"),
            fallback_endpoints=fallback,
            pinning=PinningConfig.from_env(),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RemoteStoreConfig:
        data = _section("remote", data)
        for key in ("port", "timeout_ms", "retry_attempts", "retry_delay_ms"):
            if key in data:
                data[key] = _coerce_int(f"remote.{key}", data[key])
        if "fallback_endpoints" in data:
            endpoints = data["fallback_endpoints"] or []
            if not isinstance(endpoints, list) or not all(isinstance(e, str) for e in endpoints):
                raise ConfigurationError("remote.fallback_endpoints", "expected a list of URLs")
            data["fallback_endpoints"] = endpoints
        try:
            pinning = PinningConfig(**_section("remote.pinning", data.pop("pinning", None)))
        except TypeError as e:
            raise ConfigurationError("remote.pinning", str(e)) from e
        try:
            return cls(pinning=pinning, **data)
        except TypeError as e:
            raise ConfigurationError("remote", str(e)) from e


@dataclass
class CacheConfig:
    """Configuration for the local SQLite cache."""

    db_path: str | Path = ":memory:"
    retention_days: int = DEFAULT_CACHE_RETENTION_DAYS
    message_limit: int = DEFAULT_MESSAGE_LIMIT

    def __post_init__(self) -> None:
        if self.retention_days < 0:
            raise ConfigurationError("retention_days", "must not be negative")
        if self.message_limit < 0:
            raise ConfigurationError("message_limit", "must not be negative")

    @classmethod
    def from_env(cls) -> CacheConfig:
        return cls(
            db_path=os.environ.get("CONTENT_CACHE_PATH", ":memory:"),
            retention_days=_env_int("CONTENT_CACHE_RETENTION_DAYS", DEFAULT_CACHE_RETENTION_DAYS),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CacheConfig:
        data = _section("cache", data)
        for key in ("retention_days", "message_limit"):
            if key in data:
                data[key] = _coerce_int(f"cache.{key}", data[key])
        if isinstance(data.get("db_path"), str) and data["db_path"] != ":memory:":
            data["db_path"] = Path(data["db_path"]).expanduser()
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError("cache", str(e)) from e


@dataclass
class StoreSettings:
    """Complete settings for an orchestrated store."""

    remote: RemoteStoreConfig = field(default_factory=RemoteStoreConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    log_json: bool = False  # JSON lines on stdout instead of the host's handlers

    @classmethod
    def from_env(cls) -> StoreSettings:
        return cls(
            remote=RemoteStoreConfig.from_env(),
            cache=CacheConfig.from_env(),
            log_json=_env_bool("IPFS_LOG_JSON"),
        )

    @classmethod
    def from_file(cls, path: Path | None = None) -> StoreSettings:
        """Load settings from a YAML file; missing file means defaults."""
        config_path = Path(path) if path else DEFAULT_SETTINGS_PATH
        if not config_path.exists():
            return cls()

        try:
            data = yaml.safe_load(config_path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(str(config_path), f"invalid YAML: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(str(config_path), "top level must be a mapping")

        log_json = data.get("log_json", False)
        if not isinstance(log_json, bool):
            raise ConfigurationError("log_json", f"expected true or false, got {log_json!r}")

        return cls(
            remote=RemoteStoreConfig.from_dict(data.get("remote")),
            cache=CacheConfig.from_dict(data.get("cache")),
            log_json=log_json,
        )
