"""Configuration classes for recordsync.

All settings are plain dataclasses. ``EngineConfig.from_dict`` reads the
JSON document written by the CLI's ``configure`` command.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_CACHE_SIZE = 50 * 1024 * 1024  # 50 MiB
DEFAULT_TTL = 300.0  # seconds
DEFAULT_CLEANUP_INTERVAL = 60.0  # seconds
DEFAULT_POLL_INTERVAL = 5.0  # seconds


@dataclass
class RemoteConfig:
    """Configuration for connecting to the remote record store.

    Attributes:
        server_url: Base URL of the server (e.g., "https://records.example.com").
        token: Bearer token; an empty token means "not authenticated".
        timeout: Request/connection timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str = ""
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def ws_url(self) -> str:
        """Get the WebSocket base URL for change streams."""
        url = self.server_url
        if url.startswith("https://"):
            url = "wss://" + url[8:]
        elif url.startswith("http://"):
            url = "ws://" + url[7:]
        return url

    @property
    def health_url(self) -> str:
        """Get the health endpoint used as connectivity probe."""
        return f"{self.server_url}/health"


@dataclass
class RetryPolicy:
    """Backoff settings for a single remote call.

    Attributes:
        max_retries: Retries after the first attempt.
        initial_backoff: Delay before the first retry, in seconds.
        max_backoff: Upper bound for any delay, in seconds.
        backoff_multiplier: Growth factor between consecutive delays.
    """

    max_retries: int = 3
    initial_backoff: float = 0.5
    max_backoff: float = 30.0
    backoff_multiplier: float = 2.0


@dataclass
class CacheConfig:
    """In-memory cache sizing."""

    max_cache_size: int = DEFAULT_CACHE_SIZE
    default_ttl: float = DEFAULT_TTL
    cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL


@dataclass
class EngineConfig:
    """Top-level configuration for an OfflineEngine.

    Attributes:
        data_dir: Directory holding the local SQLite database.
        remote: Remote store connection settings (None = offline only).
        retry: Backoff policy for remote calls.
        cache: Cache sizing.
        poll_interval: Seconds between connectivity probes.
        quota_bytes: Optional cap on local database size.
    """

    data_dir: Path
    remote: RemoteConfig | None = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    cache: CacheConfig = field(default_factory=CacheConfig)
    poll_interval: float = DEFAULT_POLL_INTERVAL
    quota_bytes: int | None = None

    @property
    def db_path(self) -> Path:
        """Path of the local SQLite database."""
        return self.data_dir / "offline.db"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        """Build a config from a JSON-style dictionary.

        Unknown keys are ignored so older config files keep loading.
        """
        remote = None
        if data.get("server_url"):
            remote = RemoteConfig(
                server_url=data["server_url"],
                token=data.get("token", ""),
                timeout=float(data.get("timeout", 30.0)),
                verify_ssl=bool(data.get("verify_ssl", True)),
            )

        retry_data = data.get("retry", {})
        cache_data = data.get("cache", {})
        quota = data.get("quota_bytes")

        return cls(
            data_dir=Path(data.get("data_dir", Path.home() / ".recordsync")).expanduser(),
            remote=remote,
            retry=RetryPolicy(**retry_data),
            cache=CacheConfig(**cache_data),
            poll_interval=float(data.get("poll_interval", DEFAULT_POLL_INTERVAL)),
            quota_bytes=int(quota) if quota is not None else None,
        )
