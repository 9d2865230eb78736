"""
Aikotoba settings, read once from AIKOTOBA_* environment variables.

    from aikotoba.config import get_config
    cfg = get_config()
    cfg.vault.grace_period      # timedelta(hours=24)
    cfg.db.connect_kwargs()     # psycopg2.connect(**...)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

STORE_BACKENDS = ("postgres", "memory")


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL location plus pool sizing."""

    host: str = ""  # empty = Unix socket
    port: int = 5432
    name: str = "aikotoba"
    user: str = "aikotoba"
    password: str = ""
    pool_min: int = 1
    pool_max: int = 10
    statement_timeout_ms: int = 5000

    def connect_kwargs(self) -> dict[str, str | int]:
        kwargs: dict[str, str | int] = {
            "dbname": self.name,
            "port": self.port,
            "application_name": "aikotoba",
        }
        if self.host:
            kwargs["host"] = self.host
        if self.user:
            kwargs["user"] = self.user
        if self.password:
            kwargs["password"] = self.password
        if self.statement_timeout_ms:
            # Bounds how long a challenger can wait on another's row lock.
            kwargs["options"] = f"-c statement_timeout={self.statement_timeout_ms}"
        return kwargs

    def describe(self) -> str:
        """Location without credentials, for logs and error messages."""
        return f"{self.user}@{self.host or 'local socket'}:{self.port}/{self.name}"


@dataclass(frozen=True)
class RedisConfig:
    """Where vault events are streamed."""

    url: str = "redis://127.0.0.1:6379/0"
    enabled: bool = True
    stream_maxlen: int = 10_000


@dataclass(frozen=True)
class VaultConfig:
    """Rules of the guessing game."""

    grace_hours: int = 24
    attempt_timezone: str = "Asia/Tokyo"
    attempt_threshold: int = 3
    notify_retries: int = 3
    store: str = "postgres"

    def __post_init__(self) -> None:
        if self.grace_hours <= 0:
            raise ValueError(f"grace_hours must be positive, got {self.grace_hours}")
        if self.attempt_threshold < 1:
            raise ValueError(f"attempt_threshold must be at least 1, got {self.attempt_threshold}")
        if self.notify_retries < 1:
            raise ValueError(f"notify_retries must be at least 1, got {self.notify_retries}")
        if self.store not in STORE_BACKENDS:
            raise ValueError(f"store must be one of {STORE_BACKENDS}, got {self.store!r}")
        try:
            ZoneInfo(self.attempt_timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown attempt_timezone {self.attempt_timezone!r}") from e

    @property
    def grace_period(self) -> timedelta:
        return timedelta(hours=self.grace_hours)


@dataclass(frozen=True)
class ApiConfig:
    host: str = "127.0.0.1"
    port: int = 9200

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"


@dataclass(frozen=True)
class Config:
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    vault: VaultConfig = field(default_factory=VaultConfig)
    api: ApiConfig = field(default_factory=ApiConfig)


_config: Config | None = None


def get_config() -> Config:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = _load_from_env()
    return _config


def reset_config() -> None:
    """Forget the loaded config so the next get_config() rereads the env (tests)."""
    global _config
    _config = None


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _load_from_env() -> Config:
    env = os.environ.get
    db = DatabaseConfig(
        host=env("AIKOTOBA_DB_HOST", ""),
        port=_env_int("AIKOTOBA_DB_PORT", 5432),
        name=env("AIKOTOBA_DB_NAME", "aikotoba"),
        user=env("AIKOTOBA_DB_USER", env("USER", "aikotoba")),
        password=env("AIKOTOBA_DB_PASSWORD", ""),
        pool_min=_env_int("AIKOTOBA_DB_POOL_MIN", 1),
        pool_max=_env_int("AIKOTOBA_DB_POOL_MAX", 10),
        statement_timeout_ms=_env_int("AIKOTOBA_DB_STATEMENT_TIMEOUT_MS", 5000),
    )
    redis_cfg = RedisConfig(
        url=env("REDIS_URL", "redis://127.0.0.1:6379/0"),
        enabled=_env_flag("EVENT_BUS_ENABLED", True),
        stream_maxlen=_env_int("AIKOTOBA_STREAM_MAXLEN", 10_000),
    )
    vault = VaultConfig(
        grace_hours=_env_int("AIKOTOBA_GRACE_HOURS", 24),
        attempt_timezone=env("AIKOTOBA_ATTEMPT_TIMEZONE", "Asia/Tokyo"),
        attempt_threshold=_env_int("AIKOTOBA_ATTEMPT_THRESHOLD", 3),
        notify_retries=_env_int("AIKOTOBA_NOTIFY_RETRIES", 3),
        store=env("AIKOTOBA_STORE", "postgres").strip().lower(),
    )
    api = ApiConfig(
        host=env("AIKOTOBA_API_HOST", "127.0.0.1"),
        port=_env_int("AIKOTOBA_API_PORT", 9200),
    )
    return Config(db=db, redis=redis_cfg, vault=vault, api=api)
