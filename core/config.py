"""
Runtime configuration for the Video Feed API.

All tunables are read once from the environment (optionally seeded from a
`.env` file) into an immutable `Settings` object that is handed to the
components that need it. Nothing here is read lazily from `os.environ` by the
services themselves.
"""

import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///./videofeed.db"

    # "memory" or "redis"
    cache_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    feed_cache_ttl_seconds: int = 300

    pcloud_base_url: str = "https://api.pcloud.com"
    upload_timeout_seconds: float = 300.0
    link_timeout_seconds: float = 30.0
    stream_timeout_seconds: float = 600.0

    link_refresh_interval_minutes: int = 30
    link_refresh_window_minutes: int = 60

    api_key: str = ""
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def load_settings(env_file: str = ".env") -> Settings:
    """Build settings from the environment, loading `env_file` if present"""
    load_dotenv(env_file, override=False)

    origins = os.getenv("CORS_ORIGINS", "http://localhost:3000")

    return Settings(
        environment=os.getenv("ENVIRONMENT", "development"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_url=os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./videofeed.db"),
        cache_backend=os.getenv("CACHE_BACKEND", "memory").lower(),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        feed_cache_ttl_seconds=_env_int("FEED_CACHE_TTL_SECONDS", 300),
        pcloud_base_url=os.getenv("PCLOUD_BASE_URL", "https://api.pcloud.com"),
        upload_timeout_seconds=_env_float("UPLOAD_TIMEOUT_SECONDS", 300.0),
        link_timeout_seconds=_env_float("LINK_TIMEOUT_SECONDS", 30.0),
        stream_timeout_seconds=_env_float("STREAM_TIMEOUT_SECONDS", 600.0),
        link_refresh_interval_minutes=_env_int("LINK_REFRESH_INTERVAL_MINUTES", 30),
        link_refresh_window_minutes=_env_int("LINK_REFRESH_WINDOW_MINUTES", 60),
        api_key=os.getenv("API_KEY", ""),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
    )
