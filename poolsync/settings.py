from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("POOLSYNC_DB_PATH", "poolsync.db")
    default_poll_interval_s: int = _env_int("POOLSYNC_DEFAULT_POLL_INTERVAL_S", 30)
    min_poll_interval_s: int = _env_int("POOLSYNC_MIN_POLL_INTERVAL_S", 10)
    # Delay between noticing a stop and deleting the pool, so an in-flight pass can finish.
    cleanup_grace_s: float = _env_float("POOLSYNC_CLEANUP_GRACE_S", 2.0)

    # Kubernetes API
    source_timeout_s: float = _env_float("POOLSYNC_SOURCE_TIMEOUT_S", 10.0)

    # BIG-IP iControl REST
    bigip_url: str = os.getenv("POOLSYNC_BIGIP_URL", "https://localhost")
    bigip_user: str = os.getenv("POOLSYNC_BIGIP_USER", "admin")
    bigip_password: str | None = os.getenv("POOLSYNC_BIGIP_PASSWORD")
    bigip_verify_tls: bool = _env_bool("POOLSYNC_BIGIP_VERIFY_TLS", False)
    store_timeout_s: float = _env_float("POOLSYNC_STORE_TIMEOUT_S", 10.0)


settings = Settings()
