from __future__ import annotations

import os
import logging
_log = logging.getLogger(__name__)


DEFAULT_PROFILE_API_BASE = "http://127.0.0.1:5000"


def env_str(name: str, default: str = "") -> str:
    return str(os.getenv(name, default) or default)


def env_int(name: str, default: int) -> int:
    try:
        return int(env_str(name, str(default)) or default)
    except Exception:
        _log.debug("numeric conversion failed", exc_info=True)
        return int(default)


def env_positive_int(name: str, default: int) -> int:
    value = env_int(name, default)
    return value if value > 0 else int(default)


def profile_api_base() -> str:
    for name in ("MONGODB_PROFILE_API_BASE", "PROFILE_API_BASE_URL"):
        value = env_str(name, "").strip()
        if value:
            return value.rstrip("/")
    return DEFAULT_PROFILE_API_BASE


def profile_sync_timeout_ms() -> int:
    return env_positive_int("PROFILE_SYNC_TIMEOUT_MS", 5000)


def profile_sync_timeout_sec() -> float:
    return profile_sync_timeout_ms() / 1000.0


def review_idempotent_ttl_sec() -> int:
    return env_positive_int("REVIEW_IDEMPOTENT_TTL_SEC", 24 * 60 * 60)


def review_idempotent_max_entries() -> int:
    return max(1, env_int("REVIEW_IDEMPOTENT_MAX_ENTRIES", 4000))


def review_idempotent_keep_entries() -> int:
    return max(1, min(review_idempotent_max_entries(), env_int("REVIEW_IDEMPOTENT_KEEP_ENTRIES", 3000)))


def log_format() -> str:
    return env_str("LOG_FORMAT", "text").strip().lower()


def log_level() -> str:
    return env_str("LOG_LEVEL", "INFO").strip().upper()
