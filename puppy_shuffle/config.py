"""Game constants and environment-driven settings."""

from __future__ import annotations

import os

MAX_STAGE = 100
FEED_DELAY_MS = 1300
PROGRESS_SAMPLE_MS = 40

LEADERBOARD_LIMIT = 100
SHARED_RANKING_LIMIT = 20
NICKNAME_MIN_LENGTH = 2
NICKNAME_MAX_LENGTH = 12

DEFAULT_STORE_BACKEND = "redis"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_MAX_SESSIONS = 1000

_TRUTHY = {"1", "true", "yes", "on"}


def get_store_backend() -> str:
    return os.getenv("STORE_BACKEND", DEFAULT_STORE_BACKEND).strip().lower()


def get_public_base_url() -> str | None:
    return os.getenv("PUBLIC_BASE_URL") or None


def get_reveal_target_on_end() -> bool:
    return os.getenv("REVEAL_TARGET_ON_END", "false").strip().lower() in _TRUTHY


def get_max_sessions() -> int:
    try:
        return max(1, int(os.getenv("MAX_SESSIONS", DEFAULT_MAX_SESSIONS)))
    except ValueError:
        return DEFAULT_MAX_SESSIONS


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()
