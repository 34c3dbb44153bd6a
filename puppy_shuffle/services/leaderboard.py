"""Leaderboard sanitization, best-score merging and nickname rules.

The list-level functions are pure: they take raw or sanitized entries and
return new lists. ``LeaderboardService`` adds persistence through a blob
store and never lets a storage failure escape.
"""

from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from puppy_shuffle.config import (
    LEADERBOARD_LIMIT,
    MAX_STAGE,
    NICKNAME_MAX_LENGTH,
    NICKNAME_MIN_LENGTH,
)
from puppy_shuffle.storage.base import BlobStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LeaderboardEntry:
    nickname: str
    score: int
    played_at: int

    def to_dict(self) -> dict[str, Any]:
        return {"nickname": self.nickname, "score": self.score, "playedAt": self.played_at}


class NicknameStatus(str, Enum):
    OK = "ok"
    INVALID = "invalid"
    DUPLICATE = "duplicate"


@dataclass(slots=True)
class NicknameCheck:
    status: NicknameStatus
    nickname: str
    message: str


def now_ms() -> int:
    return int(time.time() * 1000)


def nickname_key(client_id: str) -> str:
    return f"puppy:{client_id}:nickname"


def leaderboard_key(client_id: str) -> str:
    return f"puppy:{client_id}:leaderboard"


def normalize_nickname(value: str) -> str:
    return " ".join(value.split())


def is_valid_nickname(value: str) -> bool:
    return NICKNAME_MIN_LENGTH <= len(normalize_nickname(value)) <= NICKNAME_MAX_LENGTH


def _finite_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def clamp_score(value: Any) -> int:
    number = _finite_number(value)
    if number is None:
        return 0
    return max(0, min(MAX_STAGE, math.floor(number)))


def sanitize(raw: Any, now: int | None = None) -> list[LeaderboardEntry]:
    """Turn untrusted leaderboard data into a ranked, de-duplicated list.

    Never raises: anything that is not a list yields ``[]`` and malformed
    items are dropped one by one. Entries without a usable ``playedAt`` get
    ``now - index * 1000`` so older rows keep their relative order.
    """
    if not isinstance(raw, list):
        return []

    now = now_ms() if now is None else now
    entries: list[LeaderboardEntry] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            continue

        raw_nickname = item.get("nickname")
        nickname = normalize_nickname(str(raw_nickname)) if raw_nickname else ""
        if not nickname:
            continue

        played_at = _finite_number(item.get("playedAt"))
        entries.append(
            LeaderboardEntry(
                nickname=nickname,
                score=clamp_score(item.get("score")),
                played_at=int(played_at) if played_at is not None else now - index * 1000,
            )
        )

    entries.sort(key=lambda entry: (-entry.score, entry.played_at))

    seen: set[str] = set()
    ranked: list[LeaderboardEntry] = []
    for entry in entries:
        lowered = entry.nickname.lower()
        if lowered in seen:
            continue
        seen.add(lowered)
        ranked.append(entry)
    return ranked[:LEADERBOARD_LIMIT]


def merge_score(
    current: Iterable[LeaderboardEntry],
    nickname: str,
    score: int,
    now: int | None = None,
) -> list[LeaderboardEntry]:
    now = now_ms() if now is None else now
    normalized = normalize_nickname(nickname)
    lowered = normalized.lower()
    score = clamp_score(score)

    rows = [entry.to_dict() for entry in current]
    existing = next((row for row in rows if row["nickname"].lower() == lowered), None)
    if existing is not None:
        if score > existing["score"]:
            existing["score"] = score
            existing["playedAt"] = now
    else:
        rows.append({"nickname": normalized, "score": score, "playedAt": now})

    return sanitize(rows, now=now)


def check_nickname(
    candidate: str,
    known: Iterable[LeaderboardEntry],
    confirmed_nickname: str = "",
) -> NicknameCheck:
    normalized = normalize_nickname(candidate)
    if not is_valid_nickname(normalized):
        return NicknameCheck(
            status=NicknameStatus.INVALID,
            nickname=normalized,
            message=f"Nickname must be {NICKNAME_MIN_LENGTH}-{NICKNAME_MAX_LENGTH} characters.",
        )

    lowered = normalized.lower()
    taken = {entry.nickname.lower() for entry in known}
    if lowered in taken and lowered != confirmed_nickname.lower():
        return NicknameCheck(
            status=NicknameStatus.DUPLICATE,
            nickname=normalized,
            message="Nickname is already taken.",
        )

    return NicknameCheck(status=NicknameStatus.OK, nickname=normalized, message="Nickname is available.")


def dump_entries(entries: Iterable[LeaderboardEntry]) -> str:
    return json.dumps([entry.to_dict() for entry in entries], ensure_ascii=False)


def load_entries(raw: str | None) -> list[LeaderboardEntry]:
    if not raw:
        return []
    try:
        return sanitize(json.loads(raw))
    except (ValueError, RecursionError):
        return []


class LeaderboardService:
    def __init__(self, store: BlobStore):
        self.store = store

    async def load_leaderboard(self, client_id: str) -> list[LeaderboardEntry]:
        return load_entries(await self.store.load(leaderboard_key(client_id)))

    async def save_leaderboard(self, client_id: str, entries: Iterable[LeaderboardEntry]) -> bool:
        return await self.store.save(leaderboard_key(client_id), dump_entries(entries))

    async def load_nickname(self, client_id: str) -> str:
        raw = await self.store.load(nickname_key(client_id))
        return normalize_nickname(raw or "")

    async def save_nickname(self, client_id: str, nickname: str) -> bool:
        return await self.store.save(nickname_key(client_id), nickname)

    async def record_score(
        self,
        client_id: str,
        current: Iterable[LeaderboardEntry],
        nickname: str,
        score: int,
    ) -> tuple[list[LeaderboardEntry], bool]:
        updated = merge_score(current, nickname, score)
        saved = await self.save_leaderboard(client_id, updated)
        if not saved:
            logger.warning("Leaderboard for client %s kept in memory only", client_id)
        return updated, saved

    async def ping(self) -> bool:
        return await self.store.ping()
