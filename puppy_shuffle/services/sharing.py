"""Share links: the current stage or a ranking snapshot in a URL query."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Iterable
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit

from puppy_shuffle.config import SHARED_RANKING_LIMIT
from puppy_shuffle.services.leaderboard import LeaderboardEntry, load_entries
from puppy_shuffle.services.round import clamp_stage


@dataclass(slots=True)
class SharedState:
    stage: int | None = None
    ranking: list[LeaderboardEntry] = field(default_factory=list)


def _with_query(base_url: str, params: dict[str, str]) -> str:
    scheme, netloc, path, _, _ = urlsplit(base_url)
    return urlunsplit((scheme, netloc, path, urlencode(params), ""))


def build_stage_url(base_url: str, stage: int) -> str:
    return _with_query(base_url, {"stage": str(clamp_stage(stage))})


def build_ranking_url(base_url: str, entries: Iterable[LeaderboardEntry]) -> str:
    payload = [entry.to_dict() for entry in list(entries)[:SHARED_RANKING_LIMIT]]
    return _with_query(
        base_url,
        {"view": "ranking", "ranking": json.dumps(payload, ensure_ascii=False, separators=(",", ":"))},
    )


def parse_shared_query(query: str) -> SharedState:
    """Read ``stage=`` or ``view=ranking&ranking=`` from a query string.

    Accepts a bare query (with or without the leading ``?``) or a full URL.
    Anything unparseable is treated as "nothing shared".
    """
    if "://" in query:
        query = urlsplit(query).query
    params = parse_qs(query.lstrip("?"))

    shared = SharedState()
    stage_values = params.get("stage")
    if stage_values:
        shared.stage = clamp_stage(stage_values[0])

    if params.get("view", [""])[0] == "ranking":
        shared.ranking = load_entries(params.get("ranking", [""])[0])
    return shared
