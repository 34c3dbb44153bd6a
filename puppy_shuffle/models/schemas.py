"""Pydantic request/response schemas for the public game API.

These models define input validation and response contracts used by routes
and exception handlers. Stage numbers are accepted as any integer and
clamped by the game layer rather than rejected here.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, StringConstraints

IDENTIFIER_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"
Identifier = Annotated[str, StringConstraints(pattern=IDENTIFIER_PATTERN)]

PhaseName = Literal["ready", "feeding", "shuffling", "guessing", "result", "ranking"]


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: ErrorBody


class CreateSessionRequest(BaseModel):
    client_id: Identifier | None = None
    query: str = Field(default="", max_length=16_384)


class StageRequest(BaseModel):
    stage: int | None = None


class RestartRequest(BaseModel):
    stage: int = 1


class PickRequest(BaseModel):
    dog_id: int


class NicknameRequest(BaseModel):
    nickname: str = Field(max_length=256)


class DogView(BaseModel):
    id: int
    slot: int
    position: float


class RoundView(BaseModel):
    stage: int
    phase: PhaseName
    dog_count: int
    dogs: list[DogView]
    target_dog_id: int | None = None
    target_position: float | None = None
    selected_dog_id: int | None = None
    outcome: Literal["success", "fail"] | None = None
    progress: float = Field(ge=0, le=100)
    final_score: int | None = None


class LeaderboardRow(BaseModel):
    rank: int
    nickname: str
    score: int
    played_at: int


class SessionResponse(BaseModel):
    session_id: str
    client_id: Identifier
    nickname: str
    pending_start: bool
    is_shared_ranking: bool
    last_score: int | None = None
    notice: str | None = None
    round: RoundView
    leaderboard: list[LeaderboardRow]


class NicknameCheckResponse(BaseModel):
    status: Literal["ok", "invalid", "duplicate"]
    nickname: str
    message: str


class ShareResponse(BaseModel):
    url: str | None = None
    message: str


class HealthResponse(BaseModel):
    status: Literal["ok"]


class ReadyResponse(BaseModel):
    status: Literal["ok"]
