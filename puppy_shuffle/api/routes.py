"""HTTP route handlers for game sessions and service health checks."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Request, Response

from puppy_shuffle.api.errors import APIError, session_not_found
from puppy_shuffle.models.schemas import (
    IDENTIFIER_PATTERN,
    CreateSessionRequest,
    DogView,
    HealthResponse,
    LeaderboardRow,
    NicknameCheckResponse,
    NicknameRequest,
    PickRequest,
    ReadyResponse,
    RestartRequest,
    RoundView,
    SessionResponse,
    ShareResponse,
    StageRequest,
)
from puppy_shuffle.services.layout import find_dog, slot_positions
from puppy_shuffle.services.leaderboard import NicknameCheck
from puppy_shuffle.services.round import visible_target
from puppy_shuffle.services.session import (
    GameSession,
    SessionNotFoundError,
    SessionRegistry,
    ShareResult,
)

router = APIRouter(prefix="/v1")


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def get_session(
    session_id: str = Path(pattern=IDENTIFIER_PATTERN),
    registry: SessionRegistry = Depends(get_registry),
) -> GameSession:
    try:
        return registry.get(session_id)
    except SessionNotFoundError as exc:
        raise session_not_found(session_id) from exc


def share_base_url(request: Request) -> str | None:
    return request.app.state.public_base_url


def build_round_view(session: GameSession) -> RoundView:
    state = session.state
    positions = slot_positions(len(state.dogs))
    target_id = visible_target(state, session.reveal_target_on_end)
    target = find_dog(state.dogs, target_id)
    return RoundView(
        stage=state.stage,
        phase=state.phase.value,
        dog_count=len(state.dogs),
        dogs=[DogView(id=dog.id, slot=dog.slot, position=positions[dog.slot]) for dog in state.dogs],
        target_dog_id=target_id,
        target_position=positions[target.slot] if target else None,
        selected_dog_id=state.selected_dog_id,
        outcome=state.outcome.value if state.outcome else None,
        progress=state.progress,
        final_score=state.final_score,
    )


def build_session_response(session: GameSession) -> SessionResponse:
    return SessionResponse(
        session_id=session.session_id,
        client_id=session.client_id,
        nickname=session.nickname,
        pending_start=session.pending_start,
        is_shared_ranking=session.is_shared_ranking,
        last_score=session.last_score,
        notice=session.notice,
        round=build_round_view(session),
        leaderboard=[
            LeaderboardRow(rank=index, nickname=entry.nickname, score=entry.score, played_at=entry.played_at)
            for index, entry in enumerate(session.display_leaderboard, start=1)
        ],
    )


def build_nickname_response(check: NicknameCheck) -> NicknameCheckResponse:
    return NicknameCheckResponse(status=check.status.value, nickname=check.nickname, message=check.message)


def build_share_response(result: ShareResult) -> ShareResponse:
    return ShareResponse(url=result.url, message=result.message)


@router.post("/sessions", response_model=SessionResponse, status_code=201)
async def create_session(
    payload: CreateSessionRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionResponse:
    session = await registry.create(client_id=payload.client_id, shared_query=payload.query)
    return build_session_response(session)


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session_state(session: GameSession = Depends(get_session)) -> SessionResponse:
    return build_session_response(session)


@router.delete("/sessions/{session_id}", status_code=204)
async def close_session(
    session: GameSession = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
) -> Response:
    registry.close(session.session_id)
    return Response(status_code=204)


@router.post("/sessions/{session_id}/rounds", response_model=SessionResponse)
async def start_round(
    payload: StageRequest,
    session: GameSession = Depends(get_session),
) -> SessionResponse:
    session.start_round(payload.stage)
    return build_session_response(session)


@router.post("/sessions/{session_id}/picks", response_model=SessionResponse)
async def pick_dog(
    payload: PickRequest,
    session: GameSession = Depends(get_session),
) -> SessionResponse:
    await session.pick_dog(payload.dog_id)
    return build_session_response(session)


@router.post("/sessions/{session_id}/advance", response_model=SessionResponse)
async def advance_after_success(session: GameSession = Depends(get_session)) -> SessionResponse:
    session.advance_after_success()
    return build_session_response(session)


@router.post("/sessions/{session_id}/restart", response_model=SessionResponse)
async def restart(
    payload: RestartRequest,
    session: GameSession = Depends(get_session),
) -> SessionResponse:
    session.restart(payload.stage)
    return build_session_response(session)


@router.post("/sessions/{session_id}/nickname/check", response_model=NicknameCheckResponse)
async def check_nickname_availability(
    payload: NicknameRequest,
    session: GameSession = Depends(get_session),
) -> NicknameCheckResponse:
    return build_nickname_response(session.check_nickname_availability(payload.nickname))


@router.put("/sessions/{session_id}/nickname", response_model=SessionResponse)
async def confirm_nickname(
    payload: NicknameRequest,
    session: GameSession = Depends(get_session),
) -> SessionResponse:
    await session.confirm_nickname(payload.nickname)
    return build_session_response(session)


@router.post("/sessions/{session_id}/share", response_model=ShareResponse)
async def share_current_state(
    request: Request,
    session: GameSession = Depends(get_session),
) -> ShareResponse:
    return build_share_response(session.share_current_state(share_base_url(request)))


@router.post("/sessions/{session_id}/ranking/share", response_model=ShareResponse)
async def share_ranking(
    request: Request,
    session: GameSession = Depends(get_session),
) -> ShareResponse:
    return build_share_response(session.share_ranking(share_base_url(request)))


# These probes are intended for infrastructure and do not need to appear in API docs.
@router.get("/healthz", response_model=HealthResponse, include_in_schema=False)
async def healthz() -> HealthResponse:
    return HealthResponse(status="ok")


@router.get("/readyz", response_model=ReadyResponse, include_in_schema=False)
async def readyz(request: Request) -> ReadyResponse:
    registry = get_registry(request)
    try:
        # Readiness verifies the backing store, not just process liveness.
        is_ready = await registry.leaderboard.ping()
    except Exception as exc:
        raise APIError(
            code="STORE_UNAVAILABLE",
            message="Store readiness check failed",
            status_code=503,
        ) from exc

    if not is_ready:
        raise APIError(
            code="STORE_UNAVAILABLE",
            message="Store readiness check failed",
            status_code=503,
        )
    return ReadyResponse(status="ok")
