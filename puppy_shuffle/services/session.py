"""Per-player game sessions: round machine, nickname and leaderboard wiring."""

from __future__ import annotations

import logging
import random
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from puppy_shuffle.config import DEFAULT_MAX_SESSIONS
from puppy_shuffle.services.leaderboard import (
    LeaderboardEntry,
    LeaderboardService,
    NicknameCheck,
    NicknameStatus,
    check_nickname,
    clamp_score,
)
from puppy_shuffle.services.round import Phase, RoundMachine, RoundState
from puppy_shuffle.services.sharing import build_ranking_url, build_stage_url, parse_shared_query
from puppy_shuffle.services.timing import AsyncioScheduler, Scheduler, TimingController

logger = logging.getLogger(__name__)

NICKNAME_REQUIRED = "Set a nickname before starting."
SCORE_NOT_SAVED = "Your score could not be saved; it is kept for this session only."
NICKNAME_NOT_SAVED = "Your nickname could not be saved; it is kept for this session only."
SHARING_UNAVAILABLE = "Sharing is not available."
LINK_READY = "Share link is ready."


class SessionNotFoundError(Exception):
    """Raised when a session id is unknown or already closed."""


@dataclass(slots=True)
class ShareResult:
    url: str | None
    message: str


class GameSession:
    def __init__(
        self,
        session_id: str,
        client_id: str,
        leaderboard: LeaderboardService,
        machine: RoundMachine,
        reveal_target_on_end: bool = False,
    ):
        self.session_id = session_id
        self.client_id = client_id
        self.leaderboard = leaderboard
        self.machine = machine
        self.reveal_target_on_end = reveal_target_on_end

        self.nickname = ""
        self.local_leaderboard: list[LeaderboardEntry] = []
        self.display_leaderboard: list[LeaderboardEntry] = []
        self.is_shared_ranking = False
        self.last_score: int | None = None
        self.pending_start = False
        self.notice: str | None = None

    @property
    def state(self) -> RoundState:
        return self.machine.state

    async def bootstrap(self, shared_query: str = "") -> None:
        """Load stored nickname and board, then apply any shared link."""
        self.local_leaderboard = await self.leaderboard.load_leaderboard(self.client_id)
        self.nickname = await self.leaderboard.load_nickname(self.client_id)

        shared = parse_shared_query(shared_query)
        if shared.ranking:
            self.display_leaderboard = shared.ranking
            self.is_shared_ranking = True
            self.machine.show_ranking()
            return

        self.display_leaderboard = list(self.local_leaderboard)
        if shared.stage is not None:
            self.machine.restart(shared.stage)

    def start_round(self, stage: int | None = None) -> RoundState:
        self.notice = None
        if not self.nickname:
            self.pending_start = True
            self.notice = NICKNAME_REQUIRED
            return self.state

        if stage is None and self.state.phase is Phase.RANKING:
            stage = 1
        self.pending_start = False
        self.last_score = None
        self.is_shared_ranking = False
        return self.machine.start_round(stage)

    async def pick_dog(self, dog_id: int) -> RoundState:
        self.notice = None
        was_guessing = self.state.phase is Phase.GUESSING
        state = self.machine.pick_dog(dog_id)
        if was_guessing and state.is_terminal and state.final_score is not None:
            await self._finish_game(state.final_score)
        return state

    async def _finish_game(self, score: int) -> None:
        final_score = clamp_score(score)
        updated, saved = await self.leaderboard.record_score(
            self.client_id, self.local_leaderboard, self.nickname, final_score
        )
        self.local_leaderboard = updated
        self.display_leaderboard = list(updated)
        self.is_shared_ranking = False
        self.last_score = final_score
        if not saved:
            self.notice = SCORE_NOT_SAVED
        logger.info("Session %s finished with score %d", self.session_id, final_score)

    def advance_after_success(self) -> RoundState:
        self.notice = None
        return self.machine.advance_after_success()

    def restart(self, stage: int = 1) -> RoundState:
        self.notice = None
        return self.machine.restart(stage)

    def check_nickname_availability(self, name: str) -> NicknameCheck:
        known = [*self.local_leaderboard, *self.display_leaderboard]
        return check_nickname(name, known, confirmed_nickname=self.nickname)

    async def confirm_nickname(self, name: str) -> NicknameCheck:
        check = self.check_nickname_availability(name)
        self.notice = check.message
        if check.status is not NicknameStatus.OK:
            return check

        self.nickname = check.nickname
        if not await self.leaderboard.save_nickname(self.client_id, check.nickname):
            self.notice = NICKNAME_NOT_SAVED

        if self.pending_start:
            self.pending_start = False
            self.last_score = None
            self.is_shared_ranking = False
            self.machine.start_round(1)
        return check

    def share_current_state(self, base_url: str | None) -> ShareResult:
        if not base_url:
            result = ShareResult(url=None, message=SHARING_UNAVAILABLE)
        else:
            result = ShareResult(url=build_stage_url(base_url, self.state.stage), message=LINK_READY)
        self.notice = result.message
        return result

    def share_ranking(self, base_url: str | None) -> ShareResult:
        if not base_url:
            result = ShareResult(url=None, message=SHARING_UNAVAILABLE)
        else:
            result = ShareResult(url=build_ranking_url(base_url, self.display_leaderboard), message=LINK_READY)
        self.notice = result.message
        return result

    def close(self) -> None:
        self.machine.close()


class SessionRegistry:
    """In-process sessions keyed by id; closing a session stops its timers.

    At most ``max_sessions`` are kept. Creating one more closes the session
    that was used least recently.
    """

    def __init__(
        self,
        leaderboard: LeaderboardService,
        scheduler_factory: Callable[[], Scheduler] = AsyncioScheduler,
        rng_factory: Callable[[], random.Random] = random.Random,
        reveal_target_on_end: bool = False,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
    ):
        self.leaderboard = leaderboard
        self._scheduler_factory = scheduler_factory
        self._rng_factory = rng_factory
        self._reveal_target_on_end = reveal_target_on_end
        self._max_sessions = max(1, max_sessions)
        self._sessions: OrderedDict[str, GameSession] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    async def create(self, client_id: str | None = None, shared_query: str = "") -> GameSession:
        session_id = uuid.uuid4().hex
        machine = RoundMachine(TimingController(self._scheduler_factory()), rng=self._rng_factory())
        session = GameSession(
            session_id=session_id,
            client_id=client_id or session_id,
            leaderboard=self.leaderboard,
            machine=machine,
            reveal_target_on_end=self._reveal_target_on_end,
        )
        await session.bootstrap(shared_query)
        self._sessions[session_id] = session
        logger.info("Opened session %s for client %s", session_id, session.client_id)
        while len(self._sessions) > self._max_sessions:
            oldest_id, oldest = self._sessions.popitem(last=False)
            oldest.close()
            logger.info("Evicted idle session %s", oldest_id)
        return session

    def get(self, session_id: str) -> GameSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        self._sessions.move_to_end(session_id)
        return session

    def close(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.close()
        logger.info("Closed session %s", session_id)

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.close(session_id)
