"""Round lifecycle: ready -> feeding -> shuffling -> guessing -> result | ranking.

``RoundState`` is an immutable snapshot and ``transition`` is the pure step
function over it. ``RoundMachine`` owns the current state and the round's
``TimingController``; every path that leaves a phase cancels the outstanding
timers before anything new is scheduled, so only one timing chain is ever
live for a machine.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, replace
from enum import Enum

from puppy_shuffle.config import FEED_DELAY_MS, MAX_STAGE, PROGRESS_SAMPLE_MS
from puppy_shuffle.services.layout import Layout, create_layout, dog_count, find_dog, shuffle_once
from puppy_shuffle.services.timing import (
    TimingController,
    progress_ratio,
    shuffle_duration_ms,
    shuffle_interval_ms,
)

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    READY = "ready"
    FEEDING = "feeding"
    SHUFFLING = "shuffling"
    GUESSING = "guessing"
    RESULT = "result"
    RANKING = "ranking"


class Outcome(str, Enum):
    SUCCESS = "success"
    FAIL = "fail"


def clamp_stage(value: object) -> int:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 1
    if not math.isfinite(number):
        return 1
    return max(1, min(MAX_STAGE, math.floor(number)))


@dataclass(frozen=True, slots=True)
class RoundState:
    stage: int
    dogs: Layout
    phase: Phase = Phase.READY
    target_dog_id: int | None = None
    selected_dog_id: int | None = None
    outcome: Outcome | None = None
    progress: float = 0.0
    shuffle_started_at: float | None = None
    final_score: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.phase is Phase.RANKING


def ready_state(stage: int) -> RoundState:
    stage = clamp_stage(stage)
    return RoundState(stage=stage, dogs=create_layout(dog_count(stage)))


# Events fed to ``transition``.


@dataclass(frozen=True, slots=True)
class RoundStarted:
    stage: int
    dogs: Layout
    target_dog_id: int


@dataclass(frozen=True, slots=True)
class ShuffleStarted:
    started_at: float


@dataclass(frozen=True, slots=True)
class DogsShuffled:
    dogs: Layout


@dataclass(frozen=True, slots=True)
class ProgressSampled:
    progress: float


@dataclass(frozen=True, slots=True)
class ShuffleFinished:
    pass


@dataclass(frozen=True, slots=True)
class DogPicked:
    dog_id: int


@dataclass(frozen=True, slots=True)
class StageReset:
    stage: int


@dataclass(frozen=True, slots=True)
class RankingShown:
    pass


RoundEvent = (
    RoundStarted
    | ShuffleStarted
    | DogsShuffled
    | ProgressSampled
    | ShuffleFinished
    | DogPicked
    | StageReset
    | RankingShown
)


def transition(state: RoundState, event: RoundEvent) -> RoundState:
    """Return the state after ``event``; events that do not apply to the
    current phase leave the state untouched."""
    if isinstance(event, RoundStarted):
        return RoundState(
            stage=event.stage,
            dogs=event.dogs,
            phase=Phase.FEEDING,
            target_dog_id=event.target_dog_id,
        )

    if isinstance(event, StageReset):
        return ready_state(event.stage)

    if isinstance(event, RankingShown):
        return replace(state, phase=Phase.RANKING)

    if isinstance(event, ShuffleStarted):
        if state.phase is not Phase.FEEDING:
            return state
        return replace(
            state,
            phase=Phase.SHUFFLING,
            progress=0.0,
            shuffle_started_at=event.started_at,
        )

    if isinstance(event, (DogsShuffled, ProgressSampled)) and state.phase is not Phase.SHUFFLING:
        return state
    if isinstance(event, DogsShuffled):
        return replace(state, dogs=event.dogs)
    if isinstance(event, ProgressSampled):
        return replace(state, progress=event.progress)

    if isinstance(event, ShuffleFinished):
        if state.phase is not Phase.SHUFFLING:
            return state
        return replace(state, phase=Phase.GUESSING, progress=100.0)

    if isinstance(event, DogPicked):
        if state.phase is not Phase.GUESSING or find_dog(state.dogs, event.dog_id) is None:
            return state
        if event.dog_id != state.target_dog_id:
            # A wrong pick ends the run; the last cleared stage is the score.
            return replace(
                state,
                phase=Phase.RANKING,
                selected_dog_id=event.dog_id,
                outcome=Outcome.FAIL,
                final_score=state.stage - 1,
            )
        if state.stage >= MAX_STAGE:
            return replace(
                state,
                phase=Phase.RANKING,
                selected_dog_id=event.dog_id,
                outcome=Outcome.SUCCESS,
                final_score=MAX_STAGE,
            )
        return replace(
            state,
            phase=Phase.RESULT,
            selected_dog_id=event.dog_id,
            outcome=Outcome.SUCCESS,
        )

    raise TypeError(f"Unknown round event: {event!r}")


def visible_target(state: RoundState, reveal_on_end: bool = False) -> int | None:
    """The target id as the player may see it in the current phase."""
    if state.phase in (Phase.FEEDING, Phase.RESULT):
        return state.target_dog_id
    if state.phase is Phase.RANKING and reveal_on_end:
        return state.target_dog_id
    return None


class RoundMachine:
    def __init__(
        self,
        timers: TimingController,
        rng: random.Random | None = None,
        stage: int = 1,
    ):
        self.timers = timers
        self._rng = rng or random.Random()
        self.state = ready_state(stage)

    def _apply(self, event: RoundEvent) -> RoundState:
        previous = self.state
        self.state = transition(previous, event)
        if self.state.phase is not previous.phase:
            logger.debug(
                "Round stage=%d phase %s -> %s",
                self.state.stage,
                previous.phase.value,
                self.state.phase.value,
            )
        return self.state

    def start_round(self, stage: int | None = None) -> RoundState:
        self.timers.cancel_all()

        stage = clamp_stage(self.state.stage if stage is None else stage)
        dogs = create_layout(dog_count(stage))
        target = self._rng.choice(dogs).id
        self._apply(RoundStarted(stage=stage, dogs=dogs, target_dog_id=target))

        self.timers.schedule_once(FEED_DELAY_MS, self._begin_shuffle)
        return self.state

    def _begin_shuffle(self) -> None:
        self.timers.cancel_all()
        stage = self.state.stage
        self._apply(ShuffleStarted(started_at=self.timers.now()))
        if self.state.phase is not Phase.SHUFFLING:
            return

        self.timers.schedule_repeating(shuffle_interval_ms(stage), self._shuffle_tick)
        self.timers.schedule_repeating(PROGRESS_SAMPLE_MS, self._sample_progress)
        self.timers.schedule_once(shuffle_duration_ms(stage), self._finish_shuffle)

    def _shuffle_tick(self) -> None:
        self._apply(DogsShuffled(dogs=shuffle_once(self.state.dogs, self._rng)))

    def _sample_progress(self) -> None:
        started_at = self.state.shuffle_started_at
        if started_at is None:
            return
        ratio = progress_ratio(started_at, shuffle_duration_ms(self.state.stage), self.timers.now())
        self._apply(ProgressSampled(progress=ratio))

    def _finish_shuffle(self) -> None:
        self.timers.cancel_all()
        self._apply(ShuffleFinished())

    def pick_dog(self, dog_id: int) -> RoundState:
        if self.state.phase is not Phase.GUESSING:
            return self.state
        self.timers.cancel_all()
        return self._apply(DogPicked(dog_id=dog_id))

    def advance_after_success(self) -> RoundState:
        if self.state.phase is not Phase.RESULT or self.state.outcome is not Outcome.SUCCESS:
            return self.state
        return self.start_round(self.state.stage + 1)

    def restart(self, stage: int = 1) -> RoundState:
        self.timers.cancel_all()
        return self._apply(StageReset(stage=clamp_stage(stage)))

    def show_ranking(self) -> RoundState:
        self.timers.cancel_all()
        return self._apply(RankingShown())

    def close(self) -> None:
        self.timers.cancel_all()
