from __future__ import annotations

import heapq
import itertools
import random

import pytest
from fastapi.testclient import TestClient

from puppy_shuffle.main import create_app
from puppy_shuffle.services.round import RoundMachine
from puppy_shuffle.services.timing import TimingController
from puppy_shuffle.storage.memory import MemoryBlobStore


class VirtualHandle:
    def __init__(self):
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualScheduler:
    """Millisecond clock that only moves when a test calls ``advance``."""

    def __init__(self):
        self.time = 0.0
        self._queue: list = []
        self._order = itertools.count()

    def now(self) -> float:
        return self.time

    def call_later(self, delay_ms, callback):
        handle = VirtualHandle()
        heapq.heappush(self._queue, (self.time + max(delay_ms, 0), next(self._order), handle, callback))
        return handle

    def advance(self, ms: float) -> None:
        target = self.time + ms
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback = heapq.heappop(self._queue)
            self.time = due
            if not handle.cancelled:
                callback()
        self.time = target

    @property
    def live(self) -> int:
        return sum(1 for _, _, handle, _ in self._queue if not handle.cancelled)


class FailingBlobStore(MemoryBlobStore):
    async def save(self, key: str, value: str) -> bool:
        return False


@pytest.fixture()
def scheduler() -> VirtualScheduler:
    return VirtualScheduler()


@pytest.fixture()
def timers(scheduler: VirtualScheduler) -> TimingController:
    return TimingController(scheduler)


@pytest.fixture()
def machine(timers: TimingController) -> RoundMachine:
    return RoundMachine(timers, rng=random.Random(7))


@pytest.fixture()
def store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture()
def failing_store() -> FailingBlobStore:
    return FailingBlobStore()


@pytest.fixture()
def client(store: MemoryBlobStore, scheduler: VirtualScheduler, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("PUBLIC_BASE_URL", raising=False)
    monkeypatch.delenv("MAX_SESSIONS", raising=False)
    app = create_app(
        store=store,
        scheduler_factory=lambda: scheduler,
        rng_factory=lambda: random.Random(1234),
    )

    with TestClient(app) as test_client:
        yield test_client, app, scheduler
