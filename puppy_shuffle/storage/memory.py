"""Process-local blob store, used when no Redis is configured."""

from __future__ import annotations


class MemoryBlobStore:
    def __init__(self):
        self._values: dict[str, str] = {}

    async def load(self, key: str) -> str | None:
        return self._values.get(key)

    async def save(self, key: str, value: str) -> bool:
        self._values[key] = value
        return True

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None
