"""Blob store contract shared by the Redis and in-memory backends."""

from __future__ import annotations

from typing import Protocol


class BlobStore(Protocol):
    async def load(self, key: str) -> str | None:
        """Return the stored value, or ``None`` when missing or unreadable."""

    async def save(self, key: str, value: str) -> bool:
        """Store ``value``; report failure through the return value only."""

    async def ping(self) -> bool: ...

    async def aclose(self) -> None: ...
