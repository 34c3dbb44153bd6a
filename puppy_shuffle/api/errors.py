from __future__ import annotations

from typing import Any


class APIError(Exception):
    def __init__(
        self,
        code: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


def session_not_found(session_id: str) -> APIError:
    return APIError(
        code="SESSION_NOT_FOUND",
        message="Session does not exist or has been closed",
        status_code=404,
        details={"session_id": session_id},
    )
