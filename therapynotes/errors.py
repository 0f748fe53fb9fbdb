"""Error taxonomy shared by the simulated and networked backends."""

from __future__ import annotations

from typing import Any, Optional


class ApiError(Exception):
    """A failed operation carrying an HTTP-like status code and message."""

    default_status = 500

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status if status is not None else self.default_status

    def __str__(self) -> str:
        return f"{self.message} (status {self.status})"


class SessionExpiredError(ApiError):
    """Raised when no usable credential can be obtained; the session was ended."""

    default_status = 401

    def __init__(self, message: str = "Session expired. Please log in again.", status: Optional[int] = None) -> None:
        super().__init__(message, status)


class ConflictError(ApiError):
    """Raised when a caller-supplied identifier is already in use."""

    default_status = 409


class NotFoundError(ApiError):
    """Raised when an operation's target must exist but does not."""

    default_status = 404


def error_message(payload: Any, fallback: str) -> str:
    """Pull a human readable message out of an error payload."""

    if isinstance(payload, dict):
        for key in ("message", "error", "detail"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback


__all__ = [
    "ApiError",
    "ConflictError",
    "NotFoundError",
    "SessionExpiredError",
    "error_message",
]
