"""Error taxonomy shared by the transport, the session store and the orchestrator.

Every failure a caller can observe is a ``ChatError`` subclass carrying a ``kind``
tag. Classification of HTTP failures happens once, at the transport boundary, by
looking the status code up in ``STATUS_REASONS``; nothing downstream inspects
message text.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    CONFIG = "config"
    TRANSPORT = "transport"
    STREAM = "stream"
    RUN = "run"
    NOT_FOUND = "not_found"
    CANCELLED = "cancelled"


STATUS_REASONS = {
    401: "unauthorized",
    404: "not_found",
    429: "rate_limited",
    500: "server_error",
}

USER_MESSAGES = {
    "unauthorized": "Authentication error: Please check your credentials.",
    "rate_limited": "Rate limit exceeded: Too many requests to the API.",
    "server_error": "Server error: Please try again later.",
    "timeout": "The request timed out. Please try again.",
}


class ChatError(Exception):
    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(self, message: str, *, detail: str | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def user_message(self) -> str:
        return self.message


class ConfigError(ChatError):
    kind = ErrorKind.CONFIG


class TransportError(ChatError):
    kind = ErrorKind.TRANSPORT

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        reason: str | None = None,
        detail: str | None = None,
    ):
        super().__init__(message, detail=detail)
        self.status_code = status_code
        self.reason = reason or STATUS_REASONS.get(status_code or 0)

    def user_message(self) -> str:
        return USER_MESSAGES.get(self.reason or "", self.message)


class NotFoundError(TransportError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str, *, detail: str | None = None):
        super().__init__(message, status_code=404, reason="not_found", detail=detail)


class StreamError(ChatError):
    kind = ErrorKind.STREAM

    def __init__(self, message: str, *, payload: Any = None):
        super().__init__(message)
        self.payload = payload


class RunError(ChatError):
    kind = ErrorKind.RUN

    def __init__(self, status: str, *, detail: str | None = None):
        super().__init__(f"Run ended with status: {status}", detail=detail)
        self.status = status


def error_for_status(status_code: int, message: str, *, detail: str | None = None) -> TransportError:
    if status_code == 404:
        return NotFoundError(message, detail=detail)
    return TransportError(message, status_code=status_code, detail=detail)


class SendCancelled(ChatError):
    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "The request was cancelled before the reply arrived."):
        super().__init__(message)
