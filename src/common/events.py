from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, TypeAlias


@dataclass(frozen=True, slots=True)
class SessionSelectedEvent:
    session_id: str | None


@dataclass(frozen=True, slots=True)
class SessionsChangedEvent:
    session_ids: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class MessagesChangedEvent:
    session_id: str | None
    messages: list[Any]


@dataclass(frozen=True, slots=True)
class AssistantDeltaEvent:
    session_id: str | None
    message_id: str
    delta: str
    text: str
    is_error: bool = False


@dataclass(frozen=True, slots=True)
class RetrievalStateEvent:
    session_id: str | None
    state: str
    previous: str | None = None


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    message: str
    source: str | None = None
    kind: str | None = None


Event: TypeAlias = (
    SessionSelectedEvent
    | SessionsChangedEvent
    | MessagesChangedEvent
    | AssistantDeltaEvent
    | RetrievalStateEvent
    | ErrorEvent
)
EventCallback: TypeAlias = Callable[[Event], None] | None


class EventEmitter:
    def __init__(self, callback: EventCallback = None):
        self._callback = callback

    def emit(self, event: Event) -> None:
        if self._callback is not None:
            self._callback(event)
