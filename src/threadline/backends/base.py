from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import AsyncIterator, Protocol

from threadline.models import Message, Run, Session, StreamEvent


@dataclass(frozen=True, slots=True)
class Dispatch:
    session: Session
    content: str
    remote_message_id: str | None = None
    reply: list[Message] | None = None


class AssistantBackend(Protocol):
    name: str
    supports_streaming: bool

    async def dispatch(self, session: Session, content: str) -> Dispatch: ...

    def open_stream(
        self, dispatch: Dispatch
    ) -> AbstractAsyncContextManager[AsyncIterator[StreamEvent]]: ...

    async def start_run(self, dispatch: Dispatch) -> Run: ...

    async def run_status(self, dispatch: Dispatch, run: Run) -> Run: ...

    async def list_messages(self, session: Session) -> list[Message]: ...

    async def aclose(self) -> None: ...
