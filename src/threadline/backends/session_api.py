from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from threadline.api import SessionApi
from threadline.backends.base import Dispatch
from threadline.errors import StreamError
from threadline.models import Message, Run, RunStatus, Session, StreamEvent

logger = logging.getLogger(__name__)


class SessionApiBackend:
    """Replies through the Session API, whose message POST blocks until the reply exists.

    There is no run to observe, so the polling path settles on its first status check.
    The message list returned by the POST is reconciled as is, without another fetch.
    """

    name = "sessions"
    supports_streaming = False

    def __init__(self, api: SessionApi):
        self.api = api

    async def dispatch(self, session: Session, content: str) -> Dispatch:
        reply = await self.api.post_message(session.id, content)
        logger.debug(f"Posted message to session {session.id}, {len(reply)} messages returned")
        return Dispatch(session=session, content=content, reply=reply)

    @asynccontextmanager
    async def open_stream(self, dispatch: Dispatch) -> AsyncIterator[AsyncIterator[StreamEvent]]:
        raise StreamError("The session API does not stream replies")
        yield  # pragma: no cover

    async def start_run(self, dispatch: Dispatch) -> Run:
        return Run(status=RunStatus.COMPLETED)

    async def run_status(self, dispatch: Dispatch, run: Run) -> Run:
        return run

    async def list_messages(self, session: Session) -> list[Message]:
        return await self.api.list_messages(session.id)

    async def aclose(self) -> None:
        return None
