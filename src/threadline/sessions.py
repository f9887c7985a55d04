from __future__ import annotations

import logging

from threadline.api import SessionApi
from threadline.models import Session

logger = logging.getLogger(__name__)


class SessionStore:
    """Locally cached session list plus the active selection.

    ``list``, ``create`` and ``delete`` go to the remote service and raise
    ``TransportError``/``NotFoundError``/``ConfigError`` unchanged. ``select`` is
    local only.
    """

    def __init__(self, api: SessionApi):
        self.api = api
        self._sessions: list[Session] = []
        self._active_id: str | None = None

    @property
    def sessions(self) -> list[Session]:
        return list(self._sessions)

    @property
    def active_id(self) -> str | None:
        return self._active_id

    @property
    def active(self) -> Session | None:
        if self._active_id is None:
            return None
        return self.get(self._active_id)

    def get(self, session_id: str) -> Session | None:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    async def list(self) -> list[Session]:
        self._sessions = await self.api.list_sessions()
        logger.info(f"Loaded {len(self._sessions)} sessions")
        return self.sessions

    async def create(self, assistant_ref: str) -> Session:
        session = await self.api.create_session(assistant_ref)
        self._sessions = [session] + [s for s in self._sessions if s.id != session.id]
        logger.info(f"Created session {session.id}")
        return session

    async def delete(self, session_id: str) -> None:
        await self.api.delete_session(session_id)
        self._forget(session_id)
        logger.info(f"Deleted session {session_id}")

    def _forget(self, session_id: str) -> None:
        self._sessions = [s for s in self._sessions if s.id != session_id]
        if self._active_id == session_id:
            self._active_id = None

    def select(self, session_id: str | None) -> None:
        self._active_id = session_id
