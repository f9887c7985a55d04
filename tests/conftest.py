import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest

from common.ids import generate_id
from threadline.backends.base import Dispatch
from threadline.errors import ConfigError, NotFoundError
from threadline.models import CompanyInfo, Message, Run, RunStatus, Session
from threadline.orchestrator import ConversationOrchestrator
from threadline.sessions import SessionStore

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_message(role: str, text: str, seconds: int = 0, message_id: str | None = None) -> Message:
    kwargs = {"id": message_id} if message_id else {}
    return Message(role=role, content=[text], timestamp=BASE_TIME + timedelta(seconds=seconds), **kwargs)


class MockSessionApi:
    def __init__(self, sessions: list[Session] | None = None):
        self.sessions = list(sessions or [])
        self.created: list[Session] = []
        self.deleted: list[str] = []
        self.fail_create: Exception | None = None
        self.fail_delete: Exception | None = None

    async def list_sessions(self) -> list[Session]:
        return list(self.sessions)

    async def create_session(self, assistant_ref: str) -> Session:
        if not (assistant_ref or "").strip():
            raise ConfigError("Cannot create session: assistant reference is missing")
        if self.fail_create is not None:
            raise self.fail_create
        session = Session(id=f"s-{generate_id()}", thread_id=f"thread-{len(self.created) + 1}")
        self.created.append(session)
        self.sessions.insert(0, session)
        return session

    async def delete_session(self, session_id: str) -> None:
        if self.fail_delete is not None:
            raise self.fail_delete
        if not any(s.id == session_id for s in self.sessions):
            raise NotFoundError(f"DELETE /sessions/{session_id} failed: 404 Not Found")
        self.sessions = [s for s in self.sessions if s.id != session_id]
        self.deleted.append(session_id)

    async def company_info(self) -> CompanyInfo:
        return CompanyInfo(company_uuid="c-1", company_name="Acme", display_name="Acme Helper")

    async def aclose(self) -> None:
        return None


class MockBackend:
    """Scriptable backend: stream events, run statuses and per-session feeds."""

    name = "mock"

    def __init__(
        self,
        *,
        supports_streaming: bool = False,
        events: list | None = None,
        open_error: Exception | None = None,
        statuses: list[RunStatus] | None = None,
        feed: list[Message] | None = None,
    ):
        self.supports_streaming = supports_streaming
        self.events = list(events or [])
        self.open_error = open_error
        self.statuses = list(statuses or [RunStatus.COMPLETED])
        self.feed = list(feed or [])
        self.feeds: dict[str, list[Message]] = {}
        self.reply: list[Message] | None = None
        self.listed = 0
        self.gate: asyncio.Event | None = None
        self.dispatched: list[tuple[str, str]] = []
        self.streams_opened = 0
        self.runs_started = 0
        self.status_checks = 0
        self.closed = False

    async def dispatch(self, session: Session, content: str) -> Dispatch:
        self.dispatched.append((session.id, content))
        if self.gate is not None:
            await self.gate.wait()
        return Dispatch(session=session, content=content, reply=self.reply)

    @asynccontextmanager
    async def open_stream(self, dispatch: Dispatch):
        self.streams_opened += 1
        if self.open_error is not None:
            raise self.open_error
        yield self._events()

    async def _events(self):
        for event in self.events:
            yield event

    async def start_run(self, dispatch: Dispatch) -> Run:
        self.runs_started += 1
        return Run(id="run-1", status=RunStatus.QUEUED)

    async def run_status(self, dispatch: Dispatch, run: Run) -> Run:
        self.status_checks += 1
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return Run(id=run.id, status=status)

    async def list_messages(self, session: Session) -> list[Message]:
        self.listed += 1
        return list(self.feeds.get(session.id, self.feed))

    async def aclose(self) -> None:
        self.closed = True


class RecordingSleep:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def session_api():
    return MockSessionApi([Session(id="s1", thread_id="t1"), Session(id="s2", thread_id="t2")])


@pytest.fixture
def backend():
    return MockBackend(
        feed=[
            make_message("assistant", "Hi there", seconds=1, message_id="m2"),
            make_message("user", "hello", seconds=0, message_id="m1"),
        ]
    )


@pytest.fixture
def events():
    return []


@pytest.fixture
def make_orchestrator(session_api, backend, events) -> Callable[..., ConversationOrchestrator]:
    def _make(**kwargs) -> ConversationOrchestrator:
        kwargs.setdefault("assistant_ref", "asst_123")
        kwargs.setdefault("on_event", events.append)
        kwargs.setdefault("sleep", RecordingSleep())
        return ConversationOrchestrator(SessionStore(session_api), backend, **kwargs)

    return _make
