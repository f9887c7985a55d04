from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from common.events import (
    ErrorEvent,
    EventCallback,
    EventEmitter,
    MessagesChangedEvent,
    SessionSelectedEvent,
    SessionsChangedEvent,
)
from threadline.api import SessionApi
from threadline.backends import AssistantBackend, build_backend
from threadline.config import ChatConfig
from threadline.errors import ChatError, SendCancelled, TransportError
from threadline.models import CompanyInfo, FeedOrder, Message, Session
from threadline.reconciler import MessageReconciler
from threadline.retrieval import RetrievalStrategySelector, order_chronologically
from threadline.sessions import SessionStore
from threadline.state import ConversationState

logger = logging.getLogger(__name__)


class ConversationOrchestrator:
    """Drives one conversation at a time against the remote assistant.

    The orchestrator owns the active ``ConversationState``. A ``send`` captures the
    state that was active when it started and writes its outcome there, so switching
    sessions mid-flight never leaks a reply into another conversation. Switching back
    to a session whose send is still running re-attaches to that send's state.
    """

    def __init__(
        self,
        store: SessionStore,
        backend: AssistantBackend,
        *,
        assistant_ref: str,
        stream: bool = True,
        poll_interval: float = 1.0,
        feed_order: FeedOrder = FeedOrder.NEWEST_FIRST,
        send_timeout: float | None = None,
        on_event: EventCallback = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.backend = backend
        self.assistant_ref = assistant_ref
        self.send_timeout = send_timeout
        self.emitter = EventEmitter(on_event)
        self.reconciler = MessageReconciler(self.emitter)
        self.selector = RetrievalStrategySelector(
            backend,
            self.reconciler,
            stream=stream,
            poll_interval=poll_interval,
            feed_order=feed_order,
            emitter=self.emitter,
            sleep=sleep,
        )
        self.state = ConversationState()
        self._inflight: dict[str, ConversationState] = {}

    @classmethod
    def from_config(cls, config: ChatConfig, *, on_event: EventCallback = None) -> "ConversationOrchestrator":
        config.validate()
        api = SessionApi.from_config(config)
        return cls(
            SessionStore(api),
            build_backend(config, api),
            assistant_ref=config.assistant_id,
            stream=config.stream,
            poll_interval=config.poll_interval,
            feed_order=config.feed_order,
            send_timeout=config.send_timeout,
            on_event=on_event,
        )

    @property
    def messages(self) -> list[Message]:
        return self.state.messages

    @property
    def is_busy(self) -> bool:
        return self.state.is_busy

    @property
    def active_session_id(self) -> str | None:
        return self.store.active_id

    def _emit_sessions(self) -> None:
        self.emitter.emit(SessionsChangedEvent(session_ids=tuple(s.id for s in self.store.sessions)))

    def _emit_messages(self, state: ConversationState) -> None:
        self.emitter.emit(MessagesChangedEvent(session_id=state.session_id, messages=state.snapshot()))

    def _session(self, session_id: str) -> Session:
        return self.store.get(session_id) or Session(id=session_id)

    async def list_sessions(self) -> list[Session]:
        sessions = await self.store.list()
        self._emit_sessions()
        return sessions

    def select_session(self, session_id: str | None) -> ConversationState:
        self.store.select(session_id)
        if self.state.session_id != session_id or session_id is None:
            self.state = self._inflight.get(session_id) or ConversationState(session_id=session_id)
            self._emit_messages(self.state)
        self.emitter.emit(SessionSelectedEvent(session_id=session_id))
        return self.state

    async def open_session(self, session_id: str) -> list[Message]:
        state = self.select_session(session_id)
        if state.is_busy:
            return state.snapshot()
        feed = await self.backend.list_messages(self._session(session_id))
        if not state.is_busy:
            state.messages = order_chronologically(feed, self.selector.feed_order)
            self._emit_messages(state)
        return state.snapshot()

    async def create_session(self) -> Session:
        session = await self.store.create(self.assistant_ref)
        self._emit_sessions()
        self.select_session(session.id)
        return session

    async def delete_session(self, session_id: str) -> None:
        was_active = self.store.active_id == session_id
        await self.store.delete(session_id)
        self._emit_sessions()
        if not was_active:
            return
        remaining = self.store.sessions
        self.select_session(remaining[0].id if remaining else None)

    async def company_info(self) -> CompanyInfo:
        return await self.store.api.company_info()

    async def send(self, text: str) -> bool:
        """Send ``text`` on the active session and wait for the reply to settle.

        Returns ``False`` without touching any state when ``text`` is blank or the
        active session already has a send in flight. Failures never propagate: they
        become an error-tagged assistant message. Cancellation is recorded the same
        way and then re-raised.
        """
        text = (text or "").strip()
        state = self.state
        if not text or state.is_busy:
            return False

        self.reconciler.begin(state, text)
        state.task = asyncio.current_task()
        if state.session_id is not None:
            self._inflight[state.session_id] = state

        try:
            if self.send_timeout is not None:
                await asyncio.wait_for(self._drive(state, text), self.send_timeout)
            else:
                await self._drive(state, text)
        except asyncio.TimeoutError:
            error = TransportError(
                f"No reply within {self.send_timeout:g}s", reason="timeout"
            )
            self._record_failure(state, error)
        except asyncio.CancelledError:
            self.reconciler.inject_error(state, SendCancelled())
            raise
        except ChatError as e:
            self._record_failure(state, e)
        except Exception as e:
            logger.exception(f"Unexpected failure while sending to session {state.session_id}")
            self.reconciler.inject_error(state, e)
        finally:
            state.pending_message_id = None
            state.task = None
            if state.session_id is not None and self._inflight.get(state.session_id) is state:
                del self._inflight[state.session_id]
        return True

    def _record_failure(self, state: ConversationState, error: ChatError) -> None:
        self.emitter.emit(ErrorEvent(message=error.message, source="send", kind=error.kind.value))
        self.reconciler.inject_error(state, error)

    async def _drive(self, state: ConversationState, text: str) -> None:
        session = await self._resolve_session(state)
        dispatch = await self.backend.dispatch(session, text)
        await self.selector.retrieve(state, dispatch)

    async def _resolve_session(self, state: ConversationState) -> Session:
        if state.session_id is not None:
            return self._session(state.session_id)

        session = await self.store.create(self.assistant_ref)
        state.session_id = session.id
        self._inflight[session.id] = state
        self._emit_sessions()
        if self.state is state:
            self.store.select(session.id)
            self.emitter.emit(SessionSelectedEvent(session_id=session.id))
        logger.info(f"Created session {session.id} for first message")
        return session

    def cancel(self, session_id: str | None = None) -> bool:
        """Cancel the task awaiting ``send`` on a session (the active one by default)."""
        state = self.state if session_id is None else self._inflight.get(session_id)
        if state is None or state.task is None or state.task.done():
            return False
        state.task.cancel()
        return True

    async def aclose(self) -> None:
        await self.backend.aclose()
        await self.store.api.aclose()
