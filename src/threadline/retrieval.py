"""Obtains the assistant's reply for one dispatched message.

One entry point (``RetrievalStrategySelector.retrieve``) drives an explicit state
machine:

    DISPATCHED -> STREAMING -> RECONCILING -> DONE
    DISPATCHED -> POLLING   -> RECONCILING -> DONE
    STREAMING  -> POLLING   (only when the event channel fails to open)
    any        -> FAILED

Both retrieval paths end in the same reconciling step, and every call ends in
exactly one terminal outcome: the finalized message list is returned, or a
``ChatError`` is raised.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import aclosing
from enum import Enum
from typing import Awaitable, Callable

from common.events import EventEmitter, RetrievalStateEvent
from threadline.backends.base import AssistantBackend, Dispatch
from threadline.errors import RunError, StreamError, TransportError
from threadline.models import FAILED_RUN_STATUSES, FeedOrder, Message, RunStatus
from threadline.reconciler import MessageReconciler
from threadline.state import ConversationState

logger = logging.getLogger(__name__)


class RetrievalState(str, Enum):
    DISPATCHED = "dispatched"
    STREAMING = "streaming"
    POLLING = "polling"
    RECONCILING = "reconciling"
    DONE = "done"
    FAILED = "failed"


TRANSITIONS = {
    RetrievalState.DISPATCHED: {RetrievalState.STREAMING, RetrievalState.POLLING},
    RetrievalState.STREAMING: {RetrievalState.POLLING, RetrievalState.RECONCILING},
    RetrievalState.POLLING: {RetrievalState.RECONCILING},
    RetrievalState.RECONCILING: {RetrievalState.DONE},
    RetrievalState.DONE: set(),
    RetrievalState.FAILED: set(),
}


def _is_chronological(messages: list[Message]) -> bool:
    return all(a.timestamp <= b.timestamp for a, b in zip(messages, messages[1:]))


def order_chronologically(
    messages: list[Message], assumed: FeedOrder = FeedOrder.NEWEST_FIRST
) -> list[Message]:
    ordered = list(reversed(messages)) if assumed is FeedOrder.NEWEST_FIRST else list(messages)
    if _is_chronological(ordered):
        return ordered

    flipped = list(reversed(ordered))
    if _is_chronological(flipped):
        logger.warning(f"Message feed contradicts the {assumed.value} assumption, using its reverse")
        return flipped

    logger.warning("Message feed has no consistent order, sorting by timestamp")
    return sorted(ordered, key=lambda m: m.timestamp)


class _Machine:
    def __init__(self, session_id: str | None, emitter: EventEmitter):
        self.session_id = session_id
        self.emitter = emitter
        self.state = RetrievalState.DISPATCHED

    def move(self, target: RetrievalState) -> None:
        if target is not RetrievalState.FAILED and target not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal retrieval transition {self.state.value} -> {target.value}")
        previous, self.state = self.state, target
        logger.debug(f"Session {self.session_id}: {previous.value} -> {target.value}")
        self.emitter.emit(
            RetrievalStateEvent(session_id=self.session_id, state=target.value, previous=previous.value)
        )


class RetrievalStrategySelector:
    def __init__(
        self,
        backend: AssistantBackend,
        reconciler: MessageReconciler,
        *,
        stream: bool = True,
        poll_interval: float = 1.0,
        feed_order: FeedOrder = FeedOrder.NEWEST_FIRST,
        emitter: EventEmitter | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.backend = backend
        self.reconciler = reconciler
        self.stream = stream
        self.poll_interval = poll_interval
        self.feed_order = feed_order
        self.emitter = emitter or EventEmitter()
        self._sleep = sleep

    def wants_stream(self) -> bool:
        return self.stream and bool(self.backend.supports_streaming)

    async def retrieve(self, state: ConversationState, dispatch: Dispatch) -> list[Message]:
        machine = _Machine(state.session_id, self.emitter)
        try:
            streamed = False
            if self.wants_stream():
                machine.move(RetrievalState.STREAMING)
                streamed = await self._stream(state, dispatch)
            if not streamed:
                machine.move(RetrievalState.POLLING)
                await self._poll(dispatch)

            machine.move(RetrievalState.RECONCILING)
            feed = dispatch.reply or await self.backend.list_messages(dispatch.session)
            messages = order_chronologically(feed, self.feed_order)
            self.reconciler.finalize(state, messages)
            machine.move(RetrievalState.DONE)
            return messages
        except BaseException:
            machine.move(RetrievalState.FAILED)
            raise

    async def _stream(self, state: ConversationState, dispatch: Dispatch) -> bool:
        opened = False
        try:
            async with self.backend.open_stream(dispatch) as events:
                opened = True
                async with aclosing(events) as stream:
                    async for event in stream:
                        if event.is_error:
                            payload = json.dumps(event.error, default=str)
                            error = StreamError(f"Streaming error: {payload}", payload=event.error)
                            self.reconciler.mark_partial_error(state, error)
                            raise error
                        if event.status in FAILED_RUN_STATUSES:
                            raise RunError(event.status.value)
                        if event.delta:
                            self.reconciler.append_delta(state, event.delta)
        except (TransportError, StreamError) as e:
            if opened:
                raise
            logger.warning(
                f"Event stream for session {dispatch.session.id} failed to open ({e}), "
                "falling back to polling"
            )
            return False
        return True

    async def _poll(self, dispatch: Dispatch) -> None:
        run = await self.backend.start_run(dispatch)
        polls = 0
        while True:
            run = await self.backend.run_status(dispatch, run)
            polls += 1
            if run.status is RunStatus.COMPLETED:
                logger.debug(f"Run {run.id} completed after {polls} status checks")
                return
            if run.status in FAILED_RUN_STATUSES:
                raise RunError(run.status.value)
            await self._sleep(self.poll_interval)
