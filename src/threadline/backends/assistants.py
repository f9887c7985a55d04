"""Backend for an OpenAI Assistants (v2) compatible run API.

A session's ``thread_id`` addresses the remote thread. Dispatch adds the user message
to the thread; the reply is produced by a run that is either streamed as server-sent
events or created plainly and polled.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from threadline.backends.base import Dispatch
from threadline.errors import NotFoundError
from threadline.models import Message, Run, RunStatus, Session, StreamEvent, utc_now
from threadline.transport import HttpTransport, SseMessage, Transport

logger = logging.getLogger(__name__)

RUN_EVENT_PREFIX = "thread.run."
DELTA_EVENT = "thread.message.delta"
PAGE_LIMIT = 100


def parse_status(value: Any) -> RunStatus:
    try:
        return RunStatus(value)
    except ValueError:
        logger.warning(f"Unknown run status {value!r}, treating as in progress")
        return RunStatus.IN_PROGRESS


def text_fragments(content: Any) -> list[str]:
    if isinstance(content, str):
        return [content]
    fragments: list[str] = []
    for block in content or []:
        if not isinstance(block, dict) or block.get("type") != "text":
            continue
        text = block.get("text") or {}
        value = text.get("value") if isinstance(text, dict) else text
        if value:
            fragments.append(str(value))
    return fragments


def message_from_thread(data: dict) -> Message:
    created_at = data.get("created_at")
    timestamp = (
        datetime.fromtimestamp(created_at, tz=timezone.utc)
        if isinstance(created_at, (int, float))
        else utc_now()
    )
    return Message(
        id=data["id"],
        role=data.get("role", "assistant"),
        content=text_fragments(data.get("content")),
        timestamp=timestamp,
    )


def to_stream_event(message: SseMessage) -> StreamEvent | None:
    if message.event == "done" or message.data.strip() == "[DONE]":
        return None
    try:
        data = json.loads(message.data)
    except json.JSONDecodeError:
        if message.event == "error":
            return StreamEvent(name="error", error=message.data)
        logger.warning(f"Failed to parse {message.event} event: {message.data[:200]}")
        return StreamEvent(name=message.event)

    if message.event == "error":
        return StreamEvent(name="error", error=data if data is not None else message.data)
    if message.event == DELTA_EVENT:
        delta = (data.get("delta") or {}).get("content")
        return StreamEvent(name=message.event, delta="".join(text_fragments(delta)) or None)
    if message.event.startswith(RUN_EVENT_PREFIX) and isinstance(data, dict):
        return StreamEvent(
            name=message.event,
            run_id=data.get("id"),
            status=parse_status(data.get("status")),
        )
    return StreamEvent(name=message.event)


class AssistantsBackend:
    name = "assistants"

    def __init__(self, transport: Transport, assistant_id: str):
        self.transport = transport
        self.assistant_id = assistant_id

    @classmethod
    def from_config(cls, config) -> "AssistantsBackend":
        transport = HttpTransport(
            config.openai_base_url,
            headers={
                "Authorization": f"Bearer {config.openai_api_key}",
                "OpenAI-Beta": "assistants=v2",
            },
            timeout=config.request_timeout,
            supports_streaming=config.stream,
        )
        return cls(transport, config.assistant_id)

    @property
    def supports_streaming(self) -> bool:
        return self.transport.supports_streaming

    def _thread(self, session: Session) -> str:
        if not session.thread_id:
            raise NotFoundError(f"Session {session.id} has no assistant thread")
        return session.thread_id

    async def dispatch(self, session: Session, content: str) -> Dispatch:
        thread_id = self._thread(session)
        data = await self.transport.request(
            "POST",
            f"/threads/{thread_id}/messages",
            json={"role": "user", "content": content},
        )
        remote_id = data.get("id") if isinstance(data, dict) else None
        logger.debug(f"Added message {remote_id} to thread {thread_id}")
        return Dispatch(session=session, content=content, remote_message_id=remote_id)

    @asynccontextmanager
    async def open_stream(self, dispatch: Dispatch) -> AsyncIterator[AsyncIterator[StreamEvent]]:
        thread_id = self._thread(dispatch.session)
        async with self.transport.open_stream(
            "POST",
            f"/threads/{thread_id}/runs",
            json={"assistant_id": self.assistant_id, "stream": True},
        ) as messages:
            yield self._events(messages)

    async def _events(self, messages: AsyncIterator[SseMessage]) -> AsyncIterator[StreamEvent]:
        async for message in messages:
            event = to_stream_event(message)
            if event is None:
                return
            yield event

    async def start_run(self, dispatch: Dispatch) -> Run:
        thread_id = self._thread(dispatch.session)
        data = await self.transport.request(
            "POST", f"/threads/{thread_id}/runs", json={"assistant_id": self.assistant_id}
        )
        run = Run(id=data.get("id"), status=parse_status(data.get("status", "queued")))
        logger.info(f"Created run {run.id} on thread {thread_id}")
        return run

    async def run_status(self, dispatch: Dispatch, run: Run) -> Run:
        thread_id = self._thread(dispatch.session)
        data = await self.transport.request("GET", f"/threads/{thread_id}/runs/{run.id}")
        return Run(id=run.id, status=parse_status(data.get("status")))

    async def list_messages(self, session: Session) -> list[Message]:
        thread_id = self._thread(session)
        params = {"limit": PAGE_LIMIT}
        items: list[dict] = []
        while True:
            data = await self.transport.request(
                "GET", f"/threads/{thread_id}/messages", params=dict(params)
            )
            if not isinstance(data, dict):
                items.extend(data or [])
                break
            page = data.get("data") or []
            items.extend(page)
            last_id = data.get("last_id") or (page[-1].get("id") if page else None)
            if not data.get("has_more") or not last_id:
                break
            params["after"] = last_id
        logger.debug(f"Fetched {len(items)} messages from thread {thread_id}")
        return [message_from_thread(item) for item in items]

    async def aclose(self) -> None:
        await self.transport.aclose()
