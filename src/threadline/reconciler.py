from __future__ import annotations

import logging

from common.events import AssistantDeltaEvent, EventEmitter, MessagesChangedEvent
from threadline.errors import ChatError, RunError, TransportError
from threadline.models import Message, MessageError, utc_now
from threadline.state import ConversationState

logger = logging.getLogger(__name__)

ERROR_PREFIX = "Error: "


def message_error(error: ChatError) -> MessageError:
    return MessageError(
        kind=error.kind,
        detail=error.message,
        status_code=getattr(error, "status_code", None),
        run_status=getattr(error, "status", None),
    )


class MessageReconciler:
    def __init__(self, emitter: EventEmitter | None = None):
        self.emitter = emitter or EventEmitter()

    def _changed(self, state: ConversationState) -> None:
        self.emitter.emit(MessagesChangedEvent(session_id=state.session_id, messages=state.snapshot()))

    def begin(self, state: ConversationState, text: str) -> Message:
        user = Message(role="user", content=[text])
        placeholder = Message(role="assistant", content=[])
        state.messages.append(user)
        state.messages.append(placeholder)
        state.pending_message_id = placeholder.id
        self._changed(state)
        return placeholder

    def append_delta(self, state: ConversationState, fragment: str) -> str:
        pending = state.pending_message()
        if pending is None:
            logger.warning(f"Dropping delta for session {state.session_id}: no pending message")
            return ""
        pending.content.append(fragment)
        text = pending.text
        self.emitter.emit(
            AssistantDeltaEvent(
                session_id=state.session_id,
                message_id=pending.id,
                delta=fragment,
                text=text,
            )
        )
        return text

    def mark_partial_error(self, state: ConversationState, error: ChatError) -> None:
        pending = state.pending_message()
        if pending is None:
            return
        partial = f"{pending.text}\n\n" if pending.text else ""
        self.emitter.emit(
            AssistantDeltaEvent(
                session_id=state.session_id,
                message_id=pending.id,
                delta="",
                text=f"{partial}{ERROR_PREFIX}{error.message}",
                is_error=True,
            )
        )

    def finalize(self, state: ConversationState, messages: list[Message]) -> None:
        """Replace local messages with the authoritative, chronologically ordered list."""
        if not messages or messages[-1].role != "assistant":
            raise RunError(
                "completed",
                detail="The service reported completion but returned no assistant reply",
            )
        state.messages = list(messages)
        state.pending_message_id = None
        logger.debug(f"Finalized session {state.session_id} with {len(messages)} messages")
        self._changed(state)

    def inject_error(self, state: ConversationState, error: ChatError | BaseException) -> Message:
        if not isinstance(error, ChatError):
            error = TransportError(f"Sorry, there was an error processing your request: {error}")

        text = f"{ERROR_PREFIX}{error.user_message()}"
        pending = state.pending_message()
        fragments = list(pending.content) if pending is not None else []
        if fragments:
            fragments.append("\n\n")
        fragments.append(text)

        message = Message(
            role="assistant",
            content=fragments,
            timestamp=utc_now(),
            error=message_error(error),
        )
        if pending is None or not state.replace(pending.id, message):
            state.messages.append(message)
        state.pending_message_id = None
        logger.info(f"Recorded {error.kind.value} error in session {state.session_id}: {error.message}")
        self._changed(state)
        return message

