from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from threadline.models import Message


@dataclass
class ConversationState:
    """Local, provisional view of one session's conversation.

    ``is_busy`` is derived from ``pending_message_id`` so the two can never disagree.
    """

    session_id: str | None = None
    messages: list[Message] = field(default_factory=list)
    pending_message_id: str | None = None
    task: asyncio.Task | None = field(default=None, repr=False, compare=False)

    @property
    def is_busy(self) -> bool:
        return self.pending_message_id is not None

    def pending_message(self) -> Message | None:
        if self.pending_message_id is None:
            return None
        return self.find(self.pending_message_id)

    def find(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def replace(self, message_id: str, message: Message) -> bool:
        for idx, existing in enumerate(self.messages):
            if existing.id == message_id:
                self.messages[idx] = message
                return True
        return False

    def snapshot(self) -> list[Message]:
        return [m.model_copy(deep=True) for m in self.messages]
