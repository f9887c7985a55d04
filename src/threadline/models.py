from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from common.ids import local_message_id
from threadline.errors import ErrorKind


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    REQUIRES_ACTION = "requires_action"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    INCOMPLETE = "incomplete"

    @property
    def is_terminal(self) -> bool:
        return self is RunStatus.COMPLETED or self in FAILED_RUN_STATUSES


FAILED_RUN_STATUSES = frozenset(
    {RunStatus.FAILED, RunStatus.CANCELLED, RunStatus.EXPIRED, RunStatus.INCOMPLETE}
)


class FeedOrder(str, Enum):
    NEWEST_FIRST = "newest_first"
    OLDEST_FIRST = "oldest_first"


class Session(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    thread_id: str | None = Field(default=None, alias="openai_thread_id")
    company_uuid: str | None = None


class CompanyInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    company_uuid: str
    company_name: str = ""
    display_name: str = ""
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None


class MessageError(BaseModel):
    kind: ErrorKind
    detail: str = ""
    status_code: int | None = None
    run_status: str | None = None


class Message(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=local_message_id)
    role: Literal["user", "assistant"]
    content: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)
    error: MessageError | None = None

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(item) for item in value]

    @property
    def text(self) -> str:
        return "".join(self.content)

    @property
    def is_error(self) -> bool:
        return self.error is not None


class Run(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    status: RunStatus = RunStatus.QUEUED


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """One named event read off an event channel, already normalized by a backend."""

    name: str
    delta: str | None = None
    error: Any = None
    status: RunStatus | None = None
    run_id: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None
