"""Client for the Session REST API.

Every response is wrapped in a ``{code, message, data}`` envelope; only ``data`` is
returned to callers.
"""

from __future__ import annotations

import logging
from typing import Any

from threadline.errors import ConfigError, TransportError
from threadline.models import CompanyInfo, Message, Session
from threadline.transport import HttpTransport, Transport

logger = logging.getLogger(__name__)


def _unwrap(payload: Any) -> Any:
    if isinstance(payload, dict) and "data" in payload:
        return payload.get("data")
    return payload


class SessionApi:
    def __init__(self, transport: Transport):
        self.transport = transport

    @classmethod
    def from_config(cls, config) -> "SessionApi":
        transport = HttpTransport(
            config.api_url,
            headers={"X-Api-Key": config.api_key},
            timeout=config.request_timeout,
            supports_streaming=False,
        )
        return cls(transport)

    async def list_sessions(self) -> list[Session]:
        data = _unwrap(await self.transport.request("GET", "/sessions"))
        return [Session.model_validate(item) for item in data or []]

    async def create_session(self, assistant_ref: str) -> Session:
        if not (assistant_ref or "").strip():
            raise ConfigError("Cannot create session: assistant reference is missing")
        data = _unwrap(
            await self.transport.request(
                "POST", "/sessions", json={"openai_assistant_id": assistant_ref}
            )
        )
        if not data:
            raise TransportError("Invalid response format: missing data")
        return Session.model_validate(data)

    async def delete_session(self, session_id: str) -> None:
        await self.transport.request("DELETE", f"/sessions/{session_id}")

    async def list_messages(self, session_id: str) -> list[Message]:
        data = _unwrap(await self.transport.request("GET", f"/sessions/{session_id}/messages"))
        return [Message.model_validate(item) for item in data or []]

    async def post_message(self, session_id: str, content: str) -> list[Message]:
        data = _unwrap(
            await self.transport.request(
                "POST", f"/sessions/{session_id}/messages", json={"message": content}
            )
        )
        return [Message.model_validate(item) for item in data or []]

    async def company_info(self) -> CompanyInfo:
        data = _unwrap(await self.transport.request("GET", "/companies/info"))
        if not data:
            raise TransportError("Invalid response format: missing data")
        return CompanyInfo.model_validate(data)

    async def aclose(self) -> None:
        await self.transport.aclose()
