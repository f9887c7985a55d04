from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Protocol

import httpx

from threadline.errors import StreamError, TransportError, error_for_status

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SseMessage:
    event: str
    data: str


class Transport(Protocol):
    supports_streaming: bool

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict | None = None,
    ) -> Any: ...

    def open_stream(
        self, method: str, path: str, *, json: Any = None
    ) -> AbstractAsyncContextManager[AsyncIterator[SseMessage]]: ...

    async def aclose(self) -> None: ...


def _raise_for_status(response: httpx.Response, method: str, path: str) -> None:
    if not response.is_error:
        return
    status = response.status_code
    detail = response.text[:500] if response.content else ""
    logger.warning(f"{method} {path} -> {status} {response.reason_phrase}")
    raise error_for_status(
        status,
        f"{method} {path} failed: {status} {response.reason_phrase}",
        detail=detail,
    )


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[SseMessage]:
    event = "message"
    data: list[str] = []
    async for line in lines:
        if not line:
            if data:
                yield SseMessage(event=event, data="\n".join(data))
            event, data = "message", []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event = value
        elif name == "data":
            data.append(value)
    if data:
        yield SseMessage(event=event, data="\n".join(data))


class HttpTransport:
    """Request/response and server-sent-event calls against one base URL."""

    def __init__(
        self,
        base_url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        supports_streaming: bool = True,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self.timeout = timeout
        self.supports_streaming = supports_streaming
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=self.timeout,
                follow_redirects=True,
            )
        return self._client

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict | None = None,
    ) -> Any:
        try:
            response = await self.client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as e:
            raise TransportError(f"{method} {path} timed out", reason="timeout") from e
        except httpx.RequestError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        _raise_for_status(response, method, path)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"{method} {path} returned invalid JSON") from e

    @asynccontextmanager
    async def open_stream(
        self, method: str, path: str, *, json: Any = None
    ) -> AsyncIterator[AsyncIterator[SseMessage]]:
        if not self.supports_streaming:
            raise StreamError(f"Streaming is not supported for {self.base_url}")

        try:
            async with self.client.stream(
                method, path, json=json, headers={"Accept": "text/event-stream"}
            ) as response:
                if response.is_error:
                    await response.aread()
                    _raise_for_status(response, method, path)
                logger.debug(f"Opened event stream {method} {path}")
                yield iter_sse(response.aiter_lines())
        except httpx.TimeoutException as e:
            raise TransportError(f"{method} {path} timed out", reason="timeout") from e
        except httpx.RequestError as e:
            raise TransportError(f"{method} {path} stream failed: {e}") from e

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
