"""Server-push transport to the agent chat endpoint.

A turn is a POST whose response is a ``text/event-stream``: one JSON delta
per ``data:`` event, terminated by ``[DONE]``. Opening the stream is retried
on network errors, 429 and 5xx; once deltas have been handed out nothing is
retried, since the transcript already reflects them.
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Protocol

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from socialab_studio.assistant.deltas import parse_delta
from socialab_studio.config.logging import get_logger
from socialab_studio.config.settings import Settings, get_settings
from socialab_studio.exceptions import RateLimitError, StreamError

logger = get_logger(__name__)
DONE_SENTINEL = "[DONE]"


class ChatTransport(Protocol):
    """Anything that turns a request payload into a stream of deltas."""

    def stream(self, payload: dict[str, Any]) -> AsyncIterator[Any]: ...


def _is_retryable(exc: BaseException) -> bool:
    """Check if exception is retryable (429, 5xx, network errors)."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, StreamError) and exc.status_code is not None:
        return exc.status_code == 429 or exc.status_code >= 500
    return False


def _status_error(status_code: int, body: str) -> StreamError:
    if status_code == 429:
        return RateLimitError(
            "The assistant is receiving too many requests", details=body, status_code=429
        )
    if status_code in (401, 403):
        msg = "Not authorized to use the assistant"
    else:
        msg = f"The assistant returned an error (HTTP {status_code})"
    return StreamError(msg, details=body, status_code=status_code)


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the joined ``data:`` payload of each server-sent event."""
    buf: list[str] = []
    async for line in lines:
        if not line:
            if buf:
                yield "\n".join(buf)
                buf = []
            continue
        if line.startswith(":"):
            continue  # comment / keep-alive
        if line.startswith("data:"):
            buf.append(line[5:].lstrip(" "))
    if buf:
        yield "\n".join(buf)


class HttpChatTransport:
    """httpx-based transport for the agent endpoint."""

    def __init__(
        self,
        endpoint: str,
        *,
        headers: dict[str, str] | None = None,
        connect_timeout: float = 10.0,
        read_timeout: float = 120.0,
        max_retries: int = 3,
        retry_wait_min: float = 0.5,
        retry_wait_max: float = 8.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._endpoint = endpoint
        self._headers = {"Accept": "text/event-stream", **(headers or {})}
        self._max_retries = max_retries
        self._retry_wait_min = retry_wait_min
        self._retry_wait_max = retry_wait_max
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(read_timeout, connect=connect_timeout)
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "HttpChatTransport":
        s = settings or get_settings()
        return cls(
            s.socialab_chat_endpoint,
            headers=s.auth_headers(),
            connect_timeout=s.socialab_connect_timeout,
            read_timeout=s.socialab_read_timeout,
            max_retries=s.socialab_stream_max_retries,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _open(self, payload: dict[str, Any]) -> httpx.Response:
        """Send the request and return the streaming response (retried)."""

        @retry(
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=1, min=self._retry_wait_min, max=self._retry_wait_max),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        async def _connect() -> httpx.Response:
            request = self._client.build_request(
                "POST", self._endpoint, json=payload, headers=self._headers
            )
            response = await self._client.send(request, stream=True)
            if response.status_code >= 400:
                body = (await response.aread()).decode("utf-8", "replace")[:500]
                await response.aclose()
                logger.warning("Chat endpoint returned %d", response.status_code)
                raise _status_error(response.status_code, body)
            return response

        try:
            return await _connect()
        except httpx.HTTPError as e:
            raise StreamError("Could not reach the assistant", details=str(e)) from e

    async def stream(self, payload: dict[str, Any]) -> AsyncIterator[Any]:
        """Yield parsed deltas for one turn."""
        response = await self._open(payload)
        try:
            async for data in iter_sse_data(response.aiter_lines()):
                if data.strip() == DONE_SENTINEL:
                    break
                try:
                    raw = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Dropping undecodable stream event: %.80s", data)
                    continue
                if not isinstance(raw, dict):
                    continue
                delta = parse_delta(raw)
                if delta is not None:
                    yield delta
        except httpx.HTTPError as e:
            raise StreamError("Connection to the assistant was lost", details=str(e)) from e
        finally:
            await response.aclose()
