"""Server-sent-event stream transport.

Streams are consumed as ``StreamEvent`` values named ``batch``, ``done`` or
``error``. The transport ends on ``done`` or when the server closes the
connection.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator, AsyncIterable, AsyncIterator, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from kubestack.constants.timeouts import STREAM_CONNECT_TIMEOUT, STREAM_TIMEOUT

logger = logging.getLogger(__name__)

BATCH_EVENT = "batch"
DONE_EVENT = "done"
ERROR_EVENT = "error"
DEFAULT_EVENT = "message"


class StreamTransportError(Exception):
    """Raised when a stream cannot be opened or breaks mid-flight."""


@dataclass(frozen=True)
class StreamEvent:
    """One named event with its raw data payload."""

    name: str
    data: str = ""

    def json(self) -> Any:
        """Decode the payload as JSON (raises ValueError when malformed)."""
        return json.loads(self.data)


class StreamTransport(Protocol):
    """Source of stream events for one query."""

    def events(self) -> AsyncGenerator[StreamEvent, None]: ...


async def parse_sse_lines(lines: AsyncIterable[str]) -> AsyncIterator[StreamEvent]:
    """Assemble SSE wire lines into events.

    A blank line dispatches the pending event. Comment lines (leading ``:``)
    and unknown fields are ignored. Multiple ``data:`` lines are joined with
    newlines.
    """
    name = DEFAULT_EVENT
    data_lines: list[str] = []

    async for raw_line in lines:
        line = raw_line.rstrip("\r\n")
        if not line:
            if data_lines or name != DEFAULT_EVENT:
                yield StreamEvent(name=name, data="\n".join(data_lines))
            name = DEFAULT_EVENT
            data_lines = []
            continue
        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        value = value.removeprefix(" ")
        if field == "event":
            name = value or DEFAULT_EVENT
        elif field == "data":
            data_lines.append(value)

    if data_lines:
        yield StreamEvent(name=name, data="\n".join(data_lines))


class SSEStreamTransport:
    """Stream events from an HTTP endpoint using an injected httpx client.

    Example:
        async with httpx.AsyncClient(base_url="http://dashboard:8080") as http:
            transport = SSEStreamTransport(http, "/api/benchmarks/stream")
            async for event in transport.events():
                ...
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        path: str,
        params: Mapping[str, str] | None = None,
        timeout: float = STREAM_TIMEOUT,
        connect_timeout: float = STREAM_CONNECT_TIMEOUT,
    ) -> None:
        self._http = http
        self._path = path
        self._params = dict(params or {})
        self._timeout = httpx.Timeout(timeout, connect=connect_timeout)

    async def events(self) -> AsyncGenerator[StreamEvent, None]:
        """Yield events until ``done`` or connection closure.

        Raises:
            StreamTransportError: On HTTP errors or broken connections.
        """
        try:
            async with self._http.stream(
                "GET",
                self._path,
                params=self._params,
                headers={"Accept": "text/event-stream"},
                timeout=self._timeout,
            ) as response:
                response.raise_for_status()
                async for event in parse_sse_lines(response.aiter_lines()):
                    yield event
                    if event.name == DONE_EVENT:
                        return
        except httpx.HTTPError as exc:
            logger.warning("Stream %s failed: %s", self._path, exc)
            raise StreamTransportError(str(exc)) from exc


__all__ = [
    "BATCH_EVENT",
    "DONE_EVENT",
    "ERROR_EVENT",
    "SSEStreamTransport",
    "StreamEvent",
    "StreamTransport",
    "StreamTransportError",
    "parse_sse_lines",
]
