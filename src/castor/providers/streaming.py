"""Incremental decoding of vendor event streams.

All three vendors stream ``data:``-prefixed JSON lines. :class:`StreamingResponse`
owns the line buffer and the transport; vendor subclasses only interpret one
decoded event at a time via :meth:`StreamingResponse._process_event`, yielding
text and recording tool calls, usage, and the finish code as side state.

Example:
    stream = await provider.chat_stream([Message.user("Hi")])
    async with stream:
        async for delta in stream:
            print(delta, end="")
    response = await stream.collect()
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import TYPE_CHECKING, Any, ClassVar

import httpx

from castor.models import ChatResponse, ToolCall, Usage
from castor.providers._errors import wrap_transport_error
from castor.providers._utils import map_finish_reason, normalize_arguments

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator, Hashable, Mapping

log = logging.getLogger(__name__)

_DATA_PREFIX = "data:"
_DONE_SENTINEL = "[DONE]"


@dataclass
class _ToolCallBuffer:
    id: str
    name: str
    fragments: list[str] = field(default_factory=list)


class StreamingResponse:
    """A single-consumer, forward-only async stream of text deltas.

    Iterating yields non-empty text fragments. Once exhausted (or closed) the
    stream yields nothing. :meth:`collect` drains the remainder and builds a
    :class:`~castor.models.ChatResponse` from everything seen.
    """

    provider: ClassVar[str] = "unknown"
    finish_reasons: ClassVar[Mapping[str, str]] = {}

    def __init__(
        self,
        chunks: AsyncIterable[bytes],
        *,
        model: str,
        response: httpx.Response | None = None,
    ) -> None:
        self.model = model
        self._chunks = chunks
        self._response = response
        self._iterator: AsyncIterator[str] | None = None
        self._closed = False

        self._content: list[str] = []
        self._tool_calls: dict[Hashable, _ToolCallBuffer] = {}
        self._last_tool_key: Hashable | None = None
        self._prompt_tokens: int | None = None
        self._completion_tokens: int | None = None
        self._total_tokens: int | None = None
        self._finish_code: str | None = None
        self._events: list[dict[str, Any]] = []

    @classmethod
    def from_response(cls, response: httpx.Response, *, model: str) -> StreamingResponse:
        """Wrap an open streaming httpx response; the stream now owns it."""
        return cls(response.aiter_bytes(), model=model, response=response)

    # ------------------------------------------------------------------ #
    # Consumer surface
    # ------------------------------------------------------------------ #

    def __aiter__(self) -> AsyncIterator[str]:
        if self._iterator is None:
            self._iterator = self._iterate()
        return self._iterator

    async def __aenter__(self) -> StreamingResponse:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @property
    def text(self) -> str:
        """Text accumulated so far."""
        return "".join(self._content)

    @property
    def closed(self) -> bool:
        return self._closed

    async def collect(self) -> ChatResponse:
        """Drain whatever is left and return the accumulated response."""
        async for _ in self:
            pass
        return self._build_response()

    async def aclose(self) -> None:
        """Stop reading and release the transport connection."""
        self._closed = True
        iterator = self._iterator
        if iterator is not None and hasattr(iterator, "aclose"):
            await iterator.aclose()
        await self._release()

    # ------------------------------------------------------------------ #
    # Line state machine
    # ------------------------------------------------------------------ #

    async def _iterate(self) -> AsyncIterator[str]:
        if self._closed:
            return
        buffer = b""
        try:
            try:
                async for chunk in self._chunks:
                    buffer += chunk
                    while True:
                        newline = buffer.find(b"\n")
                        if newline < 0:
                            break
                        line, buffer = buffer[:newline], buffer[newline + 1 :]
                        text = self._handle_line(line)
                        if text:
                            self._content.append(text)
                            yield text
            except httpx.RequestError as e:
                raise wrap_transport_error(e, provider=self.provider, phase="stream") from e
            if buffer.strip():
                text = self._handle_line(buffer)
                if text:
                    self._content.append(text)
                    yield text
        finally:
            self._closed = True
            await self._release()

    def _handle_line(self, raw: bytes) -> str | None:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line or line.startswith((":", "event:", "id:", "retry:")):
            return None
        if not line.startswith(_DATA_PREFIX):
            log.debug("Skipping unrecognised %s stream line", self.provider)
            return None
        payload = line[len(_DATA_PREFIX) :].strip()
        if payload == _DONE_SENTINEL:
            return None
        try:
            event = json.loads(payload)
        except ValueError:
            log.debug("Dropping malformed %s stream line", self.provider)
            return None
        if not isinstance(event, dict):
            return None
        self._events.append(event)
        return self._process_event(event)

    def _process_event(self, event: dict[str, Any]) -> str | None:
        """Interpret one decoded event; return text to yield, if any."""
        raise NotImplementedError

    async def _release(self) -> None:
        response = self._response
        if response is None:
            return
        self._response = None
        await response.aclose()

    # ------------------------------------------------------------------ #
    # Side-state helpers for vendor decoders
    # ------------------------------------------------------------------ #

    def _start_tool_call(
        self, key: Hashable | None, call_id: str, name: str, arguments: str = ""
    ) -> None:
        if key is None:
            key = len(self._tool_calls)
        buffer = _ToolCallBuffer(id=call_id, name=name)
        if arguments:
            buffer.fragments.append(arguments)
        self._tool_calls[key] = buffer
        self._last_tool_key = key

    def _append_arguments(self, fragment: str, key: Hashable | None = None) -> None:
        """Append a partial-JSON fragment to ``key`` or the latest tool call."""
        if key is None:
            key = self._last_tool_key
        buffer = self._tool_calls.get(key) if key is not None else None
        if buffer is None:
            log.debug("Dropping %s argument fragment with no open tool call", self.provider)
            return
        if fragment:
            buffer.fragments.append(fragment)

    def _has_tool_call(self, key: Hashable) -> bool:
        return key in self._tool_calls

    def _update_tool_call(
        self, key: Hashable, *, call_id: str | None = None, name: str | None = None
    ) -> None:
        buffer = self._tool_calls[key]
        if call_id:
            buffer.id = call_id
        if name:
            buffer.name = name

    def _set_usage(
        self,
        *,
        prompt: Any = None,
        completion: Any = None,
        total: Any = None,
    ) -> None:
        if prompt is not None:
            self._prompt_tokens = int(prompt)
        if completion is not None:
            self._completion_tokens = int(completion)
        if total is not None:
            self._total_tokens = int(total)

    def _set_finish(self, code: Any) -> None:
        if code is not None:
            self._finish_code = str(code)

    def _build_response(self) -> ChatResponse:
        tool_calls = tuple(
            ToolCall(
                id=buffer.id,
                name=buffer.name,
                arguments=normalize_arguments(
                    "".join(buffer.fragments), provider=self.provider
                ),
            )
            for buffer in self._tool_calls.values()
        )
        return ChatResponse(
            content=self.text,
            model=self.model,
            usage=Usage.of(
                self._prompt_tokens, self._completion_tokens, self._total_tokens
            ),
            finish_reason=map_finish_reason(self.finish_reasons, self._finish_code),
            tool_calls=tool_calls,
            raw=tuple(self._events),
        )
