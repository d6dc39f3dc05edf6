"""Vendor-agnostic request and response models.

Everything here is an immutable value object built once per call. Adapters
translate these into vendor payloads and parse vendor payloads back into
:class:`ChatResponse` / :class:`EmbeddingResponse`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
import json
import re
from types import MappingProxyType
from typing import Any, Literal, Union

Role = Literal["system", "user", "assistant", "tool"]

_DATA_URI_RE = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)


@dataclass(frozen=True)
class TextBlock:
    """A plain text segment of a message."""

    text: str


@dataclass(frozen=True)
class ImageBlock:
    """An image, either remote (``url``) or inline base64 (``data``)."""

    url: str | None = None
    data: str | None = None
    mime_type: str | None = None

    def __post_init__(self) -> None:
        if (self.url is None) == (self.data is None):
            raise ValueError("ImageBlock needs exactly one of url or data")

    @classmethod
    def from_url(cls, url: str) -> ImageBlock:
        """Build from a URL, splitting ``data:`` URIs into mime type + payload."""
        match = _DATA_URI_RE.match(url)
        if match:
            return cls(data=match.group(2), mime_type=match.group(1))
        return cls(url=url)

    @property
    def is_inline(self) -> bool:
        return self.data is not None

    def as_data_uri(self) -> str:
        """Rebuild the ``data:`` URI for inline images."""
        if self.data is None:
            raise ValueError("ImageBlock is not inline")
        return f"data:{self.mime_type or 'image/jpeg'};base64,{self.data}"


@dataclass(frozen=True)
class ToolCallBlock:
    """A reference to a tool call inside an assistant message."""

    id: str
    name: str
    arguments: str = "{}"


@dataclass(frozen=True)
class ToolResultBlock:
    """The result of executing a tool call."""

    tool_call_id: str
    content: str
    name: str | None = None


ContentBlock = Union[TextBlock, ImageBlock, ToolCallBlock, ToolResultBlock]


@dataclass(frozen=True)
class ToolDefinition:
    """A caller-supplied function the model may call."""

    name: str
    description: str = ""
    parameters: Mapping[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model. ``arguments`` is JSON text."""

    id: str
    name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> Any:
        return json.loads(self.arguments)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass(frozen=True)
class Message:
    """One conversational turn.

    ``content`` is plain text or an ordered tuple of content blocks. Assistant
    tool calls may be given either in ``tool_calls`` or as
    :class:`ToolCallBlock` entries; tool results either as a ``tool`` message
    (``tool_call_id`` + text content) or as :class:`ToolResultBlock` entries.
    """

    role: Role
    content: str | tuple[ContentBlock, ...] = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.content, list):
            object.__setattr__(self, "content", tuple(self.content))
        if isinstance(self.tool_calls, list):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @classmethod
    def system(cls, text: str) -> Message:
        return cls("system", text)

    @classmethod
    def user(cls, content: str | tuple[ContentBlock, ...] | list[ContentBlock]) -> Message:
        return cls("user", tuple(content) if isinstance(content, list) else content)

    @classmethod
    def assistant(
        cls, text: str = "", tool_calls: tuple[ToolCall, ...] | list[ToolCall] = ()
    ) -> Message:
        return cls("assistant", text, tool_calls=tuple(tool_calls))

    @classmethod
    def tool(cls, tool_call_id: str, content: str, *, name: str | None = None) -> Message:
        return cls("tool", content, tool_call_id=tool_call_id, name=name)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Message:
        """Build from an OpenAI-style message dict."""
        role = data.get("role", "user")
        raw_content = data.get("content")
        content: str | tuple[ContentBlock, ...]
        if raw_content is None:
            content = ""
        elif isinstance(raw_content, str):
            content = raw_content
        else:
            content = tuple(_block_from_dict(b) for b in raw_content)

        tool_calls: list[ToolCall] = []
        for tc in data.get("tool_calls") or ():
            function = tc.get("function") or {}
            arguments = function.get("arguments", tc.get("arguments", "{}"))
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments)
            tool_calls.append(
                ToolCall(
                    id=tc.get("id", ""),
                    name=function.get("name", tc.get("name", "")),
                    arguments=arguments or "{}",
                )
            )
        return cls(
            role,
            content,
            tool_calls=tuple(tool_calls),
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
        )

    @property
    def text(self) -> str:
        """Concatenated text of the message (text blocks only)."""
        if isinstance(self.content, str):
            return self.content
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    def all_tool_calls(self) -> tuple[ToolCall, ...]:
        """Tool calls from ``tool_calls`` followed by any ToolCallBlocks."""
        blocks = ()
        if not isinstance(self.content, str):
            blocks = tuple(
                ToolCall(b.id, b.name, b.arguments)
                for b in self.content
                if isinstance(b, ToolCallBlock)
            )
        return self.tool_calls + blocks


def _block_from_dict(block: Mapping[str, Any]) -> ContentBlock:
    block_type = block.get("type")
    if block_type == "image_url" or "image_url" in block:
        image = block.get("image_url")
        url = image.get("url", "") if isinstance(image, Mapping) else str(image)
        return ImageBlock.from_url(url)
    if block_type == "tool_result":
        return ToolResultBlock(
            tool_call_id=block.get("tool_call_id", block.get("tool_use_id", "")),
            content=str(block.get("content", "")),
            name=block.get("name"),
        )
    if block_type in ("tool_call", "tool_use"):
        arguments = block.get("arguments", block.get("input", {}))
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        return ToolCallBlock(block.get("id", ""), block.get("name", ""), arguments)
    if "text" in block:
        return TextBlock(str(block["text"]))
    raise ValueError(f"Unsupported content block: {dict(block)!r}")


ToolChoice = str


@dataclass(frozen=True)
class ChatOptions:
    """Optional generation parameters for a chat call.

    ``tool_choice`` is ``auto``, ``none``, ``required`` (``any`` is a
    synonym) or a tool name. ``extra`` holds vendor fields merged into the
    payload verbatim, after everything else.
    """

    model: str | None = None
    system: str | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_tokens: int | None = None
    stop: tuple[str, ...] = ()
    tools: tuple[ToolDefinition, ...] = ()
    tool_choice: ToolChoice | None = None
    response_format: str | Mapping[str, Any] | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.stop, str):
            object.__setattr__(self, "stop", (self.stop,))
        elif not isinstance(self.stop, tuple):
            object.__setattr__(self, "stop", tuple(self.stop))
        if not isinstance(self.tools, tuple):
            object.__setattr__(self, "tools", tuple(self.tools))
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    def merge(self, **changes: Any) -> ChatOptions:
        """Return a copy with ``changes`` applied."""
        return replace(self, **changes)


@dataclass(frozen=True)
class EmbeddingOptions:
    """Optional parameters for an embedding call."""

    model: str | None = None
    dimensions: int | None = None
    task_type: str | None = None
    title: str | None = None

    def merge(self, **changes: Any) -> EmbeddingOptions:
        return replace(self, **changes)


@dataclass(frozen=True)
class Usage:
    """Token accounting normalised across vendors."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def of(cls, prompt: Any, completion: Any, total: Any = None) -> Usage:
        """Build from vendor values; ``total`` defaults to prompt + completion."""
        p = _int_or_zero(prompt)
        c = _int_or_zero(completion)
        t = p + c if total is None else _int_or_zero(total)
        return cls(p, c, t)

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class ChatResponse:
    """The unified result of a chat/complete call."""

    content: str = ""
    model: str = ""
    usage: Usage = field(default_factory=Usage)
    finish_reason: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    raw: Any = None
    role: Literal["assistant"] = "assistant"

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @property
    def is_tool_call(self) -> bool:
        return self.finish_reason == "tool_calls"

    def to_message(self) -> Message:
        """Echo this response back into a conversation."""
        return Message.assistant(self.content, self.tool_calls)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "role": self.role,
            "model": self.model,
            "usage": self.usage.to_dict(),
            "finish_reason": self.finish_reason,
            "tool_calls": [tc.to_dict() for tc in self.tool_calls],
        }


@dataclass(frozen=True)
class EmbeddingResponse:
    """Embedding vectors aligned index-for-index with the input."""

    embeddings: tuple[tuple[float, ...], ...] = ()
    model: str = ""
    usage: Usage = field(default_factory=Usage)
    raw: Any = None

    @property
    def first(self) -> tuple[float, ...]:
        return self.embeddings[0] if self.embeddings else ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "embeddings": [list(e) for e in self.embeddings],
            "model": self.model,
            "usage": self.usage.to_dict(),
        }


def _int_or_zero(value: Any) -> int:
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
