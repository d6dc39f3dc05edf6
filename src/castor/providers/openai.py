"""OpenAI Chat Completions provider."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from castor.errors import OpenAIError
from castor.models import (
    ChatOptions,
    ChatResponse,
    EmbeddingResponse,
    ImageBlock,
    Message,
    TextBlock,
    ToolCall,
    ToolResultBlock,
    Usage,
)
from castor.providers._utils import (
    apply_extra,
    map_finish_reason,
    new_call_id,
    normalize_arguments,
    normalize_tool_choice,
)
from castor.providers.base import (
    HTTPProvider,
    ProviderCapabilities,
    coerce_embedding_options,
    coerce_messages,
    coerce_options,
)
from castor.providers.streaming import StreamingResponse

if TYPE_CHECKING:
    from collections.abc import Sequence

    import httpx

    from castor.config import OpenAIConfig
    from castor.models import EmbeddingOptions, ToolDefinition
    from castor.providers.base import MessageLike

log = logging.getLogger(__name__)

FINISH_REASONS: dict[str, str] = {
    "stop": "stop",
    "length": "length",
    "tool_calls": "tool_calls",
    "function_call": "tool_calls",
    "content_filter": "content_filter",
}

_REASONING_MODEL_FAMILIES = ("o1", "o3", "o4")
_JSON_INSTRUCTION = "Respond with valid JSON."
# Only the v3 embedding models accept a ``dimensions`` override.
_FIXED_DIMENSION_MODELS = frozenset({"text-embedding-ada-002"})


def is_reasoning_model(model: str) -> bool:
    """``o1``/``o3``/``o4`` and their ``-suffixed`` variants."""
    return any(
        model == family or model.startswith(f"{family}-")
        for family in _REASONING_MODEL_FAMILIES
    )


class OpenAIStream(StreamingResponse):
    """Decoder for ``chat.completion.chunk`` events."""

    provider = "openai"
    finish_reasons = FINISH_REASONS

    def _process_event(self, event: dict[str, Any]) -> str | None:
        model = event.get("model")
        if isinstance(model, str) and model:
            self.model = model

        usage = event.get("usage")
        if isinstance(usage, dict):
            self._set_usage(
                prompt=usage.get("prompt_tokens"),
                completion=usage.get("completion_tokens"),
                total=usage.get("total_tokens"),
            )

        choices = event.get("choices") or []
        if not choices:
            return None
        choice = choices[0]
        self._set_finish(choice.get("finish_reason"))
        delta = choice.get("delta") or {}

        for fragment in delta.get("tool_calls") or ():
            index = fragment.get("index", 0)
            function = fragment.get("function") or {}
            if not self._has_tool_call(index):
                self._start_tool_call(
                    index, fragment.get("id") or "", function.get("name") or ""
                )
            else:
                self._update_tool_call(
                    index, call_id=fragment.get("id"), name=function.get("name")
                )
            arguments = function.get("arguments")
            if isinstance(arguments, str):
                self._append_arguments(arguments, index)

        content = delta.get("content")
        return content if isinstance(content, str) else None


class OpenAIProvider(HTTPProvider):
    """OpenAI Chat Completions, Embeddings, and Models endpoints."""

    name = "openai"
    error_cls = OpenAIError
    models = (
        "gpt-4o",
        "gpt-4o-mini",
        "gpt-4-turbo",
        "gpt-4",
        "gpt-3.5-turbo",
        "o1",
        "o1-mini",
        "o3-mini",
    )
    embedding_models = (
        "text-embedding-3-small",
        "text-embedding-3-large",
        "text-embedding-ada-002",
    )

    config: OpenAIConfig

    def __init__(
        self, config: OpenAIConfig, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        super().__init__(config, transport=transport)

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(embeddings=True, json_mode=True)

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        if self.config.organization:
            headers["OpenAI-Organization"] = self.config.organization
        return headers

    # ------------------------------------------------------------------ #
    # Chat
    # ------------------------------------------------------------------ #

    async def chat(
        self, messages: Sequence[MessageLike], options: ChatOptions | None = None
    ) -> ChatResponse:
        options = coerce_options(options)
        payload = self.build_payload(coerce_messages(messages), options)
        data = await self._post_json("chat/completions", payload)
        return parse_response(data, model=payload["model"])

    async def chat_stream(
        self, messages: Sequence[MessageLike], options: ChatOptions | None = None
    ) -> OpenAIStream:
        options = coerce_options(options)
        payload = self.build_payload(coerce_messages(messages), options, stream=True)
        response = await self._open_stream("chat/completions", payload)
        return OpenAIStream.from_response(response, model=payload["model"])

    async def chat_json(
        self, messages: Sequence[MessageLike], options: ChatOptions | None = None
    ) -> ChatResponse:
        """Chat in JSON mode.

        OpenAI rejects JSON mode unless the conversation mentions JSON, so a
        short system instruction is prepended when no message does.
        """
        options = coerce_options(options).merge(response_format="json_object")
        conversation = coerce_messages(messages)
        mentions_json = any("json" in m.text.lower() for m in conversation) or (
            options.system is not None and "json" in options.system.lower()
        )
        if not mentions_json:
            conversation.insert(0, Message.system(_JSON_INSTRUCTION))
        return await self.chat(conversation, options)

    def build_payload(
        self, messages: Sequence[Message], options: ChatOptions, *, stream: bool = False
    ) -> dict[str, Any]:
        """Translate unified messages and options into a request body."""
        model = options.model or self.config.default_model
        payload: dict[str, Any] = {
            "model": model,
            "messages": _build_messages(messages, options),
        }

        if is_reasoning_model(model):
            if options.max_tokens is not None:
                payload["max_completion_tokens"] = options.max_tokens
        else:
            payload["max_tokens"] = (
                options.max_tokens
                if options.max_tokens is not None
                else self.config.max_tokens
            )

        if options.temperature is not None:
            payload["temperature"] = options.temperature
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.stop:
            payload["stop"] = list(options.stop)
        if options.tools:
            payload["tools"] = [_tool_to_wire(t) for t in options.tools]
        tool_choice = _tool_choice_to_wire(options.tool_choice)
        if tool_choice is not None:
            payload["tool_choice"] = tool_choice
        response_format = _response_format_to_wire(options.response_format)
        if response_format is not None:
            payload["response_format"] = response_format
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}

        return apply_extra(payload, options.extra)

    # ------------------------------------------------------------------ #
    # Embeddings and models
    # ------------------------------------------------------------------ #

    async def embed(
        self, input: str | Sequence[str], options: EmbeddingOptions | None = None
    ) -> EmbeddingResponse:
        options = coerce_embedding_options(options)
        model = options.model or self.config.default_embedding_model
        payload: dict[str, Any] = {
            "model": model,
            "input": input if isinstance(input, str) else list(input),
        }
        if options.dimensions is not None and model not in _FIXED_DIMENSION_MODELS:
            payload["dimensions"] = options.dimensions

        data = await self._post_json("embeddings", payload, phase="embed")
        items = sorted(data.get("data") or [], key=lambda item: item.get("index", 0))
        usage = data.get("usage") or {}
        return EmbeddingResponse(
            embeddings=tuple(
                tuple(float(x) for x in item.get("embedding") or ()) for item in items
            ),
            model=data.get("model") or model,
            usage=Usage.of(usage.get("prompt_tokens"), 0, usage.get("total_tokens")),
            raw=data,
        )

    async def list_models(self) -> list[str]:
        """Fetch model ids available to this API key."""
        data = await self._get_json("models")
        return [m["id"] for m in data.get("data") or () if isinstance(m, dict) and "id" in m]


def parse_response(data: dict[str, Any], *, model: str) -> ChatResponse:
    """Parse a ``chat.completion`` body into a ChatResponse."""
    choices = data.get("choices") or [{}]
    choice = choices[0]
    message = choice.get("message") or {}

    tool_calls: list[ToolCall] = []
    for tc in message.get("tool_calls") or ():
        function = tc.get("function") or {}
        tool_calls.append(
            ToolCall(
                id=tc.get("id") or new_call_id(),
                name=function.get("name", ""),
                arguments=normalize_arguments(
                    function.get("arguments"), provider="openai"
                ),
            )
        )

    usage = data.get("usage") or {}
    content = message.get("content")
    return ChatResponse(
        content=content if isinstance(content, str) else "",
        model=data.get("model") or model,
        usage=Usage.of(
            usage.get("prompt_tokens"),
            usage.get("completion_tokens"),
            usage.get("total_tokens"),
        ),
        finish_reason=map_finish_reason(FINISH_REASONS, choice.get("finish_reason")),
        tool_calls=tuple(tool_calls),
        raw=data,
    )


def _build_messages(
    messages: Sequence[Message], options: ChatOptions
) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    if options.system is not None:
        out.append({"role": "system", "content": options.system})

    for message in messages:
        if message.role == "system":
            if options.system is None:
                out.append({"role": "system", "content": message.text})
            continue
        if message.role == "tool":
            out.append(
                {
                    "role": "tool",
                    "tool_call_id": message.tool_call_id or "",
                    "content": message.text,
                }
            )
            continue

        blocks = () if isinstance(message.content, str) else message.content
        # Tool results must directly follow the assistant turn that asked for them.
        for block in blocks:
            if isinstance(block, ToolResultBlock):
                out.append(
                    {
                        "role": "tool",
                        "tool_call_id": block.tool_call_id,
                        "content": block.content,
                    }
                )

        tool_calls = message.all_tool_calls()
        if message.role == "assistant" and tool_calls:
            out.append(
                {
                    "role": "assistant",
                    "content": message.text or None,
                    "tool_calls": [tc.to_dict() for tc in tool_calls],
                }
            )
            continue

        content = _content_to_wire(message)
        if content is None:
            continue
        entry: dict[str, Any] = {"role": message.role, "content": content}
        if message.name:
            entry["name"] = message.name
        out.append(entry)
    return out


def _content_to_wire(message: Message) -> str | list[dict[str, Any]] | None:
    if isinstance(message.content, str):
        return message.content
    parts: list[dict[str, Any]] = []
    for block in message.content:
        if isinstance(block, TextBlock):
            parts.append({"type": "text", "text": block.text})
        elif isinstance(block, ImageBlock):
            url = block.as_data_uri() if block.is_inline else block.url
            parts.append({"type": "image_url", "image_url": {"url": url}})
    return parts or None


def _tool_to_wire(tool: ToolDefinition) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": dict(tool.parameters),
        },
    }


def _tool_choice_to_wire(choice: str | None) -> str | dict[str, Any] | None:
    choice = normalize_tool_choice(choice)
    if choice is None or choice in ("auto", "none", "required"):
        return choice
    return {"type": "function", "function": {"name": choice}}


def _response_format_to_wire(response_format: Any) -> dict[str, Any] | None:
    if response_format is None:
        return None
    if isinstance(response_format, str):
        return {"type": response_format}
    if response_format.get("type") in ("json_object", "json_schema", "text"):
        return dict(response_format)
    return {
        "type": "json_schema",
        "json_schema": {"name": "response", "schema": dict(response_format)},
    }
