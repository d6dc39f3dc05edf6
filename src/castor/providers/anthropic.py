"""Anthropic Messages API provider."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from castor.errors import AnthropicError, UnsupportedOperationError
from castor.models import (
    ChatOptions,
    ChatResponse,
    ImageBlock,
    Message,
    TextBlock,
    ToolCall,
    ToolCallBlock,
    ToolResultBlock,
    Usage,
)
from castor.providers._errors import build_api_error
from castor.providers._utils import (
    apply_extra,
    decode_arguments,
    map_finish_reason,
    new_call_id,
    normalize_tool_choice,
    response_schema,
    split_system,
)
from castor.providers.base import (
    HTTPProvider,
    ProviderCapabilities,
    coerce_messages,
    coerce_options,
)
from castor.providers.streaming import StreamingResponse

if TYPE_CHECKING:
    from collections.abc import Sequence

    import httpx

    from castor.config import AnthropicConfig
    from castor.models import ContentBlock, EmbeddingOptions, EmbeddingResponse, ToolDefinition
    from castor.providers.base import MessageLike

log = logging.getLogger(__name__)

FINISH_REASONS: dict[str, str] = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
    "refusal": "content_filter",
}

_MESSAGES_PATH = "v1/messages"

# Mid-stream error events carry no HTTP status; use the one the type maps to.
_STREAM_ERROR_STATUS: dict[str, int] = {
    "invalid_request_error": 400,
    "authentication_error": 401,
    "permission_error": 403,
    "not_found_error": 404,
    "rate_limit_error": 429,
    "api_error": 500,
    "overloaded_error": 529,
}


class AnthropicStream(StreamingResponse):
    """Decoder for Messages API server-sent events."""

    provider = "anthropic"
    finish_reasons = FINISH_REASONS

    def _process_event(self, event: dict[str, Any]) -> str | None:
        event_type = event.get("type")

        if event_type == "message_start":
            message = event.get("message") or {}
            if message.get("model"):
                self.model = message["model"]
            usage = message.get("usage") or {}
            self._set_usage(
                prompt=usage.get("input_tokens"),
                completion=usage.get("output_tokens"),
            )
            return None

        if event_type == "content_block_start":
            block = event.get("content_block") or {}
            if block.get("type") == "tool_use":
                initial = block.get("input")
                self._start_tool_call(
                    event.get("index"),
                    block.get("id") or new_call_id(),
                    block.get("name", ""),
                    json.dumps(initial) if initial else "",
                )
                return None
            if block.get("type") == "text":
                return block.get("text") or None
            return None

        if event_type == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta":
                return delta.get("text") or None
            if delta.get("type") == "input_json_delta":
                self._append_arguments(delta.get("partial_json") or "")
            return None

        if event_type == "message_delta":
            delta = event.get("delta") or {}
            self._set_finish(delta.get("stop_reason"))
            usage = event.get("usage") or {}
            self._set_usage(
                prompt=usage.get("input_tokens"),
                completion=usage.get("output_tokens"),
            )
            return None

        if event_type == "error":
            error_type = (event.get("error") or {}).get("type")
            status = _STREAM_ERROR_STATUS.get(error_type, 500)
            raise build_api_error(AnthropicError, event, status)

        return None


class AnthropicProvider(HTTPProvider):
    """Anthropic Messages API provider."""

    name = "anthropic"
    error_cls = AnthropicError
    models = (
        "claude-sonnet-4-20250514",
        "claude-opus-4-20250514",
        "claude-3-5-sonnet-20241022",
        "claude-3-5-haiku-20241022",
        "claude-3-opus-20240229",
        "claude-3-sonnet-20240229",
        "claude-3-haiku-20240307",
    )

    config: AnthropicConfig

    def __init__(
        self,
        config: AnthropicConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config, transport=transport)

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(embeddings=False)

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.config.api_key,
            "anthropic-version": self.config.api_version,
            "Content-Type": "application/json",
        }

    async def chat(
        self, messages: Sequence[MessageLike], options: ChatOptions | None = None
    ) -> ChatResponse:
        options = coerce_options(options)
        payload = self.build_payload(coerce_messages(messages), options)
        data = await self._post_json(_MESSAGES_PATH, payload)
        return parse_response(data, model=payload["model"])

    async def chat_stream(
        self, messages: Sequence[MessageLike], options: ChatOptions | None = None
    ) -> AnthropicStream:
        options = coerce_options(options)
        payload = self.build_payload(coerce_messages(messages), options, stream=True)
        response = await self._open_stream(_MESSAGES_PATH, payload)
        return AnthropicStream.from_response(response, model=payload["model"])

    async def embed(
        self, input: str | Sequence[str], options: EmbeddingOptions | None = None
    ) -> EmbeddingResponse:
        """Anthropic has no embeddings endpoint; always raises."""
        raise UnsupportedOperationError(
            "Anthropic does not support embeddings",
            hint="Use the openai or gemini provider for embeddings.",
        )

    def build_payload(
        self, messages: Sequence[Message], options: ChatOptions, *, stream: bool = False
    ) -> dict[str, Any]:
        """Translate unified messages and options into a Messages API body."""
        system, rest = split_system(messages, options)
        payload: dict[str, Any] = {
            "model": options.model or self.config.default_model,
            "max_tokens": (
                options.max_tokens
                if options.max_tokens is not None
                else self.config.max_tokens
            ),
            "messages": _build_messages(rest),
        }
        if system is not None:
            payload["system"] = system
        if options.temperature is not None:
            payload["temperature"] = options.temperature
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.top_k is not None:
            payload["top_k"] = options.top_k
        if options.stop:
            payload["stop_sequences"] = list(options.stop)
        if options.tools:
            payload["tools"] = [_tool_to_wire(t) for t in options.tools]
        tool_choice = _tool_choice_to_wire(options.tool_choice)
        if tool_choice is not None:
            payload["tool_choice"] = tool_choice
        json_mode, _ = response_schema(options.response_format)
        if json_mode:
            log.debug("Anthropic has no JSON response mode; ignoring response_format")
        if stream:
            payload["stream"] = True
        return apply_extra(payload, options.extra)


def parse_response(data: dict[str, Any], *, model: str) -> ChatResponse:
    """Parse an Anthropic Message body into a ChatResponse."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    for block in data.get("content") or ():
        block_type = block.get("type")
        if block_type == "text":
            text_parts.append(block.get("text", ""))
        elif block_type == "tool_use":
            tool_calls.append(
                ToolCall(
                    id=block.get("id") or new_call_id(),
                    name=block.get("name", ""),
                    arguments=json.dumps(block.get("input") or {}),
                )
            )

    usage = data.get("usage") or {}
    return ChatResponse(
        content="".join(text_parts),
        model=data.get("model") or model,
        usage=Usage.of(usage.get("input_tokens"), usage.get("output_tokens")),
        finish_reason=map_finish_reason(FINISH_REASONS, data.get("stop_reason")),
        tool_calls=tuple(tool_calls),
        raw=data,
    )


def _build_messages(messages: Sequence[Message]) -> list[dict[str, Any]]:
    """Build Messages API turns; consecutive same-role turns are merged."""
    out: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "tool":
            _append_message(
                out,
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": message.tool_call_id or "",
                            "content": message.text,
                        }
                    ],
                },
            )
            continue

        if message.role == "assistant":
            blocks = _blocks_to_wire(message.content)
            blocks.extend(_tool_use(tc) for tc in message.tool_calls)
            if blocks:
                _append_message(out, {"role": "assistant", "content": blocks})
            continue

        if isinstance(message.content, str):
            _append_message(out, {"role": "user", "content": message.content})
        else:
            blocks = _blocks_to_wire(message.content)
            if blocks:
                _append_message(out, {"role": "user", "content": blocks})
    return out


def _blocks_to_wire(content: str | tuple[ContentBlock, ...]) -> list[dict[str, Any]]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    blocks: list[dict[str, Any]] = []
    for block in content:
        if isinstance(block, TextBlock):
            if block.text:
                blocks.append({"type": "text", "text": block.text})
        elif isinstance(block, ImageBlock):
            blocks.append(_image_to_wire(block))
        elif isinstance(block, ToolCallBlock):
            blocks.append(_tool_use(block))
        elif isinstance(block, ToolResultBlock):
            blocks.append(
                {
                    "type": "tool_result",
                    "tool_use_id": block.tool_call_id,
                    "content": block.content,
                }
            )
    return blocks


def _image_to_wire(image: ImageBlock) -> dict[str, Any]:
    if image.is_inline:
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": image.mime_type or "image/jpeg",
                "data": image.data,
            },
        }
    return {"type": "image", "source": {"type": "url", "url": image.url}}


def _tool_use(call: ToolCall | ToolCallBlock) -> dict[str, Any]:
    return {
        "type": "tool_use",
        "id": call.id,
        "name": call.name,
        "input": decode_arguments(call.arguments),
    }


def _tool_to_wire(tool: ToolDefinition) -> dict[str, Any]:
    """Convert a tool definition to Anthropic format (parameters → input_schema)."""
    return {
        "name": tool.name,
        "description": tool.description,
        "input_schema": dict(tool.parameters),
    }


def _tool_choice_to_wire(choice: str | None) -> dict[str, str] | None:
    choice = normalize_tool_choice(choice)
    if choice is None:
        return None
    if choice == "required":
        return {"type": "any"}
    if choice in ("auto", "none"):
        return {"type": choice}
    return {"type": "tool", "name": choice}


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    Anthropic requires strict user/assistant alternation, e.g. a tool_result
    user turn followed by a plain user prompt becomes one user message.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        prev = messages[-1]
        prev_content = prev["content"]
        new_content = msg["content"]
        if isinstance(prev_content, str):
            prev_content = [{"type": "text", "text": prev_content}]
        if isinstance(new_content, str):
            new_content = [{"type": "text", "text": new_content}]
        prev["content"] = prev_content + new_content
    else:
        messages.append(msg)
