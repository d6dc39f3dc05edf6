"""Gemini generateContent provider."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from castor.errors import GeminiError
from castor.models import (
    ChatOptions,
    ChatResponse,
    EmbeddingResponse,
    ImageBlock,
    Message,
    TextBlock,
    ToolCall,
    ToolCallBlock,
    ToolResultBlock,
    Usage,
)
from castor.providers._utils import (
    apply_extra,
    decode_arguments,
    guess_image_mime,
    map_finish_reason,
    new_call_id,
    normalize_tool_choice,
    response_schema,
    split_system,
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

    from castor.config import GeminiConfig
    from castor.models import EmbeddingOptions, ToolDefinition
    from castor.providers.base import MessageLike

log = logging.getLogger(__name__)

FINISH_REASONS: dict[str, str] = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
    "BLOCKLIST": "content_filter",
    "PROHIBITED_CONTENT": "content_filter",
    "SPII": "content_filter",
    "TOOL_CALL": "tool_calls",
    "FUNCTION_CALL": "tool_calls",
}

_TOOL_MODES = {"auto": "AUTO", "none": "NONE", "required": "ANY"}


def _model_id(model: str) -> str:
    return model.removeprefix("models/")


def _split_parts(parts: Sequence[dict[str, Any]]) -> tuple[str, list[ToolCall]]:
    """Split candidate parts into visible text and function calls.

    ``thought`` parts are reasoning summaries and are not part of the answer.
    """
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    for part in parts:
        if "functionCall" in part:
            call = part.get("functionCall") or {}
            tool_calls.append(
                ToolCall(
                    id=call.get("id") or new_call_id(),
                    name=call.get("name", ""),
                    arguments=json.dumps(call.get("args") or {}),
                )
            )
        elif isinstance(part.get("text"), str) and not part.get("thought"):
            text_parts.append(part["text"])
    return "".join(text_parts), tool_calls


def _first_candidate(data: dict[str, Any]) -> dict[str, Any]:
    candidates = data.get("candidates") or []
    return candidates[0] if candidates else {}


def _finish_code(data: dict[str, Any], candidate: dict[str, Any]) -> Any:
    """A blocked prompt has no candidates; report its block reason instead."""
    code = candidate.get("finishReason")
    if code is None:
        code = (data.get("promptFeedback") or {}).get("blockReason")
    return code


class GeminiStream(StreamingResponse):
    """Decoder for ``streamGenerateContent?alt=sse`` events."""

    provider = "gemini"
    finish_reasons = FINISH_REASONS

    def _process_event(self, event: dict[str, Any]) -> str | None:
        if event.get("modelVersion"):
            self.model = event["modelVersion"]

        usage = event.get("usageMetadata")
        if isinstance(usage, dict):
            self._set_usage(
                prompt=usage.get("promptTokenCount"),
                completion=usage.get("candidatesTokenCount"),
                total=usage.get("totalTokenCount"),
            )

        candidate = _first_candidate(event)
        self._set_finish(_finish_code(event, candidate))
        parts = (candidate.get("content") or {}).get("parts") or []
        text, tool_calls = _split_parts(parts)
        # Gemini sends each functionCall whole, never in fragments.
        for call in tool_calls:
            self._start_tool_call(None, call.id, call.name, call.arguments)
        return text or None


class GeminiProvider(HTTPProvider):
    """Gemini generateContent, streamGenerateContent, and embedding endpoints."""

    name = "gemini"
    error_cls = GeminiError
    models = (
        "gemini-2.0-flash-exp",
        "gemini-1.5-pro",
        "gemini-1.5-pro-latest",
        "gemini-1.5-flash",
        "gemini-1.5-flash-latest",
        "gemini-1.0-pro",
    )
    embedding_models = ("text-embedding-004", "embedding-001")

    config: GeminiConfig

    def __init__(
        self, config: GeminiConfig, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        super().__init__(config, transport=transport)

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(embeddings=True, json_mode=True)

    def _params(self) -> dict[str, str]:
        return {"key": self.config.api_key}

    # ------------------------------------------------------------------ #
    # Chat
    # ------------------------------------------------------------------ #

    async def chat(
        self, messages: Sequence[MessageLike], options: ChatOptions | None = None
    ) -> ChatResponse:
        options = coerce_options(options)
        model = _model_id(options.model or self.config.default_model)
        payload = self.build_payload(coerce_messages(messages), options)
        data = await self._post_json(f"models/{model}:generateContent", payload)
        return parse_response(data, model=model)

    async def chat_stream(
        self, messages: Sequence[MessageLike], options: ChatOptions | None = None
    ) -> GeminiStream:
        options = coerce_options(options)
        model = _model_id(options.model or self.config.default_model)
        payload = self.build_payload(coerce_messages(messages), options)
        response = await self._open_stream(
            f"models/{model}:streamGenerateContent", payload, params={"alt": "sse"}
        )
        return GeminiStream.from_response(response, model=model)

    def build_payload(
        self, messages: Sequence[Message], options: ChatOptions
    ) -> dict[str, Any]:
        """Translate unified messages and options into a generateContent body.

        The model travels in the URL path, not the body.
        """
        system, rest = split_system(messages, options)
        payload: dict[str, Any] = {"contents": _build_contents(rest)}
        if system is not None:
            payload["systemInstruction"] = {"parts": [{"text": system}]}

        generation_config: dict[str, Any] = {
            "maxOutputTokens": (
                options.max_tokens
                if options.max_tokens is not None
                else self.config.max_tokens
            )
        }
        if options.temperature is not None:
            generation_config["temperature"] = options.temperature
        if options.top_p is not None:
            generation_config["topP"] = options.top_p
        if options.top_k is not None:
            generation_config["topK"] = options.top_k
        if options.stop:
            generation_config["stopSequences"] = list(options.stop)
        json_mode, schema = response_schema(options.response_format)
        if json_mode:
            generation_config["responseMimeType"] = "application/json"
        if schema is not None:
            generation_config["responseSchema"] = dict(schema)
        payload["generationConfig"] = generation_config

        if options.tools:
            payload["tools"] = [
                {"functionDeclarations": [_tool_to_wire(t) for t in options.tools]}
            ]
        tool_config = _tool_choice_to_wire(options.tool_choice)
        if tool_config is not None:
            payload["toolConfig"] = tool_config
        return apply_extra(payload, options.extra)

    # ------------------------------------------------------------------ #
    # Embeddings
    # ------------------------------------------------------------------ #

    async def embed(
        self, input: str | Sequence[str], options: EmbeddingOptions | None = None
    ) -> EmbeddingResponse:
        """Embed a single text via embedContent, a list via batchEmbedContents."""
        if not isinstance(input, str):
            return await self.batch_embed(input, options)
        options = coerce_embedding_options(options)
        model = _model_id(options.model or self.config.default_embedding_model)
        payload = _embed_request(model, input, options)
        data = await self._post_json(
            f"models/{model}:embedContent", payload, phase="embed"
        )
        values = (data.get("embedding") or {}).get("values") or ()
        return EmbeddingResponse(
            embeddings=(tuple(float(x) for x in values),),
            model=model,
            usage=Usage(),
            raw=data,
        )

    async def batch_embed(
        self, inputs: Sequence[str], options: EmbeddingOptions | None = None
    ) -> EmbeddingResponse:
        options = coerce_embedding_options(options)
        model = _model_id(options.model or self.config.default_embedding_model)
        payload = {"requests": [_embed_request(model, text, options) for text in inputs]}
        data = await self._post_json(
            f"models/{model}:batchEmbedContents", payload, phase="embed"
        )
        return EmbeddingResponse(
            embeddings=tuple(
                tuple(float(x) for x in item.get("values") or ())
                for item in data.get("embeddings") or ()
            ),
            model=model,
            usage=Usage(),
            raw=data,
        )


def parse_response(data: dict[str, Any], *, model: str) -> ChatResponse:
    """Parse a GenerateContentResponse body into a ChatResponse."""
    candidate = _first_candidate(data)
    parts = (candidate.get("content") or {}).get("parts") or []
    text, tool_calls = _split_parts(parts)
    usage = data.get("usageMetadata") or {}
    return ChatResponse(
        content=text,
        model=data.get("modelVersion") or model,
        usage=Usage.of(
            usage.get("promptTokenCount"),
            usage.get("candidatesTokenCount"),
            usage.get("totalTokenCount"),
        ),
        finish_reason=map_finish_reason(FINISH_REASONS, _finish_code(data, candidate)),
        tool_calls=tuple(tool_calls),
        raw=data,
    )


def _embed_request(model: str, text: str, options: EmbeddingOptions) -> dict[str, Any]:
    request: dict[str, Any] = {
        "model": f"models/{model}",
        "content": {"parts": [{"text": text}]},
    }
    if options.task_type is not None:
        request["taskType"] = options.task_type
    if options.title is not None:
        request["title"] = options.title
    if options.dimensions is not None:
        request["outputDimensionality"] = options.dimensions
    return request


def _build_contents(messages: Sequence[Message]) -> list[dict[str, Any]]:
    contents: list[dict[str, Any]] = []
    # functionResponse needs the function name; results only carry the call id.
    call_names: dict[str, str] = {}

    for message in messages:
        if message.role == "tool":
            call_id = message.tool_call_id or ""
            name = message.name or call_names.get(call_id) or call_id
            contents.append(
                {
                    "role": "user",
                    "parts": [_function_response(name, message.text)],
                }
            )
            continue

        parts: list[dict[str, Any]] = []
        if isinstance(message.content, str):
            if message.content:
                parts.append({"text": message.content})
        else:
            for block in message.content:
                if isinstance(block, TextBlock):
                    parts.append({"text": block.text})
                elif isinstance(block, ImageBlock):
                    parts.append(_image_to_wire(block))
                elif isinstance(block, ToolCallBlock):
                    call_names[block.id] = block.name
                    parts.append(
                        {
                            "functionCall": {
                                "name": block.name,
                                "args": decode_arguments(block.arguments),
                            }
                        }
                    )
                elif isinstance(block, ToolResultBlock):
                    name = (
                        block.name
                        or call_names.get(block.tool_call_id)
                        or block.tool_call_id
                    )
                    parts.append(_function_response(name, block.content))

        for call in message.tool_calls:
            call_names[call.id] = call.name
            parts.append(
                {
                    "functionCall": {
                        "name": call.name,
                        "args": decode_arguments(call.arguments),
                    }
                }
            )

        if not parts:
            continue
        role = "model" if message.role == "assistant" else "user"
        contents.append({"role": role, "parts": parts})
    return contents


def _function_response(name: str, content: str) -> dict[str, Any]:
    """Gemini wants an object; JSON objects pass through, anything else is wrapped."""
    try:
        decoded = json.loads(content)
    except ValueError:
        decoded = None
    response = decoded if isinstance(decoded, dict) else {"result": content}
    return {"functionResponse": {"name": name, "response": response}}


def _image_to_wire(image: ImageBlock) -> dict[str, Any]:
    if image.is_inline:
        return {
            "inlineData": {
                "mimeType": image.mime_type or "image/jpeg",
                "data": image.data,
            }
        }
    url = image.url or ""
    return {"fileData": {"mimeType": image.mime_type or guess_image_mime(url), "fileUri": url}}


def _tool_to_wire(tool: ToolDefinition) -> dict[str, Any]:
    return {
        "name": tool.name,
        "description": tool.description,
        "parameters": dict(tool.parameters),
    }


def _tool_choice_to_wire(choice: str | None) -> dict[str, Any] | None:
    choice = normalize_tool_choice(choice)
    if choice is None:
        return None
    if choice in _TOOL_MODES:
        return {"functionCallingConfig": {"mode": _TOOL_MODES[choice]}}
    return {
        "functionCallingConfig": {"mode": "ANY", "allowedFunctionNames": [choice]}
    }
