"""OpenAI provider characterization tests.

Capture the exact request shapes sent to the Chat Completions API and the
parsing of its responses, using a scripted httpx transport.
"""

from __future__ import annotations

import json

import httpx
import pytest

from castor.config import OpenAIConfig
from castor.errors import OpenAIError, ResponseParseError, TransportError
from castor.models import (
    ChatOptions,
    EmbeddingOptions,
    ImageBlock,
    Message,
    TextBlock,
    ToolCall,
    ToolDefinition,
    ToolResultBlock,
    Usage,
)
from castor.providers.base import coerce_messages
from castor.providers.openai import OpenAIProvider, is_reasoning_model
from tests.helpers import ScriptedTransport, json_response, sse, sse_response

pytestmark = pytest.mark.contract

WEATHER_TOOL = ToolDefinition(
    name="get_weather",
    description="Current weather for a city",
    parameters={"type": "object", "properties": {"city": {"type": "string"}}, "required": ["city"]},
)


def _completion(content: str = "Hi", **overrides) -> dict:
    body = {
        "model": "m",
        "choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 20, "total_tokens": 30},
    }
    body.update(overrides)
    return body


@pytest.fixture
def scripted() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def provider(openai_config, scripted) -> OpenAIProvider:
    return OpenAIProvider(openai_config, transport=scripted.transport)


# =============================================================================
# Response Parsing
# =============================================================================


@pytest.mark.asyncio
async def test_chat_parses_basic_completion(provider, scripted) -> None:
    scripted.script.append(json_response(200, _completion()))

    response = await provider.chat([Message.user("Hello")])

    assert response.content == "Hi"
    assert response.finish_reason == "stop"
    assert response.usage == Usage(10, 20, 30)
    assert response.model == "m"
    assert response.raw["usage"]["total_tokens"] == 30


@pytest.mark.asyncio
async def test_chat_sends_auth_and_default_payload(scripted) -> None:
    scripted.script.append(json_response(200, _completion()))
    provider = OpenAIProvider(
        OpenAIConfig(api_key="sk-test", organization="org-9"), transport=scripted.transport
    )
    await provider.chat([Message.system("Be brief."), Message.user("Hello")])

    request = scripted.last_request
    assert request.method == "POST"
    assert str(request.url) == "https://api.openai.com/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert request.headers["OpenAI-Organization"] == "org-9"
    assert scripted.last_json == {
        "model": "gpt-4o",
        "messages": [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hello"},
        ],
        "max_tokens": 4096,
    }


@pytest.mark.asyncio
async def test_usage_total_is_computed_when_missing(provider, scripted) -> None:
    scripted.script.append(
        json_response(200, _completion(usage={"prompt_tokens": 3, "completion_tokens": 4}))
    )
    response = await provider.chat([Message.user("x")])
    assert response.usage.total_tokens == 7


@pytest.mark.asyncio
async def test_tool_call_response_is_parsed(provider, scripted) -> None:
    scripted.script.append(
        json_response(
            200,
            {
                "model": "gpt-4o",
                "choices": [
                    {
                        "message": {
                            "role": "assistant",
                            "content": None,
                            "tool_calls": [
                                {
                                    "id": "call_1",
                                    "type": "function",
                                    "function": {"name": "get_weather", "arguments": '{"city": "Oslo"}'},
                                }
                            ],
                        },
                        "finish_reason": "tool_calls",
                    }
                ],
                "usage": {"prompt_tokens": 5, "completion_tokens": 7, "total_tokens": 12},
            },
        )
    )
    response = await provider.chat(
        [Message.user("Weather in Oslo?")], ChatOptions(tools=(WEATHER_TOOL,))
    )

    assert response.content == ""
    assert response.finish_reason == "tool_calls"
    assert response.tool_calls == (ToolCall("call_1", "get_weather", '{"city": "Oslo"}'),)
    assert response.tool_calls[0].parsed_arguments() == {"city": "Oslo"}


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("stop", "stop"),
        ("length", "length"),
        ("tool_calls", "tool_calls"),
        ("function_call", "tool_calls"),
        ("content_filter", "content_filter"),
        ("something_new", "something_new"),
    ],
)
@pytest.mark.asyncio
async def test_finish_reason_table(provider, scripted, code, expected) -> None:
    body = _completion()
    body["choices"][0]["finish_reason"] = code
    scripted.script.append(json_response(200, body))
    response = await provider.chat([Message.user("x")])
    assert response.finish_reason == expected


# =============================================================================
# Request Translation
# =============================================================================


def test_payload_carries_generation_options(provider) -> None:
    payload = provider.build_payload(
        [Message.user("Hi")],
        ChatOptions(
            model="gpt-4o-mini",
            temperature=0.3,
            top_p=0.9,
            top_k=40,
            max_tokens=100,
            stop=("END",),
            tools=(WEATHER_TOOL,),
            tool_choice="any",
            response_format="json_object",
            extra={"seed": 7},
        ),
    )
    assert payload["model"] == "gpt-4o-mini"
    assert payload["temperature"] == 0.3
    assert payload["top_p"] == 0.9
    assert "top_k" not in payload
    assert payload["max_tokens"] == 100
    assert payload["stop"] == ["END"]
    assert payload["tool_choice"] == "required"
    assert payload["response_format"] == {"type": "json_object"}
    assert payload["seed"] == 7
    assert payload["tools"] == [
        {
            "type": "function",
            "function": {
                "name": "get_weather",
                "description": "Current weather for a city",
                "parameters": {
                    "type": "object",
                    "properties": {"city": {"type": "string"}},
                    "required": ["city"],
                },
            },
        }
    ]


def test_named_tool_choice(provider) -> None:
    payload = provider.build_payload([Message.user("x")], ChatOptions(tool_choice="get_weather"))
    assert payload["tool_choice"] == {"type": "function", "function": {"name": "get_weather"}}


@pytest.mark.parametrize("model", ["o1", "o1-mini", "o3-mini", "o4-mini"])
def test_reasoning_models_use_max_completion_tokens(provider, model) -> None:
    assert is_reasoning_model(model)
    payload = provider.build_payload([Message.user("x")], ChatOptions(model=model, max_tokens=50))
    assert payload["max_completion_tokens"] == 50
    assert "max_tokens" not in payload

    unset = provider.build_payload([Message.user("x")], ChatOptions(model=model))
    assert "max_completion_tokens" not in unset
    assert "max_tokens" not in unset


@pytest.mark.parametrize("model", ["gpt-4o", "o10-preview", "omni"])
def test_other_models_are_not_reasoning_models(model) -> None:
    assert not is_reasoning_model(model)


def test_options_system_replaces_system_messages(provider) -> None:
    payload = provider.build_payload(
        [Message.system("old"), Message.user("Hi")], ChatOptions(system="new")
    )
    assert payload["messages"] == [
        {"role": "system", "content": "new"},
        {"role": "user", "content": "Hi"},
    ]


def test_images_become_image_url_parts(provider) -> None:
    payload = provider.build_payload(
        [
            Message.user(
                [
                    TextBlock("Compare"),
                    ImageBlock.from_url("data:image/png;base64,AAAA"),
                    ImageBlock.from_url("https://example.com/b.jpg"),
                ]
            )
        ],
        ChatOptions(),
    )
    assert payload["messages"][0]["content"] == [
        {"type": "text", "text": "Compare"},
        {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}},
        {"type": "image_url", "image_url": {"url": "https://example.com/b.jpg"}},
    ]


def test_tool_round_trip_messages(provider) -> None:
    call = ToolCall("call_1", "get_weather", '{"city":"Oslo"}')
    payload = provider.build_payload(
        [
            Message.user("Weather?"),
            Message.assistant("", [call]),
            Message.tool("call_1", '{"temp": 3}'),
            Message.user([ToolResultBlock("call_2", "sunny"), TextBlock("Thanks")]),
        ],
        ChatOptions(),
    )
    assert payload["messages"][1:] == [
        {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {"id": "call_1", "type": "function", "function": {"name": "get_weather", "arguments": '{"city":"Oslo"}'}}
            ],
        },
        {"role": "tool", "tool_call_id": "call_1", "content": '{"temp": 3}'},
        {"role": "tool", "tool_call_id": "call_2", "content": "sunny"},
        {"role": "user", "content": [{"type": "text", "text": "Thanks"}]},
    ]


def test_dict_messages_are_accepted() -> None:
    messages = coerce_messages([{"role": "user", "content": "Hi"}, Message.assistant("Hello")])
    assert [m.role for m in messages] == ["user", "assistant"]


def test_json_schema_response_format(provider) -> None:
    schema = {"type": "object", "properties": {"answer": {"type": "string"}}}
    payload = provider.build_payload([Message.user("x")], ChatOptions(response_format=schema))
    assert payload["response_format"] == {
        "type": "json_schema",
        "json_schema": {"name": "response", "schema": schema},
    }


# =============================================================================
# JSON Mode, Embeddings, Models
# =============================================================================


@pytest.mark.asyncio
async def test_chat_json_adds_instruction_when_json_not_mentioned(provider, scripted) -> None:
    scripted.script.append(json_response(200, _completion('{"ok": true}')))
    await provider.chat_json([Message.user("List three colours")])
    sent = scripted.last_json
    assert sent["response_format"] == {"type": "json_object"}
    assert sent["messages"][0] == {"role": "system", "content": "Respond with valid JSON."}


@pytest.mark.asyncio
async def test_chat_json_keeps_messages_that_mention_json(provider, scripted) -> None:
    scripted.script.append(json_response(200, _completion("{}")))
    await provider.chat_json([Message.user("Reply in JSON please")])
    assert scripted.last_json["messages"] == [{"role": "user", "content": "Reply in JSON please"}]


@pytest.mark.asyncio
async def test_embed_orders_by_index_and_sends_dimensions(provider, scripted) -> None:
    scripted.script.append(
        json_response(
            200,
            {
                "model": "text-embedding-3-small",
                "data": [
                    {"index": 1, "embedding": [0.3, 0.4]},
                    {"index": 0, "embedding": [0.1, 0.2]},
                ],
                "usage": {"prompt_tokens": 6, "total_tokens": 6},
            },
        )
    )
    response = await provider.embed(["a", "b"], EmbeddingOptions(dimensions=2))

    assert str(scripted.last_request.url) == "https://api.openai.com/v1/embeddings"
    assert scripted.last_json == {
        "model": "text-embedding-3-small",
        "input": ["a", "b"],
        "dimensions": 2,
    }
    assert response.embeddings == ((0.1, 0.2), (0.3, 0.4))
    assert response.usage == Usage(6, 0, 6)


@pytest.mark.asyncio
async def test_embed_ada_ignores_dimensions(provider, scripted) -> None:
    scripted.script.append(json_response(200, {"data": [{"index": 0, "embedding": [1.0]}]}))
    await provider.embed("a", EmbeddingOptions(model="text-embedding-ada-002", dimensions=8))
    assert "dimensions" not in scripted.last_json
    assert scripted.last_json["input"] == "a"


@pytest.mark.asyncio
async def test_list_models(provider, scripted) -> None:
    scripted.script.append(json_response(200, {"data": [{"id": "gpt-4o"}, {"id": "o1"}]}))
    assert await provider.list_models() == ["gpt-4o", "o1"]
    assert scripted.last_request.method == "GET"


def test_static_catalogs(provider) -> None:
    assert "gpt-4o" in provider.get_models()
    assert "text-embedding-3-small" in provider.get_embedding_models()
    assert provider.supports_streaming() is True
    assert provider.capabilities.embeddings is True


# =============================================================================
# Streaming
# =============================================================================


@pytest.mark.asyncio
async def test_chat_stream_requests_usage_and_decodes(provider, scripted) -> None:
    scripted.script.append(
        sse_response(
            sse(
                {"model": "gpt-4o", "choices": [{"delta": {"content": "Hi"}}]},
                {"choices": [{"delta": {"content": "!"}, "finish_reason": "stop"}]},
                {"choices": [], "usage": {"prompt_tokens": 2, "completion_tokens": 2, "total_tokens": 4}},
                done=True,
            )
        )
    )
    stream = await provider.chat_stream([Message.user("Hello")])
    deltas = [d async for d in stream]
    response = await stream.collect()

    assert scripted.last_json["stream"] is True
    assert scripted.last_json["stream_options"] == {"include_usage": True}
    assert deltas == ["Hi", "!"]
    assert response.usage == Usage(2, 2, 4)
    assert response.finish_reason == "stop"


@pytest.mark.asyncio
async def test_chat_stream_error_status_raises_before_iteration(provider, scripted) -> None:
    scripted.script.append(
        json_response(401, {"error": {"message": "bad key", "code": "invalid_api_key"}})
    )
    with pytest.raises(OpenAIError) as excinfo:
        await provider.chat_stream([Message.user("Hello")])
    assert excinfo.value.is_authentication_error()
    assert excinfo.value.status_code == 401


class _ResetAfterPartialBody(httpx.AsyncByteStream):
    def __init__(self) -> None:
        self.closed = False

    async def __aiter__(self):
        yield b'{"error":'
        raise httpx.ReadError("connection reset")

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_chat_stream_error_body_read_failure_is_wrapped(provider, scripted) -> None:
    body = _ResetAfterPartialBody()
    scripted.script.append(httpx.Response(500, stream=body))

    with pytest.raises(TransportError) as excinfo:
        await provider.chat_stream([Message.user("Hello")])

    assert excinfo.value.provider == "openai"
    assert isinstance(excinfo.value.__cause__, httpx.ReadError)
    assert body.closed is True


# =============================================================================
# Failures
# =============================================================================


@pytest.mark.asyncio
async def test_http_errors_map_to_vendor_error(provider, scripted) -> None:
    scripted.script.append(
        json_response(
            429,
            {"error": {"message": "Rate limit reached", "type": "requests", "code": "rate_limit_exceeded"}},
            **{"Retry-After": "3"},
        )
    )
    with pytest.raises(OpenAIError) as excinfo:
        await provider.chat([Message.user("x")])
    err = excinfo.value
    assert err.is_rate_limit_error()
    assert err.retry_after_s == 3.0
    assert err.body["error"]["code"] == "rate_limit_exceeded"


@pytest.mark.asyncio
async def test_non_json_success_body_raises_parse_error(provider, scripted) -> None:
    scripted.script.append(httpx.Response(200, content=b"<html>proxy</html>"))
    with pytest.raises(ResponseParseError):
        await provider.chat([Message.user("x")])


@pytest.mark.asyncio
async def test_transport_failure_is_wrapped(provider, scripted) -> None:
    scripted.script.append(httpx.ConnectError("dns failure"))
    with pytest.raises(TransportError) as excinfo:
        await provider.chat([Message.user("x")])
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_client_is_reused_and_closed(provider, scripted) -> None:
    scripted.script.extend([json_response(200, _completion()), json_response(200, _completion())])
    await provider.complete("one")
    client = provider._client
    await provider.complete("two", ChatOptions(system="sys"))
    assert provider._client is client
    assert json.loads(scripted.requests[1].content)["messages"][0] == {"role": "system", "content": "sys"}
    await provider.aclose()
    assert provider._client is None
