"""Mock provider for testing."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from castor.models import ChatResponse, EmbeddingResponse, Message, Usage
from castor.providers.base import (
    ProviderCapabilities,
    coerce_messages,
    coerce_options,
)
from castor.providers.streaming import StreamingResponse

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from castor.models import ChatOptions, EmbeddingOptions
    from castor.providers.base import MessageLike


class MockStream(StreamingResponse):
    """Decoder for the mock provider's ``{"text": ...}`` events."""

    provider = "mock"

    def _process_event(self, event: dict[str, Any]) -> str | None:
        self._set_finish(event.get("finish_reason"))
        text = event.get("text")
        return text if isinstance(text, str) else None


class MockProvider:
    """Mock provider for testing without API calls.

    Echoes the last user message and counts one token per word, so cost and
    rate-limit plumbing can be exercised end to end.
    """

    name = "mock"

    def __init__(self, *, model: str = "mock-1") -> None:
        self.model = model
        self.calls: list[list[Message]] = []
        self.closed = False

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(embeddings=True, tools=False, vision=False)

    def supports_streaming(self) -> bool:
        return self.capabilities.streaming

    def get_models(self) -> tuple[str, ...]:
        return (self.model,)

    def get_embedding_models(self) -> tuple[str, ...]:
        return (self.model,)

    async def chat(
        self, messages: Sequence[MessageLike], options: ChatOptions | None = None
    ) -> ChatResponse:
        """Return a deterministic ``echo:`` response."""
        conversation = coerce_messages(messages)
        self.calls.append(conversation)
        prompt = _last_user_text(conversation)
        text = f"echo: {prompt[:100]}"
        return ChatResponse(
            content=text,
            model=coerce_options(options).model or self.model,
            usage=Usage.of(len(prompt.split()), len(text.split())),
            finish_reason="stop",
        )

    async def complete(
        self, prompt: str, options: ChatOptions | None = None
    ) -> ChatResponse:
        return await self.chat([Message.user(prompt)], options)

    async def chat_stream(
        self, messages: Sequence[MessageLike], options: ChatOptions | None = None
    ) -> MockStream:
        response = await self.chat(messages, options)
        return MockStream(_sse_words(response.content), model=response.model)

    async def embed(
        self, input: str | Sequence[str], options: EmbeddingOptions | None = None
    ) -> EmbeddingResponse:
        texts = [input] if isinstance(input, str) else list(input)
        return EmbeddingResponse(
            embeddings=tuple((float(len(t)), float(len(t.split()))) for t in texts),
            model=(options.model if options and options.model else self.model),
            usage=Usage.of(sum(len(t.split()) for t in texts), 0),
        )

    async def aclose(self) -> None:
        self.closed = True


def _last_user_text(messages: Sequence[Message]) -> str:
    for message in reversed(messages):
        if message.role == "user":
            return message.text
    return ""


async def _sse_words(text: str) -> AsyncIterator[bytes]:
    words = text.split(" ")
    for i, word in enumerate(words):
        chunk = word if i == 0 else f" {word}"
        yield f"data: {json.dumps({'text': chunk})}\n\n".encode()
    yield b'data: {"finish_reason": "stop"}\n\n'
    yield b"data: [DONE]\n\n"
