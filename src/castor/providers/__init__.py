"""Provider implementations."""

from .anthropic import AnthropicProvider, AnthropicStream
from .base import HTTPProvider, Provider, ProviderCapabilities
from .gemini import GeminiProvider, GeminiStream
from .mock import MockProvider
from .openai import OpenAIProvider, OpenAIStream
from .streaming import StreamingResponse

__all__ = [
    "AnthropicProvider",
    "AnthropicStream",
    "GeminiProvider",
    "GeminiStream",
    "HTTPProvider",
    "MockProvider",
    "OpenAIProvider",
    "OpenAIStream",
    "Provider",
    "ProviderCapabilities",
    "StreamingResponse",
]
