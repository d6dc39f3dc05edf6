"""Castor: one async client for OpenAI, Anthropic, and Gemini.

Public API:
    - ProviderManager: resolve vendors by name, with rate limiting and costs
    - Message / ChatOptions / ChatResponse: the vendor-agnostic model
    - Settings: configuration, usually via Settings.from_env()
"""

from __future__ import annotations

import logging

from castor.config import (
    AnthropicConfig,
    CostSettings,
    GeminiConfig,
    OpenAIConfig,
    RateLimitSettings,
    Settings,
)
from castor.costs import CostTracker, NullCostTracker, PricingCostTracker
from castor.errors import (
    AnthropicError,
    APIError,
    CastorError,
    ConfigurationError,
    ErrorKind,
    GeminiError,
    OpenAIError,
    ProviderNotFoundError,
    RateLimitExceededError,
    ResponseParseError,
    TransportError,
    UnsupportedOperationError,
)
from castor.manager import ProviderManager
from castor.models import (
    ChatOptions,
    ChatResponse,
    EmbeddingOptions,
    EmbeddingResponse,
    ImageBlock,
    Message,
    TextBlock,
    ToolCall,
    ToolCallBlock,
    ToolDefinition,
    ToolResultBlock,
    Usage,
)
from castor.providers import (
    AnthropicProvider,
    GeminiProvider,
    OpenAIProvider,
    Provider,
    StreamingResponse,
)
from castor.rate_limit import FixedWindowRateLimiter, InMemoryCounterStore, RateLimiter

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("castor-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("castor").addHandler(logging.NullHandler())

__all__ = [
    "APIError",
    "AnthropicConfig",
    "AnthropicError",
    "AnthropicProvider",
    "CastorError",
    "ChatOptions",
    "ChatResponse",
    "ConfigurationError",
    "CostSettings",
    "CostTracker",
    "EmbeddingOptions",
    "EmbeddingResponse",
    "ErrorKind",
    "FixedWindowRateLimiter",
    "GeminiConfig",
    "GeminiError",
    "GeminiProvider",
    "ImageBlock",
    "InMemoryCounterStore",
    "Message",
    "NullCostTracker",
    "OpenAIConfig",
    "OpenAIError",
    "OpenAIProvider",
    "PricingCostTracker",
    "Provider",
    "ProviderManager",
    "ProviderNotFoundError",
    "RateLimitExceededError",
    "RateLimitSettings",
    "RateLimiter",
    "ResponseParseError",
    "Settings",
    "StreamingResponse",
    "TextBlock",
    "ToolCall",
    "ToolCallBlock",
    "ToolDefinition",
    "ToolResultBlock",
    "TransportError",
    "UnsupportedOperationError",
    "Usage",
    "__version__",
]
