"""ProviderManager: one entry point over every configured vendor.

Each call resolves an adapter by name, asks the rate limiter for permission,
delegates to the adapter, and reports usage to the cost tracker.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from castor.config import API_KEY_ENV_VARS, Settings, canonical_provider_name
from castor.costs import CostTracker, NullCostTracker, PricingCostTracker
from castor.errors import ProviderNotFoundError
from castor.providers.anthropic import AnthropicProvider
from castor.providers.gemini import GeminiProvider
from castor.providers.openai import OpenAIProvider
from castor.rate_limit import FixedWindowRateLimiter, RateLimiter

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    import httpx

    from castor.costs import UsageKind
    from castor.models import (
        ChatOptions,
        ChatResponse,
        EmbeddingOptions,
        EmbeddingResponse,
        Usage,
    )
    from castor.providers.base import MessageLike, Provider
    from castor.providers.streaming import StreamingResponse

    ProviderFactory = Callable[[Settings], Provider]

log = logging.getLogger(__name__)

_BUILTIN_PROVIDERS: dict[str, Any] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
}


class ProviderManager:
    """Resolve, cache, and call provider adapters.

    Example:
        manager = ProviderManager(Settings.from_env())
        response = await manager.chat([Message.user("Hello")], provider="claude")
        print(response.content)
        await manager.aclose()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        rate_limiter: RateLimiter | None = None,
        cost_tracker: CostTracker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings if settings is not None else Settings.from_env()
        self.rate_limiter: RateLimiter = (
            rate_limiter
            if rate_limiter is not None
            else FixedWindowRateLimiter(self.settings.rate_limiting)
        )
        if cost_tracker is None:
            cost_tracker = (
                PricingCostTracker(self.settings.costs)
                if self.settings.costs.enabled
                else NullCostTracker()
            )
        self.cost_tracker: CostTracker = cost_tracker
        self._transport = transport
        self._factories: dict[str, ProviderFactory] = {}
        self._providers: dict[str, Provider] = {}
        self._lock = threading.RLock()

    @property
    def default_provider(self) -> str:
        return self.settings.default_provider

    # ------------------------------------------------------------------ #
    # Registry
    # ------------------------------------------------------------------ #

    def provider(self, name: str | None = None) -> Provider:
        """Return the cached adapter for ``name``, building it on first use."""
        key = canonical_provider_name(name or self.settings.default_provider)
        with self._lock:
            adapter = self._providers.get(key)
            if adapter is None:
                adapter = self._create(key)
                self._providers[key] = adapter
        return adapter

    def extend(self, name: str, factory: ProviderFactory) -> ProviderManager:
        """Register a factory consulted ahead of the built-in vendors.

        ``factory(settings)`` runs at most once per name, under the registry
        lock. It may resolve other providers through this manager.
        """
        key = canonical_provider_name(name)
        with self._lock:
            self._factories[key] = factory
            stale = self._providers.pop(key, None)
        if stale is not None:
            log.debug("Replaced cached provider %s after extend()", key)
        return self

    def available_providers(self) -> list[str]:
        """Names that :meth:`provider` can resolve."""
        names = [n for n in _BUILTIN_PROVIDERS if self.settings.provider_config(n)]
        names.extend(n for n in self._factories if n not in names)
        return names

    def _create(self, key: str) -> Provider:
        factory = self._factories.get(key)
        if factory is not None:
            log.debug("Building provider %s from registered factory", key)
            return factory(self.settings)

        provider_cls = _BUILTIN_PROVIDERS.get(key)
        if provider_cls is None:
            raise ProviderNotFoundError(
                f"Unsupported provider [{key}].",
                hint=f"Use one of {sorted(_BUILTIN_PROVIDERS)} or register it with extend().",
            )
        config = self.settings.provider_config(key)
        if config is None:
            raise ProviderNotFoundError(
                f"Provider [{key}] is not configured.",
                hint=f"Set {API_KEY_ENV_VARS[key]} or add it to Settings.providers.",
            )
        log.debug("Building provider %s", key)
        adapter: Provider = provider_cls(config, transport=self._transport)
        return adapter

    # ------------------------------------------------------------------ #
    # Calls
    # ------------------------------------------------------------------ #

    async def chat(
        self,
        messages: Sequence[MessageLike],
        options: ChatOptions | None = None,
        *,
        provider: str | None = None,
    ) -> ChatResponse:
        name, adapter = self._admit(provider)
        response = await adapter.chat(messages, options)
        self._record(name, response.usage, response.model)
        return response

    async def complete(
        self,
        prompt: str,
        options: ChatOptions | None = None,
        *,
        provider: str | None = None,
    ) -> ChatResponse:
        name, adapter = self._admit(provider)
        response = await adapter.complete(prompt, options)
        self._record(name, response.usage, response.model)
        return response

    async def embed(
        self,
        input: str | Sequence[str],
        options: EmbeddingOptions | None = None,
        *,
        provider: str | None = None,
    ) -> EmbeddingResponse:
        name, adapter = self._admit(provider)
        response = await adapter.embed(input, options)
        self._record(name, response.usage, response.model, kind="embedding")
        return response

    async def chat_stream(
        self,
        messages: Sequence[MessageLike],
        options: ChatOptions | None = None,
        *,
        provider: str | None = None,
    ) -> StreamingResponse:
        """Rate-limited stream; usage is not reported to the cost tracker."""
        _, adapter = self._admit(provider)
        return await adapter.chat_stream(messages, options)

    def _admit(self, provider: str | None) -> tuple[str, Provider]:
        key = canonical_provider_name(provider or self.settings.default_provider)
        adapter = self.provider(key)
        self.rate_limiter.check(key)
        return key, adapter

    def _record(
        self, name: str, usage: Usage, model: str, *, kind: UsageKind = "chat"
    ) -> None:
        try:
            self.cost_tracker.record(name, usage, model, kind=kind)
        except Exception as exc:
            log.warning("Cost tracking failed for %s: %s", name, exc)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def aclose(self) -> None:
        """Close every cached adapter; cleanup failures are logged, not raised."""
        with self._lock:
            adapters = list(self._providers.items())
            self._providers.clear()
        for name, adapter in adapters:
            aclose = getattr(adapter, "aclose", None)
            if not callable(aclose):
                continue
            try:
                await aclose()
            except Exception as exc:
                log.warning("Provider cleanup failed for %s: %s", name, exc)

    async def __aenter__(self) -> ProviderManager:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
