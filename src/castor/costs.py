"""Token cost accounting."""

from __future__ import annotations

from dataclasses import dataclass
import threading
import time
from typing import TYPE_CHECKING, Literal, Protocol, runtime_checkable

from castor.config import CostSettings

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from castor.models import Usage

UsageKind = Literal["chat", "embedding"]


@runtime_checkable
class CostTracker(Protocol):
    """Receives the usage of every successful call."""

    def record(
        self, provider: str, usage: Usage, model: str, *, kind: UsageKind = "chat"
    ) -> None: ...


@dataclass(frozen=True)
class UsageRecord:
    """One priced call."""

    provider: str
    model: str
    kind: UsageKind
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cost: float
    timestamp: float


class NullCostTracker:
    """Discards everything."""

    def record(
        self, provider: str, usage: Usage, model: str, *, kind: UsageKind = "chat"
    ) -> None:
        return None


class PricingCostTracker:
    """Price calls from a per-1K-token table and keep the records in memory.

    Prices resolve as ``pricing[provider][model]``, then the longest
    ``family-`` prefix of the model, then ``pricing[provider]["default"]``,
    then zero. Embeddings use the
    ``embedding`` price when present, otherwise ``prompt``.
    """

    def __init__(
        self,
        settings: CostSettings | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings if settings is not None else CostSettings(enabled=True)
        self._clock = clock
        self._lock = threading.Lock()
        self._records: list[UsageRecord] = []

    def record(
        self, provider: str, usage: Usage, model: str, *, kind: UsageKind = "chat"
    ) -> None:
        if kind == "embedding":
            cost = self.embedding_cost(provider, model, usage.total_tokens)
        else:
            cost = self.chat_cost(
                provider, model, usage.prompt_tokens, usage.completion_tokens
            )
        entry = UsageRecord(
            provider=provider,
            model=model,
            kind=kind,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            cost=cost,
            timestamp=self._clock(),
        )
        with self._lock:
            self._records.append(entry)

    def chat_cost(
        self, provider: str, model: str, prompt_tokens: int, completion_tokens: int
    ) -> float:
        price = self._price(provider, model)
        cost = (prompt_tokens / 1000) * price.get("prompt", 0.0) + (
            completion_tokens / 1000
        ) * price.get("completion", 0.0)
        return round(cost, 6)

    def embedding_cost(self, provider: str, model: str, tokens: int) -> float:
        price = self._price(provider, model)
        per_1k = price.get("embedding", price.get("prompt", 0.0))
        return round((tokens / 1000) * per_1k, 6)

    def usage(self, provider: str | None = None) -> list[UsageRecord]:
        with self._lock:
            records = list(self._records)
        if provider is None:
            return records
        return [r for r in records if r.provider == provider]

    def total_cost(self, provider: str | None = None) -> float:
        return round(sum(r.cost for r in self.usage(provider)), 6)

    def reset(self) -> None:
        with self._lock:
            self._records.clear()

    def _price(self, provider: str, model: str) -> Mapping[str, float]:
        table = self.settings.pricing.get(provider) or {}
        if model in table:
            return table[model]
        # Vendors echo dated snapshots (gpt-4o-2024-08-06); price by family.
        prefixes = [k for k in table if k != "default" and model.startswith(f"{k}-")]
        if prefixes:
            return table[max(prefixes, key=len)]
        return table.get("default") or {}
