"""Configuration: frozen, per-vendor settings validated at construction."""

from __future__ import annotations

from collections.abc import Mapping
import copy
from dataclasses import dataclass, field
import os
from typing import Any

from dotenv import load_dotenv

from castor._http import DEFAULT_MAX_TOKENS, DEFAULT_TIMEOUT_S
from castor.errors import ConfigurationError

# Provider-specific API key environment variable names
API_KEY_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
}

PROVIDER_ALIASES: dict[str, str] = {"claude": "anthropic", "google": "gemini"}


def canonical_provider_name(name: str) -> str:
    """Normalise a provider name, resolving aliases (``claude`` -> ``anthropic``)."""
    key = name.strip().lower()
    return PROVIDER_ALIASES.get(key, key)


@dataclass(frozen=True)
class _ProviderConfig:
    api_key: str
    base_url: str
    default_model: str
    timeout_s: float = DEFAULT_TIMEOUT_S
    max_tokens: int = DEFAULT_MAX_TOKENS

    provider: str = field(default="", init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate once so adapters never re-check per call."""
        env_var = API_KEY_ENV_VARS.get(self.provider, "the provider API key")
        if not self.api_key:
            raise ConfigurationError(
                f"API key required for {self.provider}",
                hint=f"Set {env_var} environment variable or pass api_key=...",
            )
        if not self.base_url.startswith(("http://", "https://")):
            raise ConfigurationError(
                f"base_url must be an http(s) URL, got {self.base_url!r}"
            )
        if not self.default_model:
            raise ConfigurationError(f"default_model required for {self.provider}")
        if self.timeout_s <= 0:
            raise ConfigurationError(
                f"timeout_s must be > 0, got {self.timeout_s}",
                hint="This is the per-request HTTP timeout in seconds.",
            )
        if self.max_tokens < 1:
            raise ConfigurationError(
                f"max_tokens must be ≥ 1, got {self.max_tokens}",
                hint="This is the default completion budget per call.",
            )
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))

    def __repr__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"{type(self).__name__}(base_url={self.base_url!r}, "
            f"default_model={self.default_model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None})"
        )

    __str__ = __repr__


@dataclass(frozen=True, repr=False)
class OpenAIConfig(_ProviderConfig):
    """OpenAI chat-completions settings."""

    base_url: str = "https://api.openai.com/v1"
    default_model: str = "gpt-4o"
    default_embedding_model: str = "text-embedding-3-small"
    organization: str | None = None

    provider: str = field(default="openai", init=False, repr=False)


@dataclass(frozen=True, repr=False)
class AnthropicConfig(_ProviderConfig):
    """Anthropic Messages API settings."""

    base_url: str = "https://api.anthropic.com"
    default_model: str = "claude-sonnet-4-20250514"
    api_version: str = "2023-06-01"

    provider: str = field(default="anthropic", init=False, repr=False)


@dataclass(frozen=True, repr=False)
class GeminiConfig(_ProviderConfig):
    """Gemini generateContent settings."""

    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    default_model: str = "gemini-1.5-pro"
    default_embedding_model: str = "text-embedding-004"

    provider: str = field(default="gemini", init=False, repr=False)


ProviderConfig = OpenAIConfig | AnthropicConfig | GeminiConfig


@dataclass(frozen=True)
class RateLimitSettings:
    """Fixed-window request limits, per provider."""

    enabled: bool = False
    default_limit: int = 60
    default_window_s: int = 60
    #: provider -> (limit, window seconds)
    limits: Mapping[str, tuple[int, int]] = field(default_factory=dict)
    key_prefix: str = "castor_rate_limit"

    def __post_init__(self) -> None:
        if self.default_limit < 1 or self.default_window_s < 1:
            raise ConfigurationError(
                "rate limit and window must be ≥ 1",
                hint="Disable rate limiting with enabled=False instead.",
            )
        for name, (limit, window) in self.limits.items():
            if limit < 1 or window < 1:
                raise ConfigurationError(
                    f"rate limit for {name!r} must have limit and window ≥ 1"
                )

    def limit_for(self, provider: str) -> tuple[int, int]:
        return self.limits.get(provider, (self.default_limit, self.default_window_s))


#: Prices in currency units per 1K tokens.
DEFAULT_PRICING: dict[str, dict[str, dict[str, float]]] = {
    "openai": {
        "gpt-4o": {"prompt": 0.0025, "completion": 0.01},
        "gpt-4o-mini": {"prompt": 0.00015, "completion": 0.0006},
        "gpt-4-turbo": {"prompt": 0.01, "completion": 0.03},
        "gpt-3.5-turbo": {"prompt": 0.0005, "completion": 0.0015},
        "text-embedding-3-small": {"prompt": 0.00002, "completion": 0.0},
        "text-embedding-3-large": {"prompt": 0.00013, "completion": 0.0},
        "default": {"prompt": 0.01, "completion": 0.03},
    },
    "anthropic": {
        "claude-sonnet-4-20250514": {"prompt": 0.003, "completion": 0.015},
        "claude-3-5-sonnet-20241022": {"prompt": 0.003, "completion": 0.015},
        "claude-3-opus-20240229": {"prompt": 0.015, "completion": 0.075},
        "claude-3-haiku-20240307": {"prompt": 0.00025, "completion": 0.00125},
        "default": {"prompt": 0.003, "completion": 0.015},
    },
    "gemini": {
        "gemini-1.5-pro": {"prompt": 0.00125, "completion": 0.005},
        "gemini-1.5-flash": {"prompt": 0.000075, "completion": 0.0003},
        "text-embedding-004": {"prompt": 0.000025, "completion": 0.0},
        "default": {"prompt": 0.00125, "completion": 0.005},
    },
}


@dataclass(frozen=True)
class CostSettings:
    """Price table for the built-in cost tracker."""

    enabled: bool = False
    pricing: Mapping[str, Mapping[str, Mapping[str, float]]] = field(
        default_factory=lambda: copy.deepcopy(DEFAULT_PRICING)
    )


@dataclass(frozen=True)
class Settings:
    """Top-level settings consumed by :class:`castor.manager.ProviderManager`.

    Example:
        settings = Settings(providers={"openai": OpenAIConfig(api_key="sk-...")})
    """

    default_provider: str = "openai"
    providers: Mapping[str, ProviderConfig] = field(default_factory=dict)
    rate_limiting: RateLimitSettings = field(default_factory=RateLimitSettings)
    costs: CostSettings = field(default_factory=CostSettings)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "default_provider", canonical_provider_name(self.default_provider)
        )
        object.__setattr__(
            self,
            "providers",
            {canonical_provider_name(k): v for k, v in self.providers.items()},
        )

    def provider_config(self, name: str) -> ProviderConfig | None:
        return self.providers.get(canonical_provider_name(name))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from environment variables (after loading ``.env``).

        A vendor is configured only when its API key variable is set.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ
        env = environ

        providers: dict[str, ProviderConfig] = {}
        if env.get("OPENAI_API_KEY"):
            providers["openai"] = OpenAIConfig(
                api_key=env["OPENAI_API_KEY"],
                organization=env.get("OPENAI_ORGANIZATION") or None,
                **_common_overrides(env, "OPENAI"),
                **_optional(env, "OPENAI_EMBEDDING_MODEL", "default_embedding_model"),
            )
        if env.get("ANTHROPIC_API_KEY"):
            providers["anthropic"] = AnthropicConfig(
                api_key=env["ANTHROPIC_API_KEY"],
                **_common_overrides(env, "ANTHROPIC"),
                **_optional(env, "ANTHROPIC_API_VERSION", "api_version"),
            )
        if env.get("GEMINI_API_KEY"):
            providers["gemini"] = GeminiConfig(
                api_key=env["GEMINI_API_KEY"],
                **_common_overrides(env, "GEMINI"),
                **_optional(env, "GEMINI_EMBEDDING_MODEL", "default_embedding_model"),
            )

        return cls(
            default_provider=env.get("CASTOR_PROVIDER", "openai"),
            providers=providers,
            rate_limiting=RateLimitSettings(
                enabled=_env_bool(env.get("CASTOR_RATE_LIMITING_ENABLED"))
            ),
            costs=CostSettings(enabled=_env_bool(env.get("CASTOR_COST_TRACKING_ENABLED"))),
        )


def _optional(env: Mapping[str, str], var: str, key: str) -> dict[str, Any]:
    value = env.get(var)
    return {key: value} if value else {}


def _common_overrides(env: Mapping[str, str], prefix: str) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    overrides.update(_optional(env, f"{prefix}_BASE_URL", "base_url"))
    overrides.update(_optional(env, f"{prefix}_DEFAULT_MODEL", "default_model"))
    timeout = env.get(f"{prefix}_TIMEOUT")
    max_tokens = env.get(f"{prefix}_MAX_TOKENS")
    try:
        if timeout:
            overrides["timeout_s"] = float(timeout)
        if max_tokens:
            overrides["max_tokens"] = int(max_tokens)
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid numeric value in {prefix}_TIMEOUT/{prefix}_MAX_TOKENS",
            hint="Use plain numbers, e.g. 30 or 4096.",
        ) from e
    return overrides


def _env_bool(value: str | None) -> bool:
    return value is not None and value.strip().lower() in {"1", "true", "yes", "on"}
