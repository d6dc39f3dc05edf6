"""Configuration validation and environment loading."""

from __future__ import annotations

import pytest

from castor.config import (
    DEFAULT_PRICING,
    AnthropicConfig,
    CostSettings,
    GeminiConfig,
    OpenAIConfig,
    RateLimitSettings,
    Settings,
    canonical_provider_name,
)
from castor.errors import ConfigurationError

pytestmark = pytest.mark.unit


def test_defaults_match_vendor_endpoints() -> None:
    assert OpenAIConfig(api_key="k").base_url == "https://api.openai.com/v1"
    anthropic = AnthropicConfig(api_key="k")
    assert anthropic.base_url == "https://api.anthropic.com"
    assert anthropic.api_version == "2023-06-01"
    gemini = GeminiConfig(api_key="k")
    assert gemini.base_url == "https://generativelanguage.googleapis.com/v1beta"
    assert gemini.default_model == "gemini-1.5-pro"


def test_missing_api_key_raises_with_env_hint() -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        AnthropicConfig(api_key="")
    assert excinfo.value.hint is not None
    assert "ANTHROPIC_API_KEY" in excinfo.value.hint


@pytest.mark.parametrize(
    "kwargs",
    [
        {"timeout_s": 0},
        {"max_tokens": 0},
        {"base_url": "ftp://example.com"},
        {"default_model": ""},
    ],
)
def test_invalid_values_rejected(kwargs: dict) -> None:
    with pytest.raises(ConfigurationError):
        OpenAIConfig(api_key="k", **kwargs)


def test_trailing_slash_is_stripped() -> None:
    assert OpenAIConfig(api_key="k", base_url="http://localhost:8080/v1/").base_url == (
        "http://localhost:8080/v1"
    )


def test_repr_redacts_api_key() -> None:
    config = OpenAIConfig(api_key="sk-secret")
    assert "sk-secret" not in repr(config)
    assert "[REDACTED]" in repr(config)
    assert "sk-secret" not in str(config)


def test_aliases() -> None:
    assert canonical_provider_name("Claude") == "anthropic"
    assert canonical_provider_name("google") == "gemini"
    assert canonical_provider_name("openai") == "openai"


def test_settings_canonicalises_names() -> None:
    settings = Settings(
        default_provider="claude",
        providers={"claude": AnthropicConfig(api_key="k")},
    )
    assert settings.default_provider == "anthropic"
    assert settings.provider_config("claude") is settings.provider_config("anthropic")


def test_from_env_configures_only_vendors_with_keys() -> None:
    settings = Settings.from_env(
        {
            "CASTOR_PROVIDER": "gemini",
            "GEMINI_API_KEY": "g",
            "GEMINI_DEFAULT_MODEL": "gemini-1.5-flash",
            "GEMINI_TIMEOUT": "12.5",
            "OPENAI_BASE_URL": "http://ignored",
            "CASTOR_RATE_LIMITING_ENABLED": "true",
        }
    )
    assert settings.default_provider == "gemini"
    assert set(settings.providers) == {"gemini"}
    gemini = settings.provider_config("gemini")
    assert isinstance(gemini, GeminiConfig)
    assert gemini.default_model == "gemini-1.5-flash"
    assert gemini.timeout_s == 12.5
    assert settings.rate_limiting.enabled is True
    assert settings.costs.enabled is False


def test_from_env_reads_vendor_specific_fields() -> None:
    settings = Settings.from_env(
        {
            "OPENAI_API_KEY": "o",
            "OPENAI_ORGANIZATION": "org-1",
            "OPENAI_MAX_TOKENS": "256",
            "ANTHROPIC_API_KEY": "a",
            "ANTHROPIC_API_VERSION": "2024-01-01",
        }
    )
    openai = settings.provider_config("openai")
    anthropic = settings.provider_config("anthropic")
    assert isinstance(openai, OpenAIConfig)
    assert openai.organization == "org-1"
    assert openai.max_tokens == 256
    assert isinstance(anthropic, AnthropicConfig)
    assert anthropic.api_version == "2024-01-01"


def test_from_env_rejects_non_numeric_values() -> None:
    with pytest.raises(ConfigurationError):
        Settings.from_env({"OPENAI_API_KEY": "o", "OPENAI_TIMEOUT": "soon"})


def test_from_env_reads_process_environment(monkeypatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "from-env")
    monkeypatch.setenv("CASTOR_PROVIDER", "claude")
    settings = Settings.from_env()
    assert settings.default_provider == "anthropic"
    assert settings.provider_config("anthropic") is not None


def test_rate_limit_settings_validation_and_lookup() -> None:
    settings = RateLimitSettings(limits={"openai": (5, 10)})
    assert settings.limit_for("openai") == (5, 10)
    assert settings.limit_for("gemini") == (60, 60)
    with pytest.raises(ConfigurationError):
        RateLimitSettings(default_limit=0)


def test_cost_settings_get_independent_price_tables() -> None:
    first = CostSettings(enabled=True)
    first.pricing["openai"]["gpt-4o"]["prompt"] = 99.0

    assert CostSettings().pricing["openai"]["gpt-4o"]["prompt"] == 0.0025
    assert DEFAULT_PRICING["openai"]["gpt-4o"]["prompt"] == 0.0025
