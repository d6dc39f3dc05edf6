"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, and ready-made
provider configs. All fixtures in the isolation section are autouse.
"""

from __future__ import annotations

import logging
import os

import pytest

from castor.config import AnthropicConfig, GeminiConfig, OpenAIConfig

# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================

_ENV_PREFIXES = ("OPENAI_", "ANTHROPIC_", "GEMINI_", "CASTOR_")


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    monkeypatch.setattr(
        "castor.config.load_dotenv", lambda *_args, **_kwargs: False
    )


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Ensure a clean provider environment for each test.

    Clears OPENAI_*, ANTHROPIC_*, GEMINI_* and CASTOR_* env vars.
    Opt-out: @pytest.mark.allow_env_pollution
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return
    for key in list(os.environ.keys()):
        if key.startswith(_ENV_PREFIXES):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Provider Configs
# =============================================================================


@pytest.fixture
def openai_config() -> OpenAIConfig:
    return OpenAIConfig(api_key="sk-test")


@pytest.fixture
def anthropic_config() -> AnthropicConfig:
    return AnthropicConfig(api_key="sk-ant-test")


@pytest.fixture
def gemini_config() -> GeminiConfig:
    return GeminiConfig(api_key="gem-test")
