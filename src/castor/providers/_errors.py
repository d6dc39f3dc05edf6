"""Shared provider-side error helpers.

Turn httpx responses and exceptions into the castor taxonomy: vendor
``APIError`` subtypes for non-2xx statuses, ``TransportError`` for failures
below HTTP, ``ResponseParseError`` for undecodable bodies.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any

import httpx

from castor.config import API_KEY_ENV_VARS
from castor.errors import APIError, ResponseParseError, TransportError

if TYPE_CHECKING:
    from collections.abc import Mapping


def extract_retry_after_s(headers: Mapping[str, str] | None) -> float | None:
    """Parse a numeric ``Retry-After`` header into seconds."""
    if headers is None:
        return None
    raw = headers.get("Retry-After") or headers.get("retry-after")
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        seconds = float(raw)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _auth_hint(provider: str) -> str:
    env_var = API_KEY_ENV_VARS.get(provider, "the provider API key")
    return f"Check credentials/permissions (try setting {env_var} or api_key=...)."


def decode_error_body(content: bytes) -> dict[str, Any]:
    """Decode an error body leniently; non-JSON bodies become ``{"raw": text}``."""
    text = content.decode("utf-8", errors="replace")
    try:
        data = json.loads(text) if text.strip() else {}
    except ValueError:
        return {"raw": text}
    # Gemini sometimes wraps the error object in a one-element list.
    if isinstance(data, list) and data and isinstance(data[0], dict):
        data = data[0]
    return data if isinstance(data, dict) else {"raw": data}


def build_api_error(
    error_cls: type[APIError],
    body: Mapping[str, Any],
    status_code: int,
    headers: Mapping[str, str] | None = None,
) -> APIError:
    """Construct the vendor error and attach an auth hint where useful."""
    err = error_cls.from_response(
        body, status_code, retry_after_s=extract_retry_after_s(headers)
    )
    if err.is_authentication_error() and err.hint is None:
        err.hint = _auth_hint(err.provider or "")
    return err


def raise_for_status(response: httpx.Response, error_cls: type[APIError]) -> None:
    """Raise the vendor error for a non-2xx response whose body has been read."""
    if response.is_success:
        return
    body = decode_error_body(response.content)
    raise build_api_error(error_cls, body, response.status_code, response.headers)


async def araise_for_status(response: httpx.Response, error_cls: type[APIError]) -> None:
    """Streaming variant: read the error body before raising, then close."""
    if response.is_success:
        return
    try:
        await response.aread()
    except httpx.RequestError as e:
        raise wrap_transport_error(
            e, provider=error_cls.provider_name or "unknown", phase="stream"
        ) from e
    finally:
        await response.aclose()
    raise_for_status(response, error_cls)


def decode_json_body(response: httpx.Response, *, provider: str) -> dict[str, Any]:
    """Decode a successful JSON body or raise ResponseParseError."""
    try:
        data = response.json()
    except ValueError as e:
        raise ResponseParseError(
            f"Failed to parse {provider} API response: {e}",
            provider=provider,
            body=response.text[:2048],
        ) from e
    if not isinstance(data, dict):
        raise ResponseParseError(
            f"Failed to parse {provider} API response: expected a JSON object",
            provider=provider,
            body=response.text[:2048],
        )
    return data


def wrap_transport_error(exc: BaseException, *, provider: str, phase: str) -> TransportError:
    """Wrap an httpx transport failure; cancellation is never wrapped."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc
    hint = None
    if isinstance(exc, httpx.TimeoutException):
        hint = "The request timed out; raise timeout_s on the provider config."
    cause = str(exc) or type(exc).__name__
    return TransportError(
        f"{provider} {phase} request failed: {cause}",
        hint=hint,
        provider=provider,
    )
