"""Shared utilities for provider implementations."""

from __future__ import annotations

import json
import logging
import mimetypes
from typing import TYPE_CHECKING, Any
import uuid

from castor.errors import ResponseParseError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from castor.models import ChatOptions, Message

log = logging.getLogger(__name__)

_REQUIRED_CHOICES = frozenset({"required", "any"})


def split_system(
    messages: Sequence[Message], options: ChatOptions
) -> tuple[str | None, list[Message]]:
    """Pull the system prompt out of ``messages``.

    The first system message wins; later ones are dropped. ``options.system``
    overrides any system message.
    """
    system: str | None = None
    rest: list[Message] = []
    for message in messages:
        if message.role == "system":
            if system is None:
                system = message.text
            else:
                log.debug("Dropping additional system message")
            continue
        rest.append(message)
    if options.system is not None:
        system = options.system
    return system, rest


def normalize_tool_choice(choice: str | None) -> str | None:
    """Fold ``any`` into ``required``; other values pass through."""
    if choice is None:
        return None
    return "required" if choice in _REQUIRED_CHOICES else choice


def map_finish_reason(table: Mapping[str, str], code: Any) -> str | None:
    """Map a vendor finish code through ``table``; unknown codes pass through."""
    if code is None:
        return None
    code = str(code)
    return table.get(code, code)


def normalize_arguments(arguments: Any, *, provider: str) -> str:
    """Return tool-call arguments as valid JSON text.

    Dicts are serialised; strings must already be JSON (empty means ``{}``).
    """
    if arguments is None:
        return "{}"
    if not isinstance(arguments, str):
        return json.dumps(arguments)
    if not arguments.strip():
        return "{}"
    try:
        json.loads(arguments)
    except ValueError as e:
        raise ResponseParseError(
            f"{provider} returned tool-call arguments that are not valid JSON",
            provider=provider,
            body=arguments[:2048],
        ) from e
    return arguments


def decode_arguments(arguments: str) -> Any:
    """Decode JSON arguments for vendors that want objects, not strings."""
    try:
        return json.loads(arguments) if arguments.strip() else {}
    except ValueError:
        return {}


def new_call_id() -> str:
    """Generate a tool-call id for vendors that do not send one."""
    return f"call_{uuid.uuid4().hex[:24]}"


def guess_image_mime(url: str) -> str:
    mime, _ = mimetypes.guess_type(url)
    return mime if mime and mime.startswith("image/") else "image/jpeg"


def apply_extra(payload: dict[str, Any], extra: Mapping[str, Any]) -> dict[str, Any]:
    """Merge vendor override fields verbatim, last."""
    if extra:
        payload.update(extra)
    return payload


def response_schema(response_format: Any) -> tuple[bool, Mapping[str, Any] | None]:
    """Return ``(json_mode, schema)`` for a ``ChatOptions.response_format``.

    Accepts ``"json_object"``, a bare JSON schema, or an OpenAI-shaped
    ``{"type": "json_schema", "json_schema": {"schema": ...}}`` wrapper.
    """
    if response_format is None or response_format == "text":
        return False, None
    if isinstance(response_format, str):
        return response_format == "json_object", None
    fmt_type = response_format.get("type")
    if fmt_type == "json_object":
        return True, None
    if fmt_type == "json_schema":
        wrapper = response_format.get("json_schema") or {}
        return True, wrapper.get("schema")
    return True, response_format
