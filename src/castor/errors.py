"""Exception hierarchy for castor.

Every vendor failure surfaces as an :class:`APIError` subtype that keeps the
HTTP status and the raw decoded error body, plus a vendor-agnostic
:class:`ErrorKind` so callers can branch without knowing vendor error codes.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from castor._http import RETRYABLE_STATUS_CODES

if TYPE_CHECKING:
    from collections.abc import Mapping


class ErrorKind(str, Enum):
    """Vendor-agnostic classification of a failure."""

    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    QUOTA_EXCEEDED = "quota_exceeded"
    INVALID_REQUEST = "invalid_request"
    OVERLOADED = "overloaded"
    NOT_FOUND = "not_found"
    SERVER = "server"
    TRANSPORT = "transport"
    RESPONSE_PARSE = "response_parse"
    UNSUPPORTED_OPERATION = "unsupported_operation"
    UNKNOWN = "unknown"


class CastorError(Exception):
    """Base exception for all castor errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(CastorError):
    """Configuration validation or resolution failed."""


class ProviderNotFoundError(CastorError):
    """No adapter is registered or configured under the requested name."""


class TransportError(CastorError):
    """The HTTP exchange failed below the protocol level (DNS, timeout, reset)."""

    kind = ErrorKind.TRANSPORT

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.provider = provider


class ResponseParseError(CastorError):
    """A vendor response body could not be decoded."""

    kind = ErrorKind.RESPONSE_PARSE

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        provider: str | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.provider = provider
        self.body = body


class UnsupportedOperationError(CastorError):
    """The provider permanently lacks the requested capability."""

    kind = ErrorKind.UNSUPPORTED_OPERATION


class RateLimitExceededError(CastorError):
    """The local rate limiter refused the call before it reached the vendor."""

    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        provider: str | None = None,
        limit: int | None = None,
        window_s: int | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.provider = provider
        self.limit = limit
        self.window_s = window_s


# HTTP status fallback used when a vendor error code is missing or unknown.
_STATUS_KINDS: dict[int, ErrorKind] = {
    400: ErrorKind.INVALID_REQUEST,
    401: ErrorKind.AUTHENTICATION,
    403: ErrorKind.AUTHENTICATION,
    404: ErrorKind.NOT_FOUND,
    413: ErrorKind.INVALID_REQUEST,
    422: ErrorKind.INVALID_REQUEST,
    429: ErrorKind.RATE_LIMIT,
    503: ErrorKind.OVERLOADED,
    529: ErrorKind.OVERLOADED,
}


def kind_for_status(status_code: int | None) -> ErrorKind:
    """Classify an HTTP status into an :class:`ErrorKind`."""
    if status_code is None:
        return ErrorKind.UNKNOWN
    kind = _STATUS_KINDS.get(status_code)
    if kind is not None:
        return kind
    if status_code >= 500:
        return ErrorKind.SERVER
    if 400 <= status_code < 500:
        return ErrorKind.INVALID_REQUEST
    return ErrorKind.UNKNOWN


class APIError(CastorError):
    """A vendor returned a non-2xx response.

    The raw decoded body and the HTTP status are always retained. Vendor
    subclasses fill ``error_type``/``error_code`` and pick the ``kind``.
    """

    provider_name: ClassVar[str | None] = None

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        status_code: int | None = None,
        body: Mapping[str, Any] | None = None,
        provider: str | None = None,
        error_type: str | None = None,
        error_code: str | None = None,
        kind: ErrorKind | None = None,
        retryable: bool | None = None,
        retry_after_s: float | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.status_code = status_code
        self.body: dict[str, Any] = dict(body) if body else {}
        self.provider = provider if provider is not None else self.provider_name
        self.error_type = error_type
        self.error_code = error_code
        self.kind = kind if kind is not None else kind_for_status(status_code)
        if retryable is None:
            retryable = retry_after_s is not None or (
                status_code is not None and status_code in RETRYABLE_STATUS_CODES
            )
        self.retryable = retryable
        self.retry_after_s = retry_after_s

    @classmethod
    def from_response(
        cls,
        body: Mapping[str, Any] | None,
        status_code: int,
        *,
        retry_after_s: float | None = None,
    ) -> APIError:
        """Build an error from a decoded vendor error body and HTTP status."""
        error = _error_object(body)
        message = error.get("message")
        if not isinstance(message, str) or not message:
            message = f"{cls.provider_name or 'API'} request failed"
        error_type = _as_str(error.get("type"))
        error_code = _as_str(error.get("code"))
        return cls(
            f"{message} (status={status_code})",
            status_code=status_code,
            body=body,
            error_type=error_type,
            error_code=error_code,
            kind=cls.classify(error, status_code),
            retry_after_s=retry_after_s,
        )

    @classmethod
    def classify(cls, error: Mapping[str, Any], status_code: int | None) -> ErrorKind:
        """Map a vendor error object to a kind; the base class uses status only."""
        _ = error
        return kind_for_status(status_code)

    def is_authentication_error(self) -> bool:
        """True for auth vendor codes and for any HTTP 401."""
        return self.kind is ErrorKind.AUTHENTICATION or self.status_code == 401

    def is_rate_limit_error(self) -> bool:
        """True for rate-limit vendor codes and for any HTTP 429."""
        return self.kind is ErrorKind.RATE_LIMIT or self.status_code == 429

    def is_quota_error(self) -> bool:
        return self.kind is ErrorKind.QUOTA_EXCEEDED

    def is_invalid_request_error(self) -> bool:
        return self.kind is ErrorKind.INVALID_REQUEST

    def is_overloaded_error(self) -> bool:
        return self.kind is ErrorKind.OVERLOADED

    def is_not_found_error(self) -> bool:
        return self.kind is ErrorKind.NOT_FOUND

    def is_server_error(self) -> bool:
        return self.kind is ErrorKind.SERVER


class OpenAIError(APIError):
    """OpenAI error; classified from ``error.type`` and ``error.code``."""

    provider_name = "openai"

    _CODES: ClassVar[dict[str, ErrorKind]] = {
        "invalid_api_key": ErrorKind.AUTHENTICATION,
        "rate_limit_exceeded": ErrorKind.RATE_LIMIT,
        "insufficient_quota": ErrorKind.QUOTA_EXCEEDED,
        "model_not_found": ErrorKind.NOT_FOUND,
    }
    _TYPES: ClassVar[dict[str, ErrorKind]] = {
        "authentication_error": ErrorKind.AUTHENTICATION,
        "rate_limit_exceeded": ErrorKind.RATE_LIMIT,
        "insufficient_quota": ErrorKind.QUOTA_EXCEEDED,
        "server_error": ErrorKind.SERVER,
    }

    @classmethod
    def classify(cls, error: Mapping[str, Any], status_code: int | None) -> ErrorKind:
        code = _as_str(error.get("code"))
        if code in cls._CODES:
            return cls._CODES[code]
        error_type = _as_str(error.get("type"))
        if error_type in cls._TYPES:
            return cls._TYPES[error_type]
        # invalid_request_error is also used for 404s on unknown models.
        if error_type == "invalid_request_error" and status_code in (None, 400):
            return ErrorKind.INVALID_REQUEST
        return kind_for_status(status_code)


class AnthropicError(APIError):
    """Anthropic error; classified from ``error.type``."""

    provider_name = "anthropic"

    _TYPES: ClassVar[dict[str, ErrorKind]] = {
        "authentication_error": ErrorKind.AUTHENTICATION,
        "permission_error": ErrorKind.AUTHENTICATION,
        "rate_limit_error": ErrorKind.RATE_LIMIT,
        "overloaded_error": ErrorKind.OVERLOADED,
        "invalid_request_error": ErrorKind.INVALID_REQUEST,
        "request_too_large": ErrorKind.INVALID_REQUEST,
        "not_found_error": ErrorKind.NOT_FOUND,
        "api_error": ErrorKind.SERVER,
    }

    @classmethod
    def classify(cls, error: Mapping[str, Any], status_code: int | None) -> ErrorKind:
        error_type = _as_str(error.get("type"))
        if error_type in cls._TYPES:
            return cls._TYPES[error_type]
        return kind_for_status(status_code)


class GeminiError(APIError):
    """Gemini error; classified from the google.rpc ``error.status``."""

    provider_name = "gemini"

    _STATUSES: ClassVar[dict[str, ErrorKind]] = {
        "UNAUTHENTICATED": ErrorKind.AUTHENTICATION,
        "PERMISSION_DENIED": ErrorKind.AUTHENTICATION,
        "RESOURCE_EXHAUSTED": ErrorKind.RATE_LIMIT,
        "NOT_FOUND": ErrorKind.NOT_FOUND,
        "FAILED_PRECONDITION": ErrorKind.INVALID_REQUEST,
        "INTERNAL": ErrorKind.SERVER,
        "UNAVAILABLE": ErrorKind.OVERLOADED,
        "DEADLINE_EXCEEDED": ErrorKind.SERVER,
    }

    @property
    def error_status(self) -> str | None:
        """The google.rpc status string (``RESOURCE_EXHAUSTED``, ...)."""
        return self.error_type

    @classmethod
    def from_response(
        cls,
        body: Mapping[str, Any] | None,
        status_code: int,
        *,
        retry_after_s: float | None = None,
    ) -> APIError:
        err = super().from_response(body, status_code, retry_after_s=retry_after_s)
        # Gemini puts the rpc status in ``status`` and a numeric code in ``code``.
        error = _error_object(body)
        err.error_type = _as_str(error.get("status"))
        return err

    @classmethod
    def classify(cls, error: Mapping[str, Any], status_code: int | None) -> ErrorKind:
        status = _as_str(error.get("status"))
        if status == "INVALID_ARGUMENT":
            # Invalid API keys come back as 400 INVALID_ARGUMENT.
            message = str(error.get("message", "")).lower()
            if "api key" in message or "api_key" in message:
                return ErrorKind.AUTHENTICATION
            return ErrorKind.INVALID_REQUEST
        if status in cls._STATUSES:
            return cls._STATUSES[status]
        return kind_for_status(status_code)


def _error_object(body: Mapping[str, Any] | None) -> dict[str, Any]:
    if not body:
        return {}
    error = body.get("error")
    return error if isinstance(error, dict) else {}


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)
