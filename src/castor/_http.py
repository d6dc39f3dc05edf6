"""Small HTTP-related constants shared across castor.

Imported by both config and errors, so it must not import either.
"""

from __future__ import annotations

# Status codes flagged as retryable on APIError. castor never retries itself.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset(
    {408, 409, 429, 500, 502, 503, 504, 529}
)

DEFAULT_TIMEOUT_S = 30.0
DEFAULT_MAX_TOKENS = 4096
