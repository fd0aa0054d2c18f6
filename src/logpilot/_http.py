"""Small HTTP-related constants shared across logpilot.

This module is intentionally tiny to avoid circular imports and drift.
"""

from __future__ import annotations

# Status codes a provider may clear on its own; used to flag APIError.retryable.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

# Fallback timeout for local model servers (seconds).
LOCAL_SERVER_TIMEOUT_S: float = 120.0
