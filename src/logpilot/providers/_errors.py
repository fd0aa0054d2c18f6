"""Shared provider-side error helpers.

Providers attach retry metadata via APIError so the turn loop can tell a
rate limit apart from other failures without brittle substring matching.
"""

from __future__ import annotations

import asyncio
import math
import re
from typing import Any

import httpx

from logpilot._http import RETRYABLE_STATUS_CODES
from logpilot.errors import APIError, RateLimitError, _walk_exception_chain


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "code", "status"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


_PROTO_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")


def _retry_info_from_details(details: Any) -> float | None:
    """Extract retry delay from Google API-style RetryInfo in error details.

    Gemini SDK ``APIError`` exposes the parsed JSON body via a ``.details``
    attribute shaped like::

        {"error": {"details": [{"@type": "...RetryInfo", "retryDelay": "8s"}]}}

    The ``retryDelay`` value is a protobuf Duration string (e.g. ``"8s"``,
    ``"8.352104981s"``).
    """
    if not isinstance(details, dict):
        return None
    error: Any = details.get("error", details)
    if not isinstance(error, dict):
        return None
    detail_list: Any = error.get("details")
    if not isinstance(detail_list, list):
        return None
    for entry in detail_list:
        if not isinstance(entry, dict):
            continue
        at_type = entry.get("@type", "")
        if not isinstance(at_type, str) or "RetryInfo" not in at_type:
            continue
        delay_raw = entry.get("retryDelay")
        if not isinstance(delay_raw, str):
            continue
        m = _PROTO_DURATION_RE.match(delay_raw)
        if m:
            return float(m.group(1))
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after_s", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        response = getattr(e, "response", None)
        headers: Any = getattr(response, "headers", None)
        if headers is not None:
            raw: Any = headers.get("Retry-After") if hasattr(headers, "get") else None
            if isinstance(raw, str) and raw.strip():
                try:
                    seconds = float(raw)
                except ValueError:
                    seconds = -1.0
                if seconds >= 0:
                    return seconds

        # Fallback: Google API-style RetryInfo in error details.
        retry_info = _retry_info_from_details(getattr(e, "details", None))
        if retry_info is not None:
            return retry_info
    return None


_USAGE_LINK_RE = re.compile(r"https?://ai\.dev/usage\?tab=rate-limit")


def usage_link(exc: BaseException) -> str | None:
    """Return the provider's rate-limit dashboard link if the error mentions one."""
    for e in _walk_exception_chain(exc):
        m = _USAGE_LINK_RE.search(str(e))
        if m:
            return m.group(0)
    return None


def wait_seconds(retry_after_s: float) -> int:
    """Round a retry hint up to whole seconds for display."""
    return max(1, math.ceil(retry_after_s))


def _auth_hint(provider: str, status_code: int | None, cause_message: str) -> str | None:
    """Generate a hint for auth errors where naming the env var is useful."""
    cause_lower = cause_message.lower()
    if status_code in {401, 403} or (
        status_code == 400 and ("api key" in cause_lower or "api_key" in cause_lower)
    ):
        if provider == "gemini":
            return "Check credentials (set GEMINI_API_KEY or enter a key in settings)."
        return "Check credentials/permissions."
    return None


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    allow_network_errors: bool,
    message: str | None = None,
    hint: str | None = None,
) -> APIError:
    """Map provider SDK exceptions into APIError with stable retry metadata."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, APIError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        if hint is not None and exc.hint is None:
            exc.hint = hint
        return exc

    status_code = extract_status_code(exc)
    retry_after_s = extract_retry_after_s(exc)

    retryable = retry_after_s is not None
    if isinstance(status_code, int) and status_code in RETRYABLE_STATUS_CODES:
        retryable = True
    elif allow_network_errors:
        for e in _walk_exception_chain(exc):
            if isinstance(e, (httpx.TimeoutException, httpx.RequestError)):
                retryable = True
                break

    derived_hint = hint if hint is not None else _auth_hint(provider, status_code, str(exc))

    msg = message or f"{provider} {phase} failed"
    err_cls: type[APIError] = RateLimitError if status_code == 429 else APIError

    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    cause = str(exc)
    return err_cls(
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        hint=derived_hint,
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
    )
