"""Exception hierarchy for logpilot."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class LogPilotError(Exception):
    """Base exception for all logpilot errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(LogPilotError):
    """Configuration validation or resolution failed."""


class ConversationBusyError(LogPilotError):
    """A turn is already in flight for this conversation."""


class PreconditionError(LogPilotError):
    """A turn cannot start until the user satisfies a precondition.

    The prompt that hit the precondition is retained and replayed once the
    precondition is met.
    """


class MissingCredentialError(PreconditionError):
    """The hosted provider needs an API key and none is configured."""


class ConsentRequiredError(PreconditionError):
    """The local runtime must not be downloaded without user consent."""


class RuntimeDownloadError(ConsentRequiredError):
    """A consented runtime download failed; the prompt waits for another try."""


class AdmissionError(LogPilotError):
    """Every eligible hosted tier is saturated; nothing was dispatched."""


class APIError(LogPilotError):
    """Provider call failed.

    Providers attach retry metadata so the turn loop can render a wait-time
    message without brittle substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase

    @property
    def is_rate_limit(self) -> bool:
        """Whether the failure is shaped like a rate limit."""
        return self.status_code == 429 or self.retry_after_s is not None


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""

    @property
    def is_rate_limit(self) -> bool:
        """Rate limit errors are always rate-limit shaped."""
        return True


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
