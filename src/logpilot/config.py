"""Configuration: frozen Config with environment-resolved defaults."""

from __future__ import annotations

from dataclasses import dataclass
import os

from dotenv import load_dotenv

from logpilot.errors import ConfigurationError
from logpilot.governor import DEFAULT_TIERS, TierSpec

load_dotenv()

API_KEY_ENV_VAR = "GEMINI_API_KEY"

#: Tiers served by local backends; they bypass the rate governor.
ON_DEVICE_TIER = "on_device"
LOCAL_RUNTIME_TIER = "local_runtime"
LOCAL_TIERS: frozenset[str] = frozenset({ON_DEVICE_TIER, LOCAL_RUNTIME_TIER})


@dataclass(frozen=True)
class Config:
    """Immutable configuration for an assistant conversation.

    The API key is only a default: a key the user enters at runtime (through
    the credential store) takes precedence. A missing key is not a
    configuration error; the turn that needs it asks for one instead.

    Example:
        config = Config(tier="fast")
        # API key is automatically resolved from GEMINI_API_KEY
    """

    #: Requested tier; a hosted tier name or one of the local tiers.
    tier: str = "balanced"
    tiers: tuple[TierSpec, ...] = DEFAULT_TIERS
    #: Auto-resolved from ``GEMINI_API_KEY`` when *None*.
    api_key: str | None = None
    max_steps: int = 10
    rate_window_s: float = 60.0
    solution_model: str = "gemini-2.5-flash"
    #: OpenAI-compatible server hosting the on-device session model.
    local_session_url: str | None = None
    local_session_model: str = "local-model"
    #: Ollama-compatible server used for the downloadable runtime.
    runtime_url: str | None = None
    runtime_model: str = "llama3.2:3b"
    use_mock: bool = False

    def __post_init__(self) -> None:
        """Resolve environment defaults and validate."""
        hosted = {t.name for t in self.tiers}
        if not hosted:
            raise ConfigurationError(
                "At least one hosted tier is required",
                hint="Pass tiers=DEFAULT_TIERS or your own TierSpec tuple.",
            )
        if self.tier not in hosted and self.tier not in LOCAL_TIERS:
            choices = ", ".join([*sorted(hosted), *sorted(LOCAL_TIERS)])
            raise ConfigurationError(
                f"Unknown tier: {self.tier!r}",
                hint=f"Supported tiers: {choices}",
            )
        for spec in self.tiers:
            if spec.requests_per_minute < 1:
                raise ConfigurationError(
                    f"Tier {spec.name!r} needs requests_per_minute ≥ 1, "
                    f"got {spec.requests_per_minute}",
                )
        if self.max_steps < 1:
            raise ConfigurationError(
                f"max_steps must be ≥ 1, got {self.max_steps}",
                hint="This bounds how many model steps one turn may take.",
            )
        if self.rate_window_s <= 0:
            raise ConfigurationError(
                f"rate_window_s must be > 0, got {self.rate_window_s}",
            )

        if self.api_key is None and not self.use_mock:
            object.__setattr__(self, "api_key", os.environ.get(API_KEY_ENV_VAR))
        if self.local_session_url is None:
            object.__setattr__(
                self,
                "local_session_url",
                os.environ.get(
                    "LOGPILOT_LOCAL_SESSION_URL", "http://localhost:1234/v1"
                ),
            )
        if self.runtime_url is None:
            object.__setattr__(
                self,
                "runtime_url",
                os.environ.get("LOGPILOT_RUNTIME_URL", "http://localhost:11434"),
            )

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(tier={self.tier!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"max_steps={self.max_steps}, use_mock={self.use_mock})"
        )

    __repr__ = __str__
