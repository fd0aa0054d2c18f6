"""Sliding-window admission control across hosted model tiers.

Each tier keeps its own window of request timestamps. A request asks for a
tier; when that tier is saturated the governor walks toward cheaper tiers
with higher ceilings and admits on the first one with room. Degradation never
moves back up within a single admission.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
import logging
import time

from logpilot.errors import AdmissionError, ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierSpec:
    """A hosted quality tier with its own requests-per-minute ceiling."""

    name: str
    label: str
    model: str
    requests_per_minute: int


#: Ordered from highest to lowest capability.
DEFAULT_TIERS: tuple[TierSpec, ...] = (
    TierSpec("reasoning", "Reasoning", "gemini-2.5-pro", 2),
    TierSpec("balanced", "Balanced", "gemini-2.5-flash", 10),
    TierSpec("fast", "Fast", "gemini-flash-lite-latest", 15),
)


@dataclass(frozen=True)
class Admission:
    """Outcome of a successful admission."""

    tier: TierSpec
    requested: TierSpec
    admitted_at: float

    @property
    def degraded(self) -> bool:
        return self.tier.name != self.requested.name

    @property
    def notice(self) -> str | None:
        """User-facing degradation notice, or None when not degraded."""
        if not self.degraded:
            return None
        return (
            f"**Notice:** The '{self.requested.label}' model is busy. "
            f"Using '{self.tier.label}' for this request."
        )


class RateGovernor:
    """Per-tier sliding-window limiter with downward fallback."""

    def __init__(
        self,
        tiers: Sequence[TierSpec] = DEFAULT_TIERS,
        *,
        window_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not tiers:
            raise ConfigurationError("RateGovernor needs at least one tier")
        names = [t.name for t in tiers]
        if len(set(names)) != len(names):
            raise ConfigurationError(
                f"Duplicate tier names: {names}",
                hint="Each hosted tier needs a unique name.",
            )
        self._tiers: tuple[TierSpec, ...] = tuple(tiers)
        self._window_s = window_s
        self._clock = clock
        self._windows: dict[str, tuple[float, ...]] = {t.name: () for t in tiers}

    @property
    def tiers(self) -> tuple[TierSpec, ...]:
        return self._tiers

    def has_tier(self, name: str) -> bool:
        return name in self._windows

    def tier(self, name: str) -> TierSpec:
        for spec in self._tiers:
            if spec.name == name:
                return spec
        raise ConfigurationError(
            f"Unknown hosted tier: {name!r}",
            hint=f"Choose one of: {', '.join(self._windows)}",
        )

    def usage(self, name: str) -> int:
        """Return the number of requests in *name*'s live window."""
        self._prune(self._clock())
        return len(self._windows[self.tier(name).name])

    def admit(self, requested: str) -> Admission:
        """Admit one request on *requested* or the first lower tier with room.

        Raises:
            AdmissionError: every tier from *requested* downward is saturated.
        """
        wanted = self.tier(requested)
        now = self._clock()
        self._prune(now)

        start = self._tiers.index(wanted)
        for spec in self._tiers[start:]:
            count = len(self._windows[spec.name])
            logger.debug(
                "Checking %s: %d requests / %d RPM limit",
                spec.name,
                count,
                spec.requests_per_minute,
            )
            if count < spec.requests_per_minute:
                self._windows[spec.name] = (*self._windows[spec.name], now)
                admission = Admission(tier=spec, requested=wanted, admitted_at=now)
                if admission.degraded:
                    logger.warning(
                        "Tier %s saturated; degraded to %s", wanted.name, spec.name
                    )
                return admission

        raise AdmissionError(
            "All AI models are currently busy due to rate limits. "
            "Please wait a moment before trying again.",
            hint=f"Windows reset {self._window_s:.0f}s after each request.",
        )

    def _prune(self, now: float) -> None:
        cutoff = now - self._window_s
        self._windows = {
            name: tuple(ts for ts in stamps if ts > cutoff)
            for name, stamps in self._windows.items()
        }
