"""Provider protocol: one inference step over history and tools."""

from __future__ import annotations

from dataclasses import dataclass
import enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from logpilot.providers.models import ProviderRequest, ProviderResponse


class ProviderKind(enum.Enum):
    """Closed set of backend kinds; gating attaches per kind."""

    HOSTED = "hosted"
    ON_DEVICE = "on_device"
    LOCAL_RUNTIME = "local_runtime"


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by providers."""

    tools: bool


@runtime_checkable
class Provider(Protocol):
    """Minimal provider protocol: run one step, report what you can do."""

    @property
    def kind(self) -> ProviderKind:
        """Which backend family this provider belongs to."""
        ...

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Feature capabilities for tool gating."""
        ...

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        """Run one inference step; return text or proposed tool calls."""
        ...
