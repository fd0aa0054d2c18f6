"""Domain models for the provider transport layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Turn:
    """One provider-facing history item.

    ``tool`` turns carry the result of the preceding ``model`` turn's
    ``tool_call``; they never reach the user verbatim.
    """

    role: Literal["user", "model", "tool"]
    content: str = ""
    tool_call: ToolCall | None = None
    result: dict[str, Any] | None = None

    @property
    def tool_name(self) -> str | None:
        return self.tool_call.name if self.tool_call is not None else None


@dataclass(frozen=True)
class ProviderRequest:
    """A unified request payload for one inference step."""

    model: str
    history: list[Turn]
    system_instruction: str | None = None
    #: Provider-neutral function declarations (name/description/parameters).
    tools: list[dict[str, Any]] | None = None
    temperature: float | None = None


@dataclass
class ProviderResponse:
    """A standardized response from one inference step."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: dict[str, int] = field(default_factory=dict)
