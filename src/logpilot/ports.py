"""Collaborator seams consumed by the assistant.

The surrounding application owns the log table, the filter tabs, scrolling
and persistence. logpilot only reads and writes through these narrow
protocols. The in-memory implementations back the CLI and the tests.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal, Protocol, runtime_checkable

from logpilot.corpus import LogEntry

MatchMode = Literal["AND", "OR"]


@dataclass(frozen=True)
class FilterSpec:
    """Filters requested by the model; ``None`` leaves a dimension untouched."""

    levels: tuple[str, ...] | None = None
    daemons: tuple[str, ...] | None = None
    keywords: tuple[str, ...] | None = None
    match_mode: MatchMode = "OR"


@runtime_checkable
class LogSource(Protocol):
    """Read-only view of the full corpus, stable for the duration of a turn."""

    def entries(self) -> Sequence[LogEntry]: ...

    def daemons(self) -> Sequence[str]: ...


@runtime_checkable
class FilterSink(Protocol):
    def apply(self, filters: FilterSpec, reset: bool) -> None: ...


@runtime_checkable
class NavigationSink(Protocol):
    def scroll_to(self, log_id: int) -> None: ...


@runtime_checkable
class FindingsStore(Protocol):
    def findings(self) -> Sequence[str]: ...


@runtime_checkable
class CredentialStore(Protocol):
    def get(self) -> str | None: ...

    def set(self, value: str) -> None: ...


@runtime_checkable
class ConsentStore(Protocol):
    def get(self) -> bool: ...

    def set(self, value: bool) -> None: ...


@dataclass
class InMemoryLogSource:
    logs: list[LogEntry] = field(default_factory=list)
    daemon_names: list[str] | None = None

    def entries(self) -> Sequence[LogEntry]:
        return tuple(self.logs)

    def daemons(self) -> Sequence[str]:
        if self.daemon_names is not None:
            return tuple(self.daemon_names)
        return tuple(sorted({e.daemon for e in self.logs if e.daemon}))


@dataclass
class InMemoryFindingsStore:
    saved: list[str] = field(default_factory=list)

    def findings(self) -> Sequence[str]:
        return tuple(self.saved)

    def save(self, finding: str) -> None:
        if finding not in self.saved:
            self.saved.append(finding)


@dataclass
class InMemoryCredentialStore:
    value: str | None = None

    def get(self) -> str | None:
        return self.value

    def set(self, value: str) -> None:
        self.value = value


@dataclass
class InMemoryConsentStore:
    value: bool = False

    def get(self) -> bool:
        return self.value

    def set(self, value: bool) -> None:
        self.value = value


@dataclass
class RecordingFilterSink:
    """Filter sink that remembers every request (CLI echo and tests)."""

    applied: list[tuple[FilterSpec, bool]] = field(default_factory=list)

    def apply(self, filters: FilterSpec, reset: bool) -> None:
        self.applied.append((filters, reset))


@dataclass
class RecordingNavigationSink:
    scrolled: list[int] = field(default_factory=list)

    def scroll_to(self, log_id: int) -> None:
        self.scrolled.append(log_id)
