"""Log entries as the assistant sees them.

Ingestion proper lives outside logpilot; ``load_jsonl`` only exists so the
command-line chat has something to talk about.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
import enum
import json
from typing import TYPE_CHECKING

from logpilot.errors import ConfigurationError

if TYPE_CHECKING:
    from pathlib import Path


class LogLevel(str, enum.Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @classmethod
    def parse(cls, raw: str) -> LogLevel:
        value = raw.strip().upper()
        if value == "WARN":
            value = "WARNING"
        if value in ("FATAL", "CRIT"):
            value = "CRITICAL"
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(
                f"Unknown log level: {raw!r}",
                hint=f"Expected one of: {', '.join(m.value for m in cls)}",
            ) from None


SEVERE_LEVELS: frozenset[LogLevel] = frozenset({LogLevel.ERROR, LogLevel.CRITICAL})


@dataclass(frozen=True)
class LogEntry:
    """One parsed log line."""

    id: int
    timestamp: datetime
    level: LogLevel
    message: str
    daemon: str | None = None

    @property
    def epoch_s(self) -> float:
        return as_utc(self.timestamp).timestamp()


def as_utc(ts: datetime) -> datetime:
    """Treat naive timestamps as UTC; convert aware ones."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def format_timestamp(ts: datetime) -> str:
    """Render *ts* as ISO-8601 UTC with millisecond precision, e.g. ``2024-01-02T03:04:05.678Z``."""
    return as_utc(ts).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(raw: str | float | int) -> datetime:
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(float(raw), tz=UTC)
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        raise ConfigurationError(
            f"Unparseable timestamp: {raw!r}",
            hint="Use ISO-8601 (2024-01-02T03:04:05Z) or epoch seconds.",
        ) from None


def load_jsonl(path: Path) -> list[LogEntry]:
    """Load one JSON object per line: ``timestamp``, ``level``, ``message``.

    ``id`` defaults to the line position and ``daemon`` is optional. Blank
    lines are skipped.
    """
    entries: list[LogEntry] = []
    with path.open(encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                raise ConfigurationError(
                    f"{path}:{lineno}: invalid JSON ({e.msg})"
                ) from e
            if not isinstance(record, dict):
                raise ConfigurationError(f"{path}:{lineno}: expected a JSON object")
            missing = [k for k in ("timestamp", "level", "message") if k not in record]
            if missing:
                raise ConfigurationError(
                    f"{path}:{lineno}: missing field(s) {', '.join(missing)}"
                )
            entries.append(
                LogEntry(
                    id=int(record.get("id", len(entries))),
                    timestamp=parse_timestamp(record["timestamp"]),
                    level=LogLevel.parse(str(record["level"])),
                    message=str(record["message"]),
                    daemon=record.get("daemon"),
                )
            )
    return entries
