"""Pure analysis over the log corpus.

Every function takes the entries it should look at and returns a plain dict
the model can read. Nothing here raises for "no data" outcomes; those come
back as summaries.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime, timedelta
import json
import math
import re
from typing import Any, Literal

from logpilot.corpus import SEVERE_LEVELS, LogEntry, format_timestamp

MAX_SEARCH_EXAMPLES = 3
MAX_TRACE_EXAMPLES = 5
TOP_PATTERNS = 5
SPIKE_BUCKET_S = 60
SPIKE_SIGMA = 2.0

_DIGITS = re.compile(r"\d+")


def level_counts(entries: Iterable[LogEntry]) -> dict[str, int]:
    """Histogram of entries per level, in first-seen order."""
    return dict(Counter(e.level.value for e in entries))


def search_logs(
    entries: Sequence[LogEntry],
    keywords: Sequence[str],
    match_mode: Literal["AND", "OR"] = "OR",
    limit: int = 100,
) -> dict[str, Any]:
    needles = [k.lower() for k in keywords]
    if not needles:
        return {"summary": "No keywords provided.", "match_count": 0, "example_log_ids": []}

    combine = all if match_mode == "AND" else any
    results: list[LogEntry] = []
    for entry in entries:
        haystack = f"{entry.message} {format_timestamp(entry.timestamp)}".lower()
        if combine(needle in haystack for needle in needles):
            results.append(entry)
            if len(results) >= limit:
                break

    if not results:
        return {
            "summary": "Found 0 logs matching the criteria.",
            "match_count": 0,
            "example_log_ids": [],
        }

    counts = level_counts(results)
    return {
        "summary": f"Found {len(results)} logs. Levels: {json.dumps(counts)}.",
        "match_count": len(results),
        "level_counts": counts,
        "example_log_ids": [e.id for e in results[:MAX_SEARCH_EXAMPLES]],
    }


def trailing_window(
    entries: Sequence[LogEntry], minutes: float | None
) -> Sequence[LogEntry]:
    """Entries within *minutes* of the last entry's timestamp (all when None)."""
    if minutes is None or not entries:
        return entries
    end = entries[-1].epoch_s
    start = end - minutes * 60
    return [e for e in entries if start <= e.epoch_s <= end]


def normalize_message(message: str) -> str:
    """Collapse every digit run so messages differing only in numbers group together."""
    return _DIGITS.sub("N", message)


def repeating_errors(entries: Sequence[LogEntry]) -> dict[str, Any]:
    groups: dict[str, dict[str, int]] = {}
    for entry in entries:
        if entry.level not in SEVERE_LEVELS:
            continue
        key = normalize_message(entry.message)
        group = groups.setdefault(key, {"count": 0, "id": entry.id})
        group["count"] += 1

    # sorted() is stable, so equal counts keep corpus order.
    top = sorted(groups.items(), key=lambda item: item[1]["count"], reverse=True)
    top = top[:TOP_PATTERNS]
    if not top:
        return {"summary": "No repeating error patterns found."}
    return {
        "summary": (
            f"Found {len(top)} repeating error patterns. The most common one "
            f"occurred {top[0][1]['count']} times."
        ),
        "top_patterns": [
            {"message_pattern": msg, "count": data["count"], "example_log_id": data["id"]}
            for msg, data in top
        ],
    }


def frequency_spikes(entries: Sequence[LogEntry]) -> dict[str, Any]:
    buckets: Counter[int] = Counter(
        math.floor(e.epoch_s / SPIKE_BUCKET_S) for e in entries
    )
    counts = list(buckets.values())
    if len(counts) < 2:
        return {"summary": "Not enough data to detect spikes."}

    mean = sum(counts) / len(counts)
    stddev = math.sqrt(sum((c - mean) ** 2 for c in counts) / len(counts))
    threshold = mean + SPIKE_SIGMA * stddev
    spikes = [
        (bucket, count)
        for bucket, count in sorted(buckets.items())
        if count > threshold
    ]
    if not spikes:
        return {"summary": "No significant spikes in log frequency detected."}

    epoch = datetime(1970, 1, 1, tzinfo=UTC)
    return {
        "summary": (
            f"Detected {len(spikes)} spike(s) in log activity. The largest spike had "
            f"{max(c for _, c in spikes)} logs in one minute."
        ),
        "spikes": [
            {
                "timestamp": format_timestamp(
                    epoch + timedelta(seconds=bucket * SPIKE_BUCKET_S)
                ),
                "count": count,
            }
            for bucket, count in spikes
        ],
    }


def find_log_patterns(
    entries: Sequence[LogEntry],
    pattern_type: str,
    time_window_minutes: float | None = None,
) -> dict[str, Any]:
    target = trailing_window(entries, time_window_minutes)
    if pattern_type == "repeating_error":
        return repeating_errors(target)
    if pattern_type == "frequency_spike":
        return frequency_spikes(target)
    return {"summary": "Pattern type not implemented."}


def trace_error_origin(
    entries: Sequence[LogEntry],
    error_log_id: int,
    trace_window_seconds: float = 60,
) -> dict[str, Any]:
    target = next((e for e in entries if e.id == error_log_id), None)
    if target is None:
        return {"summary": f"Log ID {error_log_id} not found."}

    end = target.epoch_s
    start = end - trace_window_seconds
    window = [e for e in entries if start <= e.epoch_s <= end]
    counts = level_counts(window)
    return {
        "summary": (
            f"Found {len(window)} logs in the {trace_window_seconds:g}s before log "
            f"{error_log_id}. Levels: {json.dumps(counts)}."
        ),
        "level_counts": counts,
        "example_log_ids": [e.id for e in window[-MAX_TRACE_EXAMPLES:]],
    }
