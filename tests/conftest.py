"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, automatic API test
skipping, and small log corpora shared across test modules.
"""

from __future__ import annotations

from contextlib import suppress
from datetime import UTC, datetime, timedelta
import logging
import os

import pytest

from logpilot.corpus import LogEntry, LogLevel
from logpilot.ports import InMemoryLogSource, RecordingFilterSink, RecordingNavigationSink

# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Ensure a clean provider environment for each test.

    Clears GEMINI_* and LOGPILOT_* env vars to prevent test pollution.
    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(("GEMINI_", "LOGPILOT_")):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


@pytest.fixture
def gemini_api_key():
    """Return GEMINI_API_KEY or skip the test if unavailable."""
    key = os.getenv("GEMINI_API_KEY")
    if not key:
        pytest.skip("GEMINI_API_KEY not set")
    return key


# =============================================================================
# Corpora
# =============================================================================

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)


def make_entry(
    log_id: int,
    seconds: float,
    message: str,
    level: LogLevel = LogLevel.INFO,
    daemon: str | None = "kernel",
) -> LogEntry:
    return LogEntry(
        id=log_id,
        timestamp=T0 + timedelta(seconds=seconds),
        level=level,
        message=message,
        daemon=daemon,
    )


@pytest.fixture
def disk_corpus() -> list[LogEntry]:
    """Four 'Disk N full' errors with different digits plus unrelated noise."""
    return [
        make_entry(0, 0, "service started"),
        make_entry(1, 5, "Disk 1 full", LogLevel.ERROR, "storaged"),
        make_entry(2, 10, "Disk 22 full", LogLevel.ERROR, "storaged"),
        make_entry(3, 15, "charger connected", LogLevel.WARNING, "powerd"),
        make_entry(4, 20, "Disk 3 full", LogLevel.CRITICAL, "storaged"),
        make_entry(5, 25, "Disk 456 full", LogLevel.ERROR, "storaged"),
        make_entry(6, 30, "timeout talking to 10.0.0.1", LogLevel.ERROR, "netd"),
        make_entry(7, 35, "charger battery low", LogLevel.INFO, "powerd"),
    ]


@pytest.fixture
def source(disk_corpus) -> InMemoryLogSource:
    return InMemoryLogSource(disk_corpus)


@pytest.fixture
def filter_sink() -> RecordingFilterSink:
    return RecordingFilterSink()


@pytest.fixture
def navigation_sink() -> RecordingNavigationSink:
    return RecordingNavigationSink()
