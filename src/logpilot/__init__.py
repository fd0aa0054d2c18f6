"""logpilot: conversational assistant over a loaded log corpus.

Public API:
    - Assistant: one conversation, one turn at a time
    - Config: Configuration dataclass
    - LogEntry / load_jsonl: the corpus the tools analyze
    - RateGovernor / TierSpec: hosted tier admission
"""

from __future__ import annotations

import logging

from logpilot.assistant import Assistant, TurnOutcome
from logpilot.config import LOCAL_RUNTIME_TIER, ON_DEVICE_TIER, Config
from logpilot.conversation import ConversationContext, Message
from logpilot.corpus import LogEntry, LogLevel, load_jsonl
from logpilot.errors import (
    AdmissionError,
    APIError,
    ConfigurationError,
    ConsentRequiredError,
    ConversationBusyError,
    LogPilotError,
    MissingCredentialError,
    PreconditionError,
    RateLimitError,
    RuntimeDownloadError,
)
from logpilot.governor import DEFAULT_TIERS, RateGovernor, TierSpec
from logpilot.ports import FilterSpec
from logpilot.state import ConversationState

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("logpilot")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("logpilot").addHandler(logging.NullHandler())

__all__ = [
    "DEFAULT_TIERS",
    "LOCAL_RUNTIME_TIER",
    "ON_DEVICE_TIER",
    "APIError",
    "AdmissionError",
    "Assistant",
    "Config",
    "ConfigurationError",
    "ConsentRequiredError",
    "ConversationBusyError",
    "ConversationContext",
    "ConversationState",
    "FilterSpec",
    "LogEntry",
    "LogLevel",
    "LogPilotError",
    "Message",
    "MissingCredentialError",
    "PreconditionError",
    "RateGovernor",
    "RateLimitError",
    "RuntimeDownloadError",
    "TierSpec",
    "TurnOutcome",
    "load_jsonl",
]
