"""Conversation focus: general idle mode vs. analyzing a specific lead."""

from __future__ import annotations

import enum
import logging
from typing import Any

logger = logging.getLogger(__name__)


class ConversationState(enum.Enum):
    IDLE = "IDLE"
    ANALYZING = "ANALYZING"


class ConversationStateMachine:
    """Tracks the analyzing focus within a turn.

    ``IDLE -> ANALYZING`` fires only when a ``search_logs`` result carries at
    least one example id. Any final answer or new submission returns to
    ``IDLE``. Failures abort the turn; they are not states.
    """

    def __init__(self) -> None:
        self._state = ConversationState.IDLE

    @property
    def state(self) -> ConversationState:
        return self._state

    def observe(self, tool_name: str, result: dict[str, Any]) -> ConversationState:
        """Observe one executed tool call and return the resulting state."""
        if tool_name == "search_logs" and result.get("example_log_ids"):
            if self._state is not ConversationState.ANALYZING:
                logger.debug("Transitioning to ANALYZING")
            self._state = ConversationState.ANALYZING
        return self._state

    def finish(self) -> None:
        """A final answer was produced."""
        self._to_idle("final answer")

    def reset(self) -> None:
        """A new user turn begins; drop any prior focus."""
        self._to_idle("new turn")

    def _to_idle(self, reason: str) -> None:
        if self._state is not ConversationState.IDLE:
            logger.debug("Transitioning to IDLE (%s)", reason)
        self._state = ConversationState.IDLE
