"""Which tools the model may call in each conversation state.

While idle the model can search broadly and reshape the view. Once a lead is
under investigation the set narrows to tools that deepen on it.
"""

from __future__ import annotations

from types import MappingProxyType

from logpilot.state import ConversationState
from logpilot.tools.declarations import (
    FIND_LOG_PATTERNS,
    SCROLL_TO_LOG,
    SEARCH_LOGS,
    SUGGEST_SOLUTION,
    TRACE_ERROR_ORIGIN,
    UPDATE_FILTERS,
    ToolDeclaration,
)

ALL_TOOLS: MappingProxyType[str, ToolDeclaration] = MappingProxyType(
    {
        t.name: t
        for t in (
            UPDATE_FILTERS,
            SCROLL_TO_LOG,
            SEARCH_LOGS,
            FIND_LOG_PATTERNS,
            TRACE_ERROR_ORIGIN,
            SUGGEST_SOLUTION,
        )
    }
)

_BY_STATE: dict[ConversationState, tuple[ToolDeclaration, ...]] = {
    ConversationState.IDLE: (
        SEARCH_LOGS,
        FIND_LOG_PATTERNS,
        UPDATE_FILTERS,
        SCROLL_TO_LOG,
        SUGGEST_SOLUTION,
    ),
    ConversationState.ANALYZING: (
        TRACE_ERROR_ORIGIN,
        SUGGEST_SOLUTION,
        SCROLL_TO_LOG,
        SEARCH_LOGS,
    ),
}


def available_tools(state: ConversationState) -> tuple[ToolDeclaration, ...]:
    """Return the tools legal in *state*, in the order offered to the model."""
    return _BY_STATE[state]


def get_declaration(name: str) -> ToolDeclaration | None:
    return ALL_TOOLS.get(name)
