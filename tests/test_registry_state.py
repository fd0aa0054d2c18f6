"""Tool gating by conversation state."""

from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st
import pytest

from logpilot.state import ConversationState, ConversationStateMachine
from logpilot.tools.registry import ALL_TOOLS, available_tools, get_declaration

pytestmark = pytest.mark.unit


def _names(state: ConversationState) -> list[str]:
    return [t.name for t in available_tools(state)]


def test_idle_tools() -> None:
    assert _names(ConversationState.IDLE) == [
        "search_logs",
        "find_log_patterns",
        "update_filters",
        "scroll_to_log",
        "suggest_solution",
    ]


def test_analyzing_tools() -> None:
    assert _names(ConversationState.ANALYZING) == [
        "trace_error_origin",
        "suggest_solution",
        "scroll_to_log",
        "search_logs",
    ]


def test_every_tool_is_reachable_from_some_state() -> None:
    offered = {t.name for s in ConversationState for t in available_tools(s)}
    assert offered == set(ALL_TOOLS)


def test_declarations_expose_json_schema() -> None:
    search = get_declaration("search_logs")
    assert search is not None
    fn = search.as_function()

    assert fn["name"] == "search_logs"
    assert fn["parameters"]["required"] == ["keywords"]
    assert "title" not in fn["parameters"]["properties"]["keywords"]
    assert fn["parameters"]["properties"]["match_mode"]["enum"] == ["AND", "OR"]
    assert get_declaration("nope") is None


def test_search_with_examples_enters_analyzing() -> None:
    machine = ConversationStateMachine()

    machine.observe("search_logs", {"example_log_ids": []})
    assert machine.state is ConversationState.IDLE

    machine.observe("search_logs", {"example_log_ids": [4]})
    assert machine.state is ConversationState.ANALYZING

    machine.finish()
    assert machine.state is ConversationState.IDLE


_OBSERVATIONS = st.tuples(
    st.sampled_from(sorted(ALL_TOOLS)),
    st.lists(st.integers(min_value=0, max_value=50), max_size=3),
)


@given(steps=st.lists(_OBSERVATIONS, max_size=12))
def test_tools_always_match_current_state(steps: list[tuple[str, list[int]]]) -> None:
    machine = ConversationStateMachine()
    ever_found = False

    for name, examples in steps:
        # Trace is only offered once a search has produced a lead.
        legal = _names(machine.state)
        assert ("trace_error_origin" in legal) == ever_found

        machine.observe(name, {"example_log_ids": examples})
        ever_found = ever_found or (name == "search_logs" and bool(examples))
        expected = ConversationState.ANALYZING if ever_found else ConversationState.IDLE
        assert machine.state is expected

    machine.reset()
    assert machine.state is ConversationState.IDLE
