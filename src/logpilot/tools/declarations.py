"""Tool declarations offered to the model.

Each tool's parameters are a pydantic model: the JSON schema handed to the
provider is generated from it, and the same model validates the arguments the
provider sends back.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

MatchModeField = Literal["AND", "OR"]


class _Args(BaseModel):
    model_config = ConfigDict(extra="ignore")


class UpdateFiltersArgs(_Args):
    log_levels: list[str] | None = Field(
        default=None,
        description='List of log levels to include (e.g., "ERROR", "WARNING").',
    )
    daemons: list[str] | None = Field(
        default=None, description="List of daemon names to filter by."
    )
    search_keywords: list[str] | None = Field(
        default=None, description="List of keywords to set as a filter on the view."
    )
    keyword_match_mode: MatchModeField = Field(
        default="OR",
        description=(
            'Set to "OR" if the search_keywords are synonyms (any match). Set to '
            '"AND" if all keywords must be present. Default is "OR".'
        ),
    )
    reset_before_applying: bool = Field(
        default=True,
        description="If true, assumes a fresh slate (default true for new tabs).",
    )


class ScrollToLogArgs(_Args):
    log_id: int = Field(description="The numeric ID of the log entry.")


class SearchLogsArgs(_Args):
    keywords: list[str] = Field(
        min_length=1,
        description=(
            'List of terms to search for. E.g., ["charger", "battery", "2023-10-27"].'
        ),
    )
    match_mode: MatchModeField = Field(
        default="OR",
        description=(
            'If "OR", log matches if ANY keyword is present (good for synonyms). '
            'If "AND", matches if ALL are present.'
        ),
    )
    limit: int = Field(
        default=100,
        ge=1,
        description="Maximum number of logs to return (default 100).",
    )


class FindLogPatternsArgs(_Args):
    pattern_type: Literal["repeating_error", "frequency_spike"] = Field(
        description=(
            'The type of pattern to search for: "repeating_error" finds the most '
            'common error messages, "frequency_spike" finds time intervals with an '
            "unusually high number of logs."
        )
    )
    time_window_minutes: float | None = Field(
        default=None,
        gt=0,
        description=(
            "Optional. The number of minutes from the end of the log file to "
            "analyze. Defaults to the entire log file if not provided."
        ),
    )


class TraceErrorOriginArgs(_Args):
    error_log_id: int = Field(
        description="The numeric ID of the log entry to start the trace from."
    )
    trace_window_seconds: float = Field(
        default=60,
        ge=0,
        description=(
            "How many seconds to look backward in time from the error log's "
            "timestamp. Defaults to 60 seconds."
        ),
    )


class SuggestSolutionArgs(_Args):
    error_message: str = Field(
        min_length=1,
        description="The text of the error message to get a solution for.",
    )


@dataclass(frozen=True)
class ToolDeclaration:
    """Name, description and typed parameters of one tool."""

    name: str
    description: str
    arguments: type[BaseModel]

    @cached_property
    def parameters(self) -> dict[str, Any]:
        """JSON schema for the tool's arguments, without pydantic titles."""
        schema = self.arguments.model_json_schema()
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        return schema

    def as_function(self) -> dict[str, Any]:
        """Provider-neutral function declaration."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


UPDATE_FILTERS = ToolDeclaration(
    name="update_filters",
    description=(
        "Creates a NEW TAB with specific filters to isolate logs. Use this when the "
        'user asks to "show errors", "filter by daemon", or "isolate logs". This '
        "does NOT affect the current view, it opens a new one."
    ),
    arguments=UpdateFiltersArgs,
)

SCROLL_TO_LOG = ToolDeclaration(
    name="scroll_to_log",
    description=(
        "Scroll the viewer to a specific log entry. Use this when you find a "
        "specific log ID from the search_logs tool and want to show it to the user."
    ),
    arguments=ScrollToLogArgs,
)

SEARCH_LOGS = ToolDeclaration(
    name="search_logs",
    description=(
        "Search ALL logs for specific information, including timestamps. You can "
        "provide multiple synonyms or related terms to broaden the search. Returns "
        "a summary of findings."
    ),
    arguments=SearchLogsArgs,
)

FIND_LOG_PATTERNS = ToolDeclaration(
    name="find_log_patterns",
    description=(
        "Analyzes logs to find repeating messages or statistical anomalies in "
        "frequency. Useful for spotting trends or systemic issues. Returns a "
        "summary of findings."
    ),
    arguments=FindLogPatternsArgs,
)

TRACE_ERROR_ORIGIN = ToolDeclaration(
    name="trace_error_origin",
    description=(
        "Traces events leading up to a specific log entry to help find the root "
        "cause. It looks backwards in time from the given log ID. Returns a "
        "summary of the trace."
    ),
    arguments=TraceErrorOriginArgs,
)

SUGGEST_SOLUTION = ToolDeclaration(
    name="suggest_solution",
    description=(
        "Provides potential solutions or debugging steps for a given error message. "
        "This tool is for getting advice, not for searching logs. Only use this "
        "when the user explicitly asks for a solution."
    ),
    arguments=SuggestSolutionArgs,
)
