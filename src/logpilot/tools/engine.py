"""Tool execution: validate, dispatch, and never fail the turn.

Tool errors are results. Unknown names, tools outside the current legal set,
argument validation failures and collaborator exceptions all come back as
``{"error": ...}`` so the model can recover conversationally.
"""

from __future__ import annotations

import asyncio
from collections.abc import Collection
import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from logpilot.errors import APIError
from logpilot.ports import FilterSpec
from logpilot.prompts import solution_prompt
from logpilot.providers.models import ProviderRequest, Turn
from logpilot.tools import analysis
from logpilot.tools.declarations import (
    FindLogPatternsArgs,
    ScrollToLogArgs,
    SearchLogsArgs,
    SuggestSolutionArgs,
    TraceErrorOriginArgs,
    UpdateFiltersArgs,
)
from logpilot.tools.registry import get_declaration

if TYPE_CHECKING:
    from collections.abc import Sequence

    from logpilot.corpus import LogEntry
    from logpilot.ports import FilterSink, LogSource, NavigationSink
    from logpilot.providers.base import Provider
    from logpilot.providers.models import ToolCall

logger = logging.getLogger(__name__)


def _format_validation_error(exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        problems.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(problems)


class ToolEngine:
    """Runs tool calls against the full corpus and the app's sinks."""

    def __init__(
        self,
        source: LogSource,
        filter_sink: FilterSink,
        navigation_sink: NavigationSink,
        *,
        solution_model: str = "gemini-2.5-flash",
    ) -> None:
        self._source = source
        self._filters = filter_sink
        self._navigation = navigation_sink
        self._solution_model = solution_model

    async def execute(
        self,
        call: ToolCall,
        *,
        allowed: Collection[str] | None = None,
        hosted: Provider | None = None,
    ) -> dict[str, Any]:
        """Execute *call* and return its result record.

        Args:
            call: The tool call proposed by the model.
            allowed: Tool names legal right now; ``None`` allows every tool.
            hosted: Live hosted provider for ``suggest_solution``, if any.
        """
        declaration = get_declaration(call.name)
        if declaration is None:
            return {"error": f'Tool "{call.name}" not found.'}
        if allowed is not None and call.name not in allowed:
            return {
                "error": (
                    f'Tool "{call.name}" is not available right now. '
                    f"Available tools: {', '.join(sorted(allowed))}."
                )
            }

        try:
            args = declaration.arguments.model_validate(call.arguments)
        except ValidationError as e:
            return {"error": f"Invalid arguments for {call.name}: {_format_validation_error(e)}"}

        try:
            return await self._dispatch(args, hosted)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Tool %s failed", call.name)
            return {"error": f"Tool {call.name} failed: {e}"}

    async def _dispatch(self, args: BaseModel, hosted: Provider | None) -> dict[str, Any]:
        if isinstance(args, SearchLogsArgs):
            return analysis.search_logs(
                self._snapshot(), args.keywords, args.match_mode, args.limit
            )
        if isinstance(args, FindLogPatternsArgs):
            return analysis.find_log_patterns(
                self._snapshot(), args.pattern_type, args.time_window_minutes
            )
        if isinstance(args, TraceErrorOriginArgs):
            return analysis.trace_error_origin(
                self._snapshot(), args.error_log_id, args.trace_window_seconds
            )
        if isinstance(args, UpdateFiltersArgs):
            return self._update_filters(args)
        if isinstance(args, ScrollToLogArgs):
            self._navigation.scroll_to(args.log_id)
            return {"success": True, "summary": f"Scrolled to log ID {args.log_id}."}
        if isinstance(args, SuggestSolutionArgs):
            return await self._suggest_solution(args.error_message, hosted)
        return {"error": f"No handler for {type(args).__name__}."}

    def _snapshot(self) -> Sequence[LogEntry]:
        return tuple(self._source.entries())

    def _update_filters(self, args: UpdateFiltersArgs) -> dict[str, Any]:
        spec = FilterSpec(
            levels=tuple(args.log_levels) if args.log_levels is not None else None,
            daemons=tuple(args.daemons) if args.daemons is not None else None,
            keywords=(
                tuple(args.search_keywords) if args.search_keywords is not None else None
            ),
            match_mode=args.keyword_match_mode,
        )
        self._filters.apply(spec, reset=args.reset_before_applying)
        return {"success": True, "summary": "Created a new tab with the specified filters."}

    async def _suggest_solution(
        self, error_message: str, hosted: Provider | None
    ) -> dict[str, Any]:
        if hosted is None:
            return {"summary": "Cannot suggest a solution without a hosted model."}
        request = ProviderRequest(
            model=self._solution_model,
            history=[Turn(role="user", content=solution_prompt(error_message))],
        )
        try:
            response = await hosted.generate(request)
        except APIError as e:
            logger.warning("suggest_solution inference failed: %s", e)
            return {"solution": f"An error occurred while generating a solution: {e}"}
        return {"solution": response.text or "Could not generate a solution."}
