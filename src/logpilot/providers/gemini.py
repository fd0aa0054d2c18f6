"""Gemini provider implementation (hosted, multi-tier)."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
import uuid

from logpilot.errors import APIError
from logpilot.providers._errors import wrap_provider_error
from logpilot.providers.base import ProviderCapabilities, ProviderKind
from logpilot.providers.models import ProviderRequest, ProviderResponse, ToolCall, Turn

logger = logging.getLogger(__name__)


class GeminiProvider:
    """Google Gemini API provider.

    Stateless per call: every step sends the whole history. The model name
    comes from the request, so one instance serves every hosted tier.
    """

    def __init__(self, api_key: str) -> None:
        """Create provider with an API key."""
        self.api_key = api_key
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazy-initialize the Gemini client."""
        if self._client is None:
            try:
                from google import genai
            except ImportError as e:
                raise APIError(
                    "google-genai package not installed",
                    hint="pip install google-genai",
                ) from e

            self._client = genai.Client(api_key=self.api_key)
        return self._client

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.HOSTED

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(tools=True)

    def _convert_history(self, history: list[Turn]) -> list[Any]:
        """Convert provider-neutral turns to google-genai ``Content`` objects."""
        from google.genai import types

        contents: list[Any] = []
        for turn in history:
            if turn.role == "tool":
                # Gemini expects function responses on the user side of the exchange.
                contents.append(
                    types.Content(
                        role="user",
                        parts=[
                            types.Part.from_function_response(
                                name=turn.tool_name or "unknown_tool",
                                response={"result": json.dumps(turn.result or {})},
                            )
                        ],
                    )
                )
            elif turn.role == "model":
                parts: list[Any] = []
                if turn.content:
                    parts.append(types.Part.from_text(text=turn.content))
                if turn.tool_call is not None:
                    parts.append(
                        types.Part.from_function_call(
                            name=turn.tool_call.name, args=dict(turn.tool_call.arguments)
                        )
                    )
                if parts:
                    contents.append(types.Content(role="model", parts=parts))
            elif turn.content:
                contents.append(
                    types.Content(role="user", parts=[types.Part.from_text(text=turn.content)])
                )
        return contents

    def _build_config(self, request: ProviderRequest) -> Any:
        from google.genai import types

        config_kwargs: dict[str, Any] = {}
        if request.system_instruction is not None:
            config_kwargs["system_instruction"] = request.system_instruction
        if request.temperature is not None:
            config_kwargs["temperature"] = request.temperature
        if request.tools:
            config_kwargs["tools"] = [
                types.Tool(
                    function_declarations=[
                        types.FunctionDeclaration(
                            name=t["name"],
                            description=t.get("description", ""),
                            parameters_json_schema=t.get("parameters"),
                        )
                        for t in request.tools
                    ]
                )
            ]
            # The turn loop drives tool execution itself.
            config_kwargs["automatic_function_calling"] = (
                types.AutomaticFunctionCallingConfig(disable=True)
            )
        return types.GenerateContentConfig(**config_kwargs)

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        """Run one inference step on ``request.model``."""
        client = self._get_client()
        contents = self._convert_history(request.history)
        config = self._build_config(request)

        logger.debug(
            "Calling %s with %d contents (~%d chars), %d tools",
            request.model,
            len(contents),
            sum(len(t.content) for t in request.history),
            len(request.tools or ()),
        )
        try:
            response = await client.aio.models.generate_content(
                model=request.model,
                contents=contents,
                config=config,
            )

            if not response:
                raise APIError("Gemini returned an empty response.")

            return self._parse_response(response)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider="gemini",
                phase="generate",
                allow_network_errors=True,
                message="Gemini generate failed",
            ) from e

    async def aclose(self) -> None:
        """Release the SDK's async transport if it was created."""
        if self._client is None:
            return
        aclose = getattr(getattr(self._client, "aio", None), "aclose", None)
        if callable(aclose):
            await aclose()
        self._client = None

    def _parse_response(self, response: Any) -> ProviderResponse:
        """Parse a Gemini response into a ProviderResponse."""
        text = ""
        candidates = getattr(response, "candidates", None)
        if candidates:
            content = getattr(candidates[0], "content", None)
            parts = getattr(content, "parts", None) or []
            text = "".join(
                p.text
                for p in parts
                if isinstance(getattr(p, "text", None), str)
                and not getattr(p, "thought", False)
            )
        if not text:
            raw = getattr(response, "text", None)
            text = raw if isinstance(raw, str) else ""

        usage: dict[str, int] = {}
        um = getattr(response, "usage_metadata", None)
        if um is not None:
            # Gemini SDK attrs → provider-agnostic keys
            for key, attr in (
                ("input_tokens", "prompt_token_count"),
                ("output_tokens", "candidates_token_count"),
                ("total_tokens", "total_token_count"),
            ):
                value = getattr(um, attr, None)
                if isinstance(value, int):
                    usage[key] = value

        tool_calls: list[ToolCall] = []
        for fc in getattr(response, "function_calls", None) or []:
            call_id = getattr(fc, "id", None) or f"call_{uuid.uuid4().hex[:8]}"
            # Gemini args are typed as Optional[dict[str, Any]].
            tool_calls.append(
                ToolCall(id=str(call_id), name=str(fc.name), arguments=dict(fc.args or {}))
            )

        return ProviderResponse(text=text, tool_calls=tool_calls, usage=usage)
