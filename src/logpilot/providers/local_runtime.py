"""Lazily-downloaded local runtime provider.

Nothing is downloaded until the user consents. Loading reports progress
strings back to the caller, and the model talks to tools through a small
JSON-in-text protocol because local models rarely support native function
calling.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import json
import logging
import re
from typing import Any, Protocol, runtime_checkable
import uuid

import httpx

from logpilot._http import LOCAL_SERVER_TIMEOUT_S
from logpilot.errors import APIError
from logpilot.prompts import tool_protocol_prompt
from logpilot.providers._errors import wrap_provider_error
from logpilot.providers.base import ProviderCapabilities, ProviderKind
from logpilot.providers.models import ProviderRequest, ProviderResponse, ToolCall, Turn

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]

TOOL_RESPONSE_PREFIX = "Tool Response:"

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


@runtime_checkable
class LocalRuntime(Protocol):
    async def chat(self, messages: list[dict[str, str]]) -> str: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class RuntimeLoader(Protocol):
    """Downloads and initializes a runtime, reporting progress as it goes."""

    async def load(self, on_progress: ProgressCallback) -> LocalRuntime: ...


def parse_tool_call(text: str) -> ToolCall | None:
    """Recognize ``{"tool_name": ..., "arguments": {...}}`` replies.

    The object may be wrapped in a Markdown code fence. Anything else is
    treated as a plain-text answer.
    """
    candidate = text.strip()
    fenced = _FENCED_JSON.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    if not (candidate.startswith("{") and candidate.endswith("}")):
        return None
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    name = parsed.get("tool_name")
    arguments = parsed.get("arguments")
    if not isinstance(name, str) or not name or not isinstance(arguments, dict):
        return None
    return ToolCall(id=f"call_{uuid.uuid4().hex[:8]}", name=name, arguments=arguments)


def _to_chat_messages(
    history: list[Turn], system_instruction: str | None
) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    if system_instruction:
        messages.append({"role": "system", "content": system_instruction})
    for turn in history:
        if turn.role == "user":
            messages.append({"role": "user", "content": turn.content})
        elif turn.role == "model":
            content = turn.content
            if turn.tool_call is not None:
                content = json.dumps(
                    {"tool_name": turn.tool_call.name, "arguments": turn.tool_call.arguments}
                )
            messages.append({"role": "assistant", "content": content})
        else:
            messages.append(
                {
                    "role": "user",
                    "content": f"{TOOL_RESPONSE_PREFIX} {json.dumps(turn.result or {})}",
                }
            )
    return messages


def _format_bytes(n: float) -> str:
    if n < 1024:
        return f"{int(n)} B"
    size = n / 1024
    for unit in ("KB", "MB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def describe_pull_event(event: dict[str, Any]) -> str:
    """Turn one Ollama pull status line into a human-readable progress string."""
    status = str(event.get("status", "working"))
    total = event.get("total")
    completed = event.get("completed")
    if isinstance(total, int) and total > 0 and isinstance(completed, int):
        pct = min(100, int(completed * 100 / total))
        return (
            f"Downloading model: {pct}% "
            f"({_format_bytes(completed)} / {_format_bytes(total)})"
        )
    return status[:1].upper() + status[1:]


class OllamaRuntime:
    """Chat against a model already pulled into an Ollama server."""

    def __init__(self, base_url: str, model: str, client: httpx.AsyncClient, *, owns_client: bool) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._client = client
        self._owns_client = owns_client

    async def chat(self, messages: list[dict[str, str]]) -> str:
        resp = await self._client.post(
            f"{self.base_url}/api/chat",
            json={"model": self.model, "messages": messages, "stream": False},
        )
        resp.raise_for_status()
        data = resp.json()
        message = data.get("message") if isinstance(data, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise APIError("Local runtime returned an unexpected payload")
        return content

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class OllamaRuntimeLoader:
    """Pull a model into a local Ollama server, streaming progress."""

    def __init__(
        self,
        base_url: str,
        model: str,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._client = client

    async def load(self, on_progress: ProgressCallback) -> LocalRuntime:
        owns = self._client is None
        client = self._client or httpx.AsyncClient(timeout=LOCAL_SERVER_TIMEOUT_S)
        try:
            async with client.stream(
                "POST",
                f"{self.base_url}/api/pull",
                json={"model": self.model, "stream": True},
            ) as resp:
                resp.raise_for_status()
                async for line in resp.aiter_lines():
                    if not line.strip():
                        continue
                    event = json.loads(line)
                    if "error" in event:
                        raise APIError(
                            f"Model download failed: {event['error']}",
                            provider="local_runtime",
                            phase="load",
                        )
                    on_progress(describe_pull_event(event))
        except BaseException:
            if owns:
                await client.aclose()
            raise
        return OllamaRuntime(self.base_url, self.model, client, owns_client=owns)


class LocalRuntimeProvider:
    """Provider over a runtime that is loaded on demand."""

    def __init__(self, loader: RuntimeLoader) -> None:
        self._loader = loader
        self._runtime: LocalRuntime | None = None
        self._load_lock = asyncio.Lock()

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.LOCAL_RUNTIME

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(tools=True)

    @property
    def ready(self) -> bool:
        return self._runtime is not None

    async def load(self, on_progress: ProgressCallback) -> None:
        """Download and initialize the runtime unless it is already ready."""
        async with self._load_lock:
            if self._runtime is not None:
                return
            logger.info("Loading local runtime")
            try:
                self._runtime = await self._loader.load(on_progress)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise wrap_provider_error(
                    e,
                    provider="local_runtime",
                    phase="load",
                    allow_network_errors=True,
                    message="Local runtime failed to load",
                ) from e
            logger.info("Local runtime ready")

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        if self._runtime is None:
            raise APIError(
                "Local runtime is not loaded",
                hint="Call load() after the user consents to the download.",
                provider="local_runtime",
                phase="generate",
            )
        system = request.system_instruction or ""
        if request.tools:
            system = f"{system}\n{tool_protocol_prompt(request.tools)}".strip()
        messages = _to_chat_messages(request.history, system)
        try:
            reply = await self._runtime.chat(messages)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider="local_runtime",
                phase="generate",
                allow_network_errors=True,
                message="Local runtime failed",
            ) from e

        call = parse_tool_call(reply) if request.tools else None
        if call is not None:
            return ProviderResponse(tool_calls=[call])
        return ProviderResponse(text=reply)

    async def aclose(self) -> None:
        runtime, self._runtime = self._runtime, None
        if runtime is not None:
            await runtime.aclose()
