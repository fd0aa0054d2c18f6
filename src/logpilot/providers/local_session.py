"""On-device provider: one persistent chat session per conversation.

The session is created lazily on first use with a tool-less system prompt,
reused for every later turn, and destroyed when the conversation closes. A
session that fails mid-prompt is destroyed so the next turn starts fresh.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import logging
from typing import Any, Protocol, runtime_checkable

import httpx

from logpilot._http import LOCAL_SERVER_TIMEOUT_S
from logpilot.errors import APIError
from logpilot.providers._errors import wrap_provider_error
from logpilot.providers.base import ProviderCapabilities, ProviderKind
from logpilot.providers.models import ProviderRequest, ProviderResponse

logger = logging.getLogger(__name__)


@runtime_checkable
class ChatSession(Protocol):
    """A stateful model session that remembers its own transcript."""

    async def prompt(self, text: str) -> str: ...

    async def destroy(self) -> None: ...


SessionFactory = Callable[[str], Awaitable[ChatSession]]


class ChatCompletionsSession:
    """Session over an OpenAI-compatible ``/chat/completions`` endpoint.

    Works with LM Studio, llama.cpp server and similar local servers. The
    transcript lives here, so only the new prompt crosses the seam.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        system_prompt: str,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=LOCAL_SERVER_TIMEOUT_S)
        self._messages: list[dict[str, str]] = []
        if system_prompt:
            self._messages.append({"role": "system", "content": system_prompt})

    @property
    def transcript(self) -> tuple[dict[str, str], ...]:
        return tuple(self._messages)

    async def prompt(self, text: str) -> str:
        payload = {
            "model": self.model,
            "messages": [*self._messages, {"role": "user", "content": text}],
            "stream": False,
        }
        resp = await self._client.post(f"{self.base_url}/chat/completions", json=payload)
        resp.raise_for_status()
        reply = self._extract_text(resp.json())
        self._messages.append({"role": "user", "content": text})
        self._messages.append({"role": "assistant", "content": reply})
        return reply

    async def destroy(self) -> None:
        self._messages.clear()
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    def _extract_text(data: Any) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise APIError("Local session returned an unexpected payload") from e
        return content if isinstance(content, str) else ""


def chat_completions_factory(
    base_url: str,
    model: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> SessionFactory:
    """Build a factory creating :class:`ChatCompletionsSession` objects."""

    async def create(system_prompt: str) -> ChatSession:
        return ChatCompletionsSession(base_url, model, system_prompt, client=client)

    return create


async def probe_chat_server(
    base_url: str, *, client: httpx.AsyncClient | None = None
) -> bool:
    """Return True when an OpenAI-compatible server answers ``GET /models``."""
    owns = client is None
    http = client or httpx.AsyncClient(timeout=5.0)
    try:
        resp = await http.get(f"{base_url.rstrip('/')}/models")
        return resp.status_code == 200
    except httpx.HTTPError as e:
        logger.debug("On-device model probe failed: %s", e)
        return False
    finally:
        if owns:
            await http.aclose()


class LocalSessionProvider:
    """On-device provider backed by a single lazily-created session."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._factory = session_factory
        self._session: ChatSession | None = None

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.ON_DEVICE

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(tools=False)

    @property
    def has_session(self) -> bool:
        return self._session is not None

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        """Send only the newest user prompt; the session holds the rest."""
        prompt = next(
            (t.content for t in reversed(request.history) if t.role == "user"), ""
        )
        try:
            if self._session is None:
                logger.info("Creating on-device session")
                self._session = await self._factory(request.system_instruction or "")
            logger.debug("Prompting on-device session (~%d chars)", len(prompt))
            text = await self._session.prompt(prompt)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            try:
                await self.reset()
            except Exception as cleanup_exc:
                # Cleanup should never mask the primary failure.
                logger.warning("On-device session cleanup failed: %s", cleanup_exc)
            raise wrap_provider_error(
                e,
                provider="on_device",
                phase="generate",
                allow_network_errors=True,
                message="On-device model failed",
            ) from e
        logger.debug("On-device session replied (~%d chars)", len(text))
        return ProviderResponse(text=text)

    async def reset(self) -> None:
        """Destroy the current session, if any."""
        session, self._session = self._session, None
        if session is not None:
            logger.info("Destroying on-device session")
            await session.destroy()

    async def aclose(self) -> None:
        await self.reset()
