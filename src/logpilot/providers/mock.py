"""Scripted provider for tests and offline runs."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable

from logpilot.providers.base import ProviderCapabilities, ProviderKind
from logpilot.providers.models import ProviderRequest, ProviderResponse


class ScriptedProvider:
    """Replays scripted responses in order, then echoes the last user prompt.

    Scripted items may be ``ProviderResponse`` objects or exceptions, which
    are raised in their place. Every request is recorded in ``requests``.
    """

    def __init__(
        self,
        script: Iterable[ProviderResponse | BaseException] = (),
        *,
        kind: ProviderKind = ProviderKind.HOSTED,
        tools: bool = True,
    ) -> None:
        self._script: deque[ProviderResponse | BaseException] = deque(script)
        self._kind = kind
        self._tools = tools
        self.requests: list[ProviderRequest] = []
        self.closed = False

    @property
    def kind(self) -> ProviderKind:
        return self._kind

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(tools=self._tools)

    def extend(self, items: Iterable[ProviderResponse | BaseException]) -> None:
        self._script.extend(items)

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        """Return the next scripted response, or a deterministic echo."""
        self.requests.append(request)
        if self._script:
            item = self._script.popleft()
            if isinstance(item, BaseException):
                raise item
            return item
        prompt = next(
            (t.content for t in reversed(request.history) if t.role == "user"), ""
        )
        return ProviderResponse(text=f"echo: {prompt[:100]}")

    async def aclose(self) -> None:
        self.closed = True
