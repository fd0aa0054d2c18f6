"""Provider characterization tests.

These tests verify the internal request/response transformations for each
provider implementation. They use fake clients and ``httpx.MockTransport``
to capture the exact shapes sent to model servers without real network
calls.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from logpilot.errors import APIError, RateLimitError
from logpilot.providers._errors import (
    extract_retry_after_s,
    usage_link,
    wait_seconds,
    wrap_provider_error,
)
from logpilot.providers.base import Provider, ProviderCapabilities, ProviderKind
from logpilot.providers.gemini import GeminiProvider
from logpilot.providers.local_runtime import (
    LocalRuntimeProvider,
    OllamaRuntimeLoader,
    describe_pull_event,
    parse_tool_call,
)
from logpilot.providers.local_session import (
    ChatCompletionsSession,
    LocalSessionProvider,
    chat_completions_factory,
    probe_chat_server,
)
from logpilot.providers.mock import ScriptedProvider
from logpilot.providers.models import ProviderRequest, ProviderResponse, ToolCall, Turn
from logpilot.tools.registry import get_declaration

pytestmark = pytest.mark.contract

SEARCH_FN = get_declaration("search_logs").as_function()  # type: ignore[union-attr]


# =============================================================================
# Provider Error Mapping (Contract)
# =============================================================================


class _GoogleStyleError(Exception):
    def __init__(self, message: str, code: int, details: dict[str, Any]) -> None:
        super().__init__(message)
        self.code = code
        self.details = details


def test_wrap_provider_error_reads_retry_info_from_details() -> None:
    exc = _GoogleStyleError(
        "Quota exceeded. Learn more: https://ai.dev/usage?tab=rate-limit",
        429,
        {
            "error": {
                "details": [
                    {
                        "@type": "type.googleapis.com/google.rpc.RetryInfo",
                        "retryDelay": "8.352104981s",
                    }
                ]
            }
        },
    )

    err = wrap_provider_error(
        exc, provider="gemini", phase="generate", allow_network_errors=True
    )

    assert isinstance(err, RateLimitError)
    assert err.status_code == 429
    assert err.retry_after_s == pytest.approx(8.352104981)
    assert err.retryable is True
    assert wait_seconds(err.retry_after_s) == 9
    assert usage_link(err) == "https://ai.dev/usage?tab=rate-limit"


def test_wrap_provider_error_uses_retry_after_header() -> None:
    class _SdkError(Exception):
        def __init__(self) -> None:
            super().__init__("rate limited")
            self.response = SimpleNamespace(status_code=429, headers={"Retry-After": "2"})

    assert extract_retry_after_s(_SdkError()) == 2.0


def test_wrap_provider_error_auth_hint() -> None:
    err = wrap_provider_error(
        _GoogleStyleError("API key not valid", 400, {}),
        provider="gemini",
        phase="generate",
        allow_network_errors=False,
    )

    assert not isinstance(err, RateLimitError)
    assert err.hint is not None
    assert "GEMINI_API_KEY" in err.hint


def test_wrap_provider_error_keeps_existing_api_error() -> None:
    original = APIError("already wrapped")

    err = wrap_provider_error(
        original, provider="on_device", phase="generate", allow_network_errors=True
    )

    assert err is original
    assert err.provider == "on_device"


def test_network_errors_are_retryable() -> None:
    err = wrap_provider_error(
        httpx.ConnectError("refused"),
        provider="local_runtime",
        phase="load",
        allow_network_errors=True,
    )

    assert err.retryable is True
    assert err.status_code is None


# =============================================================================
# Gemini
# =============================================================================


def test_gemini_satisfies_provider_protocol() -> None:
    provider = GeminiProvider("key")

    assert isinstance(provider, Provider)
    assert provider.kind is ProviderKind.HOSTED
    assert provider.capabilities.tools is True


def test_gemini_parse_response_collects_text_usage_and_calls() -> None:
    response = SimpleNamespace(
        candidates=[
            SimpleNamespace(
                content=SimpleNamespace(
                    parts=[
                        SimpleNamespace(text="thinking...", thought=True),
                        SimpleNamespace(text="Answer", thought=None),
                    ]
                )
            )
        ],
        usage_metadata=SimpleNamespace(
            prompt_token_count=10, candidates_token_count=3, total_token_count=13
        ),
        function_calls=[
            SimpleNamespace(id=None, name="search_logs", args={"keywords": ["disk"]})
        ],
    )

    parsed = GeminiProvider("key")._parse_response(response)

    assert parsed.text == "Answer"
    assert parsed.usage == {"input_tokens": 10, "output_tokens": 3, "total_tokens": 13}
    assert len(parsed.tool_calls) == 1
    assert parsed.tool_calls[0].name == "search_logs"
    assert parsed.tool_calls[0].arguments == {"keywords": ["disk"]}
    assert parsed.tool_calls[0].id.startswith("call_")


def test_gemini_convert_history_puts_tool_results_on_user_side() -> None:
    call = ToolCall(id="c1", name="search_logs", arguments={"keywords": ["disk"]})
    history = [
        Turn(role="user", content="any disk errors?"),
        Turn(role="model", tool_call=call),
        Turn(role="tool", tool_call=call, result={"match_count": 4}),
    ]

    contents = GeminiProvider("key")._convert_history(history)

    assert [c.role for c in contents] == ["user", "model", "user"]
    assert contents[1].parts[0].function_call.name == "search_logs"
    response = contents[2].parts[0].function_response
    assert response.name == "search_logs"
    assert json.loads(response.response["result"]) == {"match_count": 4}


def test_gemini_build_config_disables_automatic_function_calling() -> None:
    request = ProviderRequest(
        model="gemini-2.5-flash",
        history=[],
        system_instruction="be brief",
        tools=[SEARCH_FN],
    )

    config = GeminiProvider("key")._build_config(request)

    assert config.automatic_function_calling.disable is True
    declaration = config.tools[0].function_declarations[0]
    assert declaration.name == "search_logs"
    assert declaration.parameters_json_schema["required"] == ["keywords"]


@pytest.mark.asyncio
async def test_gemini_generate_wraps_sdk_errors() -> None:
    provider = GeminiProvider("key")
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(
        side_effect=_GoogleStyleError("Resource exhausted", 429, {})
    )
    provider._client = client

    with pytest.raises(RateLimitError) as exc_info:
        await provider.generate(
            ProviderRequest(model="gemini-2.5-pro", history=[Turn(role="user", content="hi")])
        )

    assert exc_info.value.provider == "gemini"
    kwargs = client.aio.models.generate_content.call_args.kwargs
    assert kwargs["model"] == "gemini-2.5-pro"


# =============================================================================
# Local runtime (JSON tool protocol over Ollama)
# =============================================================================


@pytest.mark.parametrize(
    "text",
    [
        '{"tool_name": "search_logs", "arguments": {"keywords": ["disk"]}}',
        '```json\n{"tool_name": "search_logs", "arguments": {"keywords": ["disk"]}}\n```',
        '  ```\n{"tool_name": "search_logs", "arguments": {"keywords": ["disk"]}}```  ',
    ],
)
def test_parse_tool_call_accepts_plain_and_fenced_json(text: str) -> None:
    call = parse_tool_call(text)

    assert call is not None
    assert call.name == "search_logs"
    assert call.arguments == {"keywords": ["disk"]}


@pytest.mark.parametrize(
    "text",
    [
        "The disk filled up at 12:00.",
        '{"tool_name": "search_logs"}',
        '{"arguments": {}}',
        "{not json}",
        "[1, 2]",
    ],
)
def test_parse_tool_call_treats_everything_else_as_text(text: str) -> None:
    assert parse_tool_call(text) is None


def test_describe_pull_event() -> None:
    assert (
        describe_pull_event({"status": "pulling abc", "total": 2048, "completed": 1024})
        == "Downloading model: 50% (1.0 KB / 2.0 KB)"
    )
    assert describe_pull_event({"status": "verifying sha256 digest"}) == (
        "Verifying sha256 digest"
    )


def _ollama_transport(
    seen: list[tuple[str, dict[str, Any]]], chat_reply: str
) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append((request.url.path, body))
        if request.url.path == "/api/pull":
            lines = [
                {"status": "pulling manifest"},
                {"status": "pulling 1", "total": 100, "completed": 40},
                {"status": "success"},
            ]
            return httpx.Response(200, content="\n".join(json.dumps(x) for x in lines))
        if request.url.path == "/api/chat":
            return httpx.Response(200, json={"message": {"role": "assistant", "content": chat_reply}})
        return httpx.Response(404)

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_local_runtime_refuses_to_generate_before_load() -> None:
    provider = LocalRuntimeProvider(OllamaRuntimeLoader("http://ollama", "tiny"))

    assert not provider.ready
    with pytest.raises(APIError, match="not loaded"):
        await provider.generate(ProviderRequest(model="tiny", history=[]))


def test_local_backends_declare_kind_and_tool_support() -> None:
    runtime = LocalRuntimeProvider(OllamaRuntimeLoader("http://ollama", "tiny"))
    session = LocalSessionProvider(chat_completions_factory("http://lm", "m"))

    assert runtime.kind is ProviderKind.LOCAL_RUNTIME
    assert runtime.capabilities == ProviderCapabilities(tools=True)
    assert session.kind is ProviderKind.ON_DEVICE
    assert session.capabilities == ProviderCapabilities(tools=False)


@pytest.mark.asyncio
async def test_local_runtime_load_reports_progress_and_parses_tool_calls() -> None:
    seen: list[tuple[str, dict[str, Any]]] = []
    reply = '{"tool_name": "search_logs", "arguments": {"keywords": ["disk"]}}'
    async with httpx.AsyncClient(transport=_ollama_transport(seen, reply)) as client:
        provider = LocalRuntimeProvider(
            OllamaRuntimeLoader("http://ollama", "tiny", client=client)
        )
        progress: list[str] = []

        await provider.load(progress.append)
        await provider.load(progress.append)  # already ready: no second pull

        response = await provider.generate(
            ProviderRequest(
                model="tiny",
                history=[Turn(role="user", content="disk?")],
                system_instruction="SYSTEM",
                tools=[SEARCH_FN],
            )
        )

    assert progress == [
        "Pulling manifest",
        "Downloading model: 40% (40 B / 100 B)",
        "Success",
    ]
    assert [path for path, _ in seen] == ["/api/pull", "/api/chat"]
    chat_body = seen[1][1]
    assert chat_body["model"] == "tiny"
    assert chat_body["messages"][0]["role"] == "system"
    assert "SYSTEM" in chat_body["messages"][0]["content"]
    assert "search_logs" in chat_body["messages"][0]["content"]
    assert response.tool_calls[0].name == "search_logs"
    assert response.text == ""


@pytest.mark.asyncio
async def test_local_runtime_sends_tool_results_as_user_messages() -> None:
    seen: list[tuple[str, dict[str, Any]]] = []
    async with httpx.AsyncClient(transport=_ollama_transport(seen, "All good.")) as client:
        provider = LocalRuntimeProvider(
            OllamaRuntimeLoader("http://ollama", "tiny", client=client)
        )
        await provider.load(lambda _msg: None)
        call = ToolCall(id="c1", name="search_logs", arguments={"keywords": ["x"]})

        response = await provider.generate(
            ProviderRequest(
                model="tiny",
                history=[
                    Turn(role="user", content="x?"),
                    Turn(role="model", tool_call=call),
                    Turn(role="tool", tool_call=call, result={"match_count": 0}),
                ],
            )
        )

    messages = seen[-1][1]["messages"]
    assert [m["role"] for m in messages] == ["user", "assistant", "user"]
    assert json.loads(messages[1]["content"])["tool_name"] == "search_logs"
    assert messages[2]["content"] == 'Tool Response: {"match_count": 0}'
    assert response.text == "All good."


@pytest.mark.asyncio
async def test_local_runtime_load_failure_is_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=json.dumps({"error": "manifest unknown"}))

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = LocalRuntimeProvider(
            OllamaRuntimeLoader("http://ollama", "ghost", client=client)
        )
        with pytest.raises(APIError, match="manifest unknown") as exc_info:
            await provider.load(lambda _msg: None)

    assert exc_info.value.phase == "load"
    assert not provider.ready


# =============================================================================
# On-device session (OpenAI-compatible chat completions)
# =============================================================================


def _chat_server(bodies: list[dict[str, Any]], *, fail: bool = False) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json={"data": []})
        bodies.append(json.loads(request.content))
        if fail:
            return httpx.Response(500, json={"error": "crashed"})
        turn = len(bodies)
        return httpx.Response(
            200, json={"choices": [{"message": {"role": "assistant", "content": f"reply {turn}"}}]}
        )

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_chat_completions_session_keeps_transcript() -> None:
    bodies: list[dict[str, Any]] = []
    async with httpx.AsyncClient(transport=_chat_server(bodies)) as client:
        session = ChatCompletionsSession("http://lm/v1", "local", "SYS", client=client)

        assert await session.prompt("one") == "reply 1"
        assert await session.prompt("two") == "reply 2"

    assert [m["content"] for m in bodies[1]["messages"]] == ["SYS", "one", "reply 1", "two"]
    assert len(session.transcript) == 5


@pytest.mark.asyncio
async def test_local_session_provider_reuses_one_session() -> None:
    bodies: list[dict[str, Any]] = []
    async with httpx.AsyncClient(transport=_chat_server(bodies)) as client:
        provider = LocalSessionProvider(
            chat_completions_factory("http://lm/v1", "local", client=client)
        )
        first = await provider.generate(
            ProviderRequest(
                model="on_device",
                history=[Turn(role="user", content="hello")],
                system_instruction="SYS",
            )
        )
        second = await provider.generate(
            ProviderRequest(
                model="on_device",
                history=[
                    Turn(role="user", content="hello"),
                    Turn(role="model", content=first.text),
                    Turn(role="user", content="again"),
                ],
                system_instruction="SYS",
            )
        )

        assert provider.has_session
        await provider.aclose()

    assert second.text == "reply 2"
    # Only the newest prompt crosses the seam; the session holds the rest.
    assert [m["content"] for m in bodies[1]["messages"]] == [
        "SYS",
        "hello",
        "reply 1",
        "again",
    ]
    assert not provider.has_session
    assert provider.capabilities.tools is False


@pytest.mark.asyncio
async def test_local_session_failure_destroys_session() -> None:
    bodies: list[dict[str, Any]] = []
    async with httpx.AsyncClient(transport=_chat_server(bodies, fail=True)) as client:
        provider = LocalSessionProvider(
            chat_completions_factory("http://lm/v1", "local", client=client)
        )
        with pytest.raises(APIError) as exc_info:
            await provider.generate(
                ProviderRequest(model="on_device", history=[Turn(role="user", content="hi")])
            )

    assert exc_info.value.status_code == 500
    assert not provider.has_session


@pytest.mark.asyncio
async def test_probe_chat_server() -> None:
    async with httpx.AsyncClient(transport=_chat_server([])) as client:
        assert await probe_chat_server("http://lm/v1", client=client) is True

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
        assert await probe_chat_server("http://lm/v1", client=client) is False


# =============================================================================
# Scripted provider
# =============================================================================


@pytest.mark.asyncio
async def test_scripted_provider_replays_then_echoes() -> None:
    provider = ScriptedProvider([ProviderResponse(text="first"), APIError("second")])
    request = ProviderRequest(model="m", history=[Turn(role="user", content="ping")])

    assert (await provider.generate(request)).text == "first"
    with pytest.raises(APIError):
        await provider.generate(request)
    assert (await provider.generate(request)).text == "echo: ping"
    assert len(provider.requests) == 3
