"""Turn loop: one user prompt to a bounded run of model steps and tool calls.

A turn picks a backend from the selected tier, clears that backend's
preconditions (API key, download consent), asks the rate governor for a
hosted tier, and then alternates inference steps with tool executions until
the model answers in plain text or the step budget runs out.

Every failure a user can cause or observe ends up as a flagged conversation
message; nothing here is allowed to crash the surrounding application.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
import json
import logging
from typing import TYPE_CHECKING, Literal

from logpilot.config import LOCAL_RUNTIME_TIER, LOCAL_TIERS, ON_DEVICE_TIER, Config
from logpilot.conversation import (
    ConversationContext,
    Message,
    PendingReason,
    provider_history,
    welcome_message,
)
from logpilot.errors import (
    AdmissionError,
    APIError,
    ConfigurationError,
    ConsentRequiredError,
    ConversationBusyError,
    LogPilotError,
    MissingCredentialError,
    PreconditionError,
    RuntimeDownloadError,
)
from logpilot.governor import RateGovernor
from logpilot.prompts import hosted_system_prompt, on_device_system_prompt
from logpilot.providers._errors import usage_link, wait_seconds
from logpilot.providers.local_runtime import LocalRuntimeProvider, OllamaRuntimeLoader
from logpilot.providers.local_session import LocalSessionProvider, chat_completions_factory
from logpilot.providers.models import ProviderRequest, Turn
from logpilot.tools.engine import ToolEngine
from logpilot.tools.registry import available_tools

if TYPE_CHECKING:
    from logpilot.ports import FilterSink, LogSource, NavigationSink
    from logpilot.providers.base import Provider
    from logpilot.state import ConversationState

logger = logging.getLogger(__name__)

HostedFactory = Callable[[str], "Provider"]
TurnStatus = Literal["answered", "exhausted", "aborted", "pending", "rejected"]

NO_ANSWER_TEXT = "I'm sorry, I couldn't generate a response."
MISSING_KEY_TEXT = (
    "API key is not configured. Please set one in the settings or get one from "
    "[Google AI Studio](https://aistudio.google.com/api-keys)."
)
KEY_SAVED_TEXT = "API key saved. Retrying your last request..."
MOCK_KEY = "mock"
PRIVACY_TEXT = (
    "You are using a cloud-based AI model. A summary of your log data will be sent "
    "to Google for analysis. For fully private, on-device analysis, you can switch "
    "to a local model."
)
CONSENT_DECLINED_TEXT = (
    "The local model was not downloaded, so your request was discarded. "
    "Choose another model to continue."
)


@dataclass(frozen=True)
class TurnOutcome:
    """How a turn ended."""

    status: TurnStatus
    steps: int = 0
    tier: str | None = None


def _default_hosted_factory(config: Config) -> HostedFactory:
    if config.use_mock:
        from logpilot.providers.mock import ScriptedProvider

        return lambda _key: ScriptedProvider()

    from logpilot.providers.gemini import GeminiProvider

    return GeminiProvider


async def _close_quietly(provider: object) -> None:
    aclose = getattr(provider, "aclose", None)
    if not callable(aclose):
        return
    try:
        await aclose()
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        # Cleanup should never mask the primary failure.
        logger.warning("Provider cleanup failed: %s", exc)


def describe_provider_failure(exc: BaseException) -> str:
    """User-facing text for a failed inference step."""
    if isinstance(exc, APIError) and exc.is_rate_limit:
        if exc.retry_after_s is not None:
            text = (
                "Rate limit exceeded. Please try again in about "
                f"{wait_seconds(exc.retry_after_s)} seconds."
            )
        else:
            text = "Rate limit exceeded. Please wait a moment before trying again."
        link = usage_link(exc)
        if link:
            text += f"\n[Monitor your usage here]({link})"
        return text
    return f"An error occurred: {str(exc) or type(exc).__name__}"


class Assistant:
    """Conversational log assistant for one conversation surface.

    Example:
        async with Assistant(source, filters, navigation, config=Config()) as bot:
            await bot.submit("Why did the charger stop?")
            print(bot.messages[-1].text)
    """

    def __init__(
        self,
        source: LogSource,
        filter_sink: FilterSink,
        navigation_sink: NavigationSink,
        *,
        config: Config | None = None,
        context: ConversationContext | None = None,
        hosted_factory: HostedFactory | None = None,
        on_device: Provider | None = None,
        local_runtime: LocalRuntimeProvider | None = None,
        governor: RateGovernor | None = None,
    ) -> None:
        self._config = config or Config()
        self._context = context or ConversationContext()
        self._source = source
        self._tier = self._config.tier
        self._governor = governor or RateGovernor(
            self._config.tiers, window_s=self._config.rate_window_s
        )
        self._hosted_factory = hosted_factory or _default_hosted_factory(self._config)
        self._hosted: Provider | None = None
        self._hosted_key: str | None = None
        self._on_device = on_device
        self._local_runtime = local_runtime
        self._engine = ToolEngine(
            source,
            filter_sink,
            navigation_sink,
            solution_model=self._config.solution_model,
        )
        self._messages: list[Message] = [welcome_message()]
        self._busy = False
        self._progress = ""

    # -- read-only surface -------------------------------------------------

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def progress(self) -> str:
        """Human-readable progress, only non-empty while a runtime downloads."""
        return self._progress

    @property
    def tier(self) -> str:
        return self._tier

    @property
    def state(self) -> ConversationState:
        return self._context.state.state

    @property
    def pending_prompt(self) -> str | None:
        return self._context.pending_prompt

    @property
    def awaiting_credential(self) -> bool:
        return self._context.pending_reason == "credential"

    @property
    def awaiting_consent(self) -> bool:
        return self._context.pending_reason == "consent"

    # -- operations --------------------------------------------------------

    def select_tier(self, name: str) -> None:
        self._ensure_idle("Cannot switch models while a turn is running")
        if name not in LOCAL_TIERS and not self._governor.has_tier(name):
            choices = [t.name for t in self._governor.tiers] + sorted(LOCAL_TIERS)
            raise ConfigurationError(
                f"Unknown tier: {name!r}", hint=f"Choose one of: {', '.join(choices)}"
            )
        logger.info("Switching tier %s -> %s", self._tier, name)
        self._tier = name

    async def submit(self, prompt: str) -> TurnOutcome:
        """Run one user turn to completion."""
        text = prompt.strip()
        if not text:
            raise ConfigurationError("Prompt must not be empty")
        self._ensure_idle("A turn is already in progress")
        self._context.discard_pending()
        self._add("user", text)
        return await self._turn(text)

    async def set_credential(self, api_key: str) -> TurnOutcome | None:
        """Store a user-supplied API key and replay the prompt that needed it.

        Returns the replayed turn's outcome, or None when nothing was waiting.
        """
        self._ensure_idle("Cannot change the API key while a turn is running")
        key = api_key.strip()
        self._context.credentials.set(key)
        if not key:
            return None
        prompt = self._context.take_pending("credential")
        if prompt is None:
            return None
        self._add("model", KEY_SAVED_TEXT, is_warning=True)
        return await self._turn(prompt)

    async def respond_to_consent(self, accepted: bool) -> TurnOutcome | None:
        """Record the download decision; on yes, load and replay the queued prompt.

        Returns the replayed turn's outcome, or None when nothing was waiting.
        """
        self._ensure_idle("A turn is already in progress")
        prompt = self._context.take_pending("consent")
        self._context.consent.set(accepted)
        if prompt is None:
            return None
        if not accepted:
            logger.info("Local runtime download declined")
            self._add("model", CONSENT_DECLINED_TEXT, is_warning=True)
            return None
        return await self._turn(prompt)

    async def aclose(self) -> None:
        """Tear down sessions and transports owned by this conversation."""
        for provider in (self._on_device, self._local_runtime, self._hosted):
            if provider is not None:
                await _close_quietly(provider)
        self._hosted = None
        self._hosted_key = None

    async def __aenter__(self) -> Assistant:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -- backends ----------------------------------------------------------

    async def _run_hosted(self) -> TurnOutcome:
        key = self._context.credentials.get() or self._config.api_key
        if not key and self._config.use_mock:
            key = MOCK_KEY
        if not key:
            raise MissingCredentialError(MISSING_KEY_TEXT)

        try:
            admission = self._governor.admit(self._tier)
        except AdmissionError as e:
            self._add("model", str(e), is_error=True)
            return TurnOutcome("rejected", tier=self._tier)
        if admission.notice:
            self._add("model", admission.notice, is_warning=True)

        if not self._context.privacy_notice_shown:
            self._add("model", PRIVACY_TEXT, is_warning=True)
            self._context.privacy_notice_shown = True

        provider = await self._hosted_provider(key)
        return await self._run_loop(
            provider,
            model=admission.tier.model,
            tier=admission.tier.name,
            system=self._hosted_prompt(),
            hosted=provider,
        )

    async def _run_on_device(self) -> TurnOutcome:
        provider = self._on_device_provider()
        entries = self._source.entries()
        system = on_device_system_prompt(len(entries), self._source.daemons())
        return await self._run_loop(
            provider, model=ON_DEVICE_TIER, tier=ON_DEVICE_TIER, system=system
        )

    async def _run_local_runtime(self) -> TurnOutcome:
        runtime = self._local_runtime_provider()
        if not runtime.ready:
            if not self._context.consent.get():
                raise ConsentRequiredError(
                    f"The local model '{self._config.runtime_model}' must be downloaded "
                    "once before first use. It runs entirely on this machine. "
                    "Allow the download?"
                )
            await self._load_runtime(runtime)
        return await self._run_loop(
            runtime,
            model=self._config.runtime_model,
            tier=LOCAL_RUNTIME_TIER,
            system=self._hosted_prompt(),
        )

    async def _load_runtime(self, runtime: LocalRuntimeProvider) -> None:
        def report(progress: str) -> None:
            self._progress = progress
            logger.debug("Runtime load: %s", progress)

        self._progress = "Preparing local model..."
        try:
            await runtime.load(report)
        except LogPilotError as e:
            logger.warning("Local runtime load failed: %s", e)
            raise RuntimeDownloadError(
                f"Could not load the local model: {e}. Try the download again?"
            ) from e

    async def _hosted_provider(self, key: str) -> Provider:
        if self._hosted is None or self._hosted_key != key:
            previous = self._hosted
            self._hosted = self._hosted_factory(key)
            self._hosted_key = key
            if previous is not None:
                await _close_quietly(previous)
        return self._hosted

    def _on_device_provider(self) -> Provider:
        if self._on_device is None:
            url = self._config.local_session_url or "http://localhost:1234/v1"
            self._on_device = LocalSessionProvider(
                chat_completions_factory(url, self._config.local_session_model)
            )
        return self._on_device

    def _local_runtime_provider(self) -> LocalRuntimeProvider:
        if self._local_runtime is None:
            url = self._config.runtime_url or "http://localhost:11434"
            self._local_runtime = LocalRuntimeProvider(
                OllamaRuntimeLoader(url, self._config.runtime_model)
            )
        return self._local_runtime

    def _hosted_prompt(self) -> str:
        return hosted_system_prompt(
            len(self._source.entries()),
            self._source.daemons(),
            self._context.findings.findings(),
        )

    # -- the loop ----------------------------------------------------------

    def _ensure_idle(self, message: str) -> None:
        if self._busy:
            raise ConversationBusyError(
                message, hint="Wait for the current answer before trying again."
            )

    async def _turn(self, prompt: str) -> TurnOutcome:
        """Route *prompt* to the selected backend; the user message is already shown."""
        self._context.state.reset()
        self._busy = True
        try:
            if self._tier == ON_DEVICE_TIER:
                return await self._run_on_device()
            if self._tier == LOCAL_RUNTIME_TIER:
                return await self._run_local_runtime()
            return await self._run_hosted()
        except PreconditionError as e:
            reason: PendingReason = (
                "credential" if isinstance(e, MissingCredentialError) else "consent"
            )
            failed = isinstance(e, MissingCredentialError | RuntimeDownloadError)
            logger.info("Holding prompt until %s is provided", reason)
            self._context.hold(prompt, reason)
            self._add("model", str(e), is_error=failed, is_warning=not failed)
            return TurnOutcome("pending", tier=self._tier)
        finally:
            self._busy = False
            self._progress = ""

    async def _run_loop(
        self,
        provider: Provider,
        *,
        model: str,
        tier: str,
        system: str,
        hosted: Provider | None = None,
    ) -> TurnOutcome:
        contents = provider_history(self._messages)
        machine = self._context.state
        max_steps = self._config.max_steps
        use_tools = provider.capabilities.tools
        logger.info(
            "Starting turn on %s with %d history turns (~%d chars)",
            tier,
            len(contents),
            sum(len(t.content) for t in contents),
        )

        for step in range(1, max_steps + 1):
            tools = available_tools(machine.state) if use_tools else ()
            logger.info(
                "Step %d/%d using %s in state %s", step, max_steps, model, machine.state.value
            )
            request = ProviderRequest(
                model=model,
                history=list(contents),
                system_instruction=system,
                tools=[t.as_function() for t in tools] or None,
            )
            try:
                response = await provider.generate(request)
            except asyncio.CancelledError:
                raise
            except LogPilotError as e:
                logger.warning("Step %d failed: %s", step, e)
                self._add("model", describe_provider_failure(e), is_error=True)
                return TurnOutcome("aborted", steps=step, tier=tier)
            except Exception as e:
                logger.exception("Step %d failed unexpectedly", step)
                self._add("model", describe_provider_failure(e), is_error=True)
                return TurnOutcome("aborted", steps=step, tier=tier)

            if not response.tool_calls:
                logger.info("Model returned final answer after %d step(s)", step)
                self._add("model", response.text or NO_ANSWER_TEXT)
                machine.finish()
                return TurnOutcome("answered", steps=step, tier=tier)

            call = response.tool_calls[0]
            if len(response.tool_calls) > 1:
                logger.info(
                    "Executing only %s; dropping %d other proposed call(s)",
                    call.name,
                    len(response.tool_calls) - 1,
                )
            contents.append(Turn(role="model", tool_call=call))
            logger.info("Executing tool %s %s", call.name, call.arguments)
            result = await self._engine.execute(
                call, allowed={t.name for t in tools}, hosted=hosted
            )
            logger.debug(
                "Tool %s responded (~%d chars)",
                call.name,
                len(json.dumps(result, default=str)),
            )
            machine.observe(call.name, result)
            contents.append(Turn(role="tool", tool_call=call, result=result))

        logger.warning("Step budget of %d exhausted without a final answer", max_steps)
        return TurnOutcome("exhausted", steps=max_steps, tier=tier)

    def _add(
        self,
        role: Literal["user", "model"],
        text: str,
        *,
        is_error: bool = False,
        is_warning: bool = False,
    ) -> None:
        self._messages.append(
            Message(role=role, text=text, is_error=is_error, is_warning=is_warning)
        )
