"""Visible conversation messages and conversation-scoped state."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Literal
import uuid

from logpilot.ports import (
    ConsentStore,
    CredentialStore,
    FindingsStore,
    InMemoryConsentStore,
    InMemoryCredentialStore,
    InMemoryFindingsStore,
)
from logpilot.providers.models import Turn
from logpilot.state import ConversationStateMachine

WELCOME_TEXT = "Hello! I'm your AI log assistant. How can I help you analyze these logs?"

PendingReason = Literal["credential", "consent"]


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Message:
    """One entry of the user-visible conversation."""

    role: Literal["user", "model"]
    text: str
    is_error: bool = False
    is_warning: bool = False
    id: str = field(default_factory=_new_id)


def welcome_message() -> Message:
    return Message(role="model", text=WELCOME_TEXT, id="welcome")


def provider_history(messages: Iterable[Message]) -> list[Turn]:
    """Map visible messages to provider turns.

    The welcome message and every error or warning notice stay out of the
    model's view.
    """
    return [
        Turn(role=m.role, content=m.text)
        for m in messages
        if m.id != "welcome" and not (m.is_error or m.is_warning)
    ]


@dataclass
class ConversationContext:
    """Long-lived state shared by every turn of one conversation."""

    credentials: CredentialStore = field(default_factory=InMemoryCredentialStore)
    consent: ConsentStore = field(default_factory=InMemoryConsentStore)
    findings: FindingsStore = field(default_factory=InMemoryFindingsStore)
    state: ConversationStateMachine = field(default_factory=ConversationStateMachine)
    pending_prompt: str | None = None
    pending_reason: PendingReason | None = None
    privacy_notice_shown: bool = False

    def hold(self, prompt: str, reason: PendingReason) -> None:
        """Retain *prompt* until *reason* is resolved."""
        self.pending_prompt = prompt
        self.pending_reason = reason

    def take_pending(self, reason: PendingReason) -> str | None:
        """Pop the pending prompt if it is waiting on *reason*."""
        if self.pending_reason != reason:
            return None
        prompt = self.pending_prompt
        self.discard_pending()
        return prompt

    def discard_pending(self) -> None:
        self.pending_prompt = None
        self.pending_reason = None
