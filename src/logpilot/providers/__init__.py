"""Provider implementations."""

from .base import Provider, ProviderCapabilities, ProviderKind
from .gemini import GeminiProvider
from .local_runtime import LocalRuntimeProvider, OllamaRuntimeLoader
from .local_session import LocalSessionProvider, chat_completions_factory
from .mock import ScriptedProvider
from .models import ProviderRequest, ProviderResponse, ToolCall, Turn

__all__ = [
    "GeminiProvider",
    "LocalRuntimeProvider",
    "LocalSessionProvider",
    "OllamaRuntimeLoader",
    "Provider",
    "ProviderCapabilities",
    "ProviderKind",
    "ProviderRequest",
    "ProviderResponse",
    "ScriptedProvider",
    "ToolCall",
    "Turn",
    "chat_completions_factory",
]
