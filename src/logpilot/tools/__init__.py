"""Deterministic tools the model may call mid-turn."""

from .declarations import ToolDeclaration
from .engine import ToolEngine
from .registry import ALL_TOOLS, available_tools, get_declaration

__all__ = [
    "ALL_TOOLS",
    "ToolDeclaration",
    "ToolEngine",
    "available_tools",
    "get_declaration",
]
