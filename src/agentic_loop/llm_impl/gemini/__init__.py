"""Gemini model client implementation."""

from .core import GeminiModelClient
from .registry import GeminiToolRegistry
from .adapter import GeminiMessageAdapter

__all__ = ["GeminiModelClient", "GeminiToolRegistry", "GeminiMessageAdapter"]
