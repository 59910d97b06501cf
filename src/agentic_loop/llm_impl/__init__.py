"""Concrete model clients and their provider-specific tool registries."""

from .gemini import GeminiModelClient, GeminiToolRegistry
from .openai_api import OpenAIModelClient, OpenAIToolRegistry

__all__ = [
    "GeminiModelClient",
    "GeminiToolRegistry",
    "OpenAIModelClient",
    "OpenAIToolRegistry",
]
