"""Expose the OpenAI model client and tool registry."""

from .core import OpenAIModelClient
from .registry import OpenAIToolRegistry
from .adapter import OpenAIMessageAdapter

__all__ = ["OpenAIModelClient", "OpenAIToolRegistry", "OpenAIMessageAdapter"]
