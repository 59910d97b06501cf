"""Agentic Loop - a tool-calling loop with approval, suspension and durable resume."""

from .loop_core import (
    AgenticLoop,
    EngineConfig,
    RunResult,
    ModelClient,
    ModelRequest,
    ModelResponse,
    BaseMessage,
    UserMessage,
    AssistantMessage,
    SystemMessage,
    ToolMessage,
    ToolRegistry,
    ToolDefinition,
    ToolExecutionContext,
    ApprovalDecision,
    RequestContext,
    EventBuffer,
    InMemoryConversationMemory,
    InMemorySnapshotStore,
    JsonFileSnapshotStore,
)
from .llm_impl.gemini import GeminiModelClient, GeminiToolRegistry
from .llm_impl.openai_api import OpenAIModelClient, OpenAIToolRegistry

__all__ = [
    "AgenticLoop",
    "EngineConfig",
    "RunResult",
    "ModelClient",
    "ModelRequest",
    "ModelResponse",
    "BaseMessage",
    "UserMessage",
    "AssistantMessage",
    "SystemMessage",
    "ToolMessage",
    "ToolRegistry",
    "ToolDefinition",
    "ToolExecutionContext",
    "ApprovalDecision",
    "RequestContext",
    "EventBuffer",
    "InMemoryConversationMemory",
    "InMemorySnapshotStore",
    "JsonFileSnapshotStore",
    "GeminiModelClient",
    "GeminiToolRegistry",
    "OpenAIModelClient",
    "OpenAIToolRegistry",
]
