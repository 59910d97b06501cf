"""Expose message models, conversions and the conversation store."""

from .models import (
    BaseMessage,
    UserMessage,
    AssistantMessage,
    SystemMessage,
    ToolMessage,
    MessagePart,
    MessageContent,
    StoredMessage,
)
from .conversion import to_model_messages, from_model_message, format_tool_response
from .store import ConversationStore

__all__ = [
    "BaseMessage",
    "UserMessage",
    "AssistantMessage",
    "SystemMessage",
    "ToolMessage",
    "MessagePart",
    "MessageContent",
    "StoredMessage",
    "to_model_messages",
    "from_model_message",
    "format_tool_response",
    "ConversationStore",
]
