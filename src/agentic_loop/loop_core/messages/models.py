"""Message models for the conversation.

Two shapes exist side by side:

* the *model shape* (``BaseMessage`` and subclasses) is what gets sent to a
  language model. It carries no engine bookkeeping.
* the *stored shape* (``StoredMessage``) is what the conversation store and
  durable memory keep. Its content is a list of typed parts plus a free-form
  metadata map; suspension and approval annotations live there and do not
  survive a round trip through the model shape.
"""

from abc import ABC
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

TEXT_PART = "text"
TOOL_CALL_PART = "tool-call"
TOOL_RESULT_PART = "tool-result"
SUSPENDED_DATA_PART = "data-tool-call-suspended"
APPROVAL_DATA_PART = "data-tool-call-approval"
SUSPENSION_DATA_PARTS = (SUSPENDED_DATA_PART, APPROVAL_DATA_PART)


class BaseMessage(ABC, BaseModel):
    """Base model for messages exchanged with an LLM.

    Attributes:
        author: Role associated with the message.
        content: Text payload of the message.
    """

    author: str
    content: str


class SystemMessage(BaseMessage):
    """Message authored by the system to steer behavior."""

    author: str = "system"


class UserMessage(BaseMessage):
    """Message authored by an end user."""

    author: str = "user"


class AssistantMessage(BaseMessage):
    """Message authored by the assistant, optionally containing tool calls.

    Each tool call is a dict with ``tool_call_id``, ``tool_name`` and ``args``.
    """

    author: str = "assistant"
    tool_calls: Optional[List[Dict[str, Any]]] = None


class ToolMessage(BaseMessage):
    """Message emitted by a tool invocation."""

    author: str = "tool"
    tool_call_id: str
    name: str
    is_error: bool = False


class MessagePart(BaseModel):
    """A single typed piece of stored message content."""

    model_config = ConfigDict(extra="allow")

    type: str
    text: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    args: Any = None
    result: Any = None
    is_error: bool = False
    provider_executed: bool = False
    provider_metadata: Optional[Dict[str, Any]] = None
    data: Optional[Dict[str, Any]] = None


class MessageContent(BaseModel):
    """Parts plus out-of-band metadata of a stored message."""

    parts: List[MessagePart] = Field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None


class StoredMessage(BaseModel):
    """A message as kept by the conversation store and durable memory."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    role: Literal["system", "user", "assistant", "tool"]
    content: MessageContent = Field(default_factory=MessageContent)
    thread_id: Optional[str] = None
    resource_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(part.text or "" for part in self.content.parts if part.type == TEXT_PART)

    @classmethod
    def from_text(cls, role: Literal["system", "user", "assistant"], text: str, **kwargs: Any) -> "StoredMessage":
        """Build a stored message with a single text part."""
        return cls(role=role, content=MessageContent(parts=[MessagePart(type=TEXT_PART, text=text)]), **kwargs)
