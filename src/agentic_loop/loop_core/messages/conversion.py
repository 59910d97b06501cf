"""Conversion between stored messages and model-shaped messages."""

import json
from typing import Any, List, Sequence

from .models import (
    BaseMessage,
    UserMessage,
    AssistantMessage,
    SystemMessage,
    ToolMessage,
    StoredMessage,
    MessageContent,
    MessagePart,
    TEXT_PART,
    TOOL_CALL_PART,
    TOOL_RESULT_PART,
)

# Key in a tool result's provider metadata holding what the model sees instead of the raw result.
MODEL_OUTPUT_NAMESPACE = "agentic_loop"


def format_tool_response(result: Any, is_error: bool = False) -> str:
    """Serialize a tool result (or error text) into tool message content.

    Args:
        result: The tool result, or the error text when ``is_error`` is set.
        is_error: Whether the content describes a failed call.

    Returns:
        A JSON string of the form ``{"result": ...}`` or ``{"error": ...}``.
    """
    key = "error" if is_error else "result"
    return json.dumps({key: result}, default=str)


def to_model_messages(messages: Sequence[StoredMessage]) -> List[BaseMessage]:
    """Convert stored messages into the model shape.

    Data parts (suspension and approval annotations) and metadata are dropped.
    Tool-result parts become one ``ToolMessage`` each, placed after the
    assistant text/tool-call message they belong to.

    Args:
        messages: Stored messages in conversation order.

    Returns:
        The model-shaped messages.
    """
    converted: List[BaseMessage] = []
    for message in messages:
        text = message.text
        if message.role == "system":
            if text:
                converted.append(SystemMessage(content=text))
            continue
        if message.role == "user":
            converted.append(UserMessage(content=text))
            continue

        tool_calls = [
            {"tool_call_id": part.tool_call_id, "tool_name": part.tool_name, "args": part.args}
            for part in message.content.parts
            if part.type == TOOL_CALL_PART
        ]
        if message.role == "assistant" and (text or tool_calls):
            converted.append(AssistantMessage(content=text, tool_calls=tool_calls or None))

        for part in message.content.parts:
            if part.type != TOOL_RESULT_PART or not part.tool_call_id:
                continue
            result = part.result
            model_output = ((part.provider_metadata or {}).get(MODEL_OUTPUT_NAMESPACE) or {}).get("model_output")
            if model_output is not None and not part.is_error:
                result = model_output
            converted.append(
                ToolMessage(
                    content=format_tool_response(result, part.is_error),
                    tool_call_id=part.tool_call_id,
                    name=part.tool_name or "unknown_tool",
                    is_error=part.is_error,
                )
            )
    return converted


def from_model_message(message: BaseMessage, **kwargs: Any) -> StoredMessage:
    """Convert a model-shaped message into a stored message.

    Args:
        message: The model-shaped message.
        **kwargs: Extra fields for the stored message (``thread_id`` etc.).

    Returns:
        The stored message.
    """
    parts: List[MessagePart] = []
    if isinstance(message, ToolMessage):
        try:
            decoded = json.loads(message.content)
        except json.JSONDecodeError:
            decoded = {"result": message.content}
        result = decoded.get("error" if message.is_error else "result") if isinstance(decoded, dict) else decoded
        parts.append(
            MessagePart(
                type=TOOL_RESULT_PART,
                tool_call_id=message.tool_call_id,
                tool_name=message.name,
                result=result,
                is_error=message.is_error,
            )
        )
        return StoredMessage(role="tool", content=MessageContent(parts=parts), **kwargs)

    if message.content:
        parts.append(MessagePart(type=TEXT_PART, text=message.content))
    if isinstance(message, AssistantMessage):
        for call in message.tool_calls or []:
            parts.append(
                MessagePart(
                    type=TOOL_CALL_PART,
                    tool_call_id=call.get("tool_call_id"),
                    tool_name=call.get("tool_name"),
                    args=call.get("args"),
                )
            )
    role = message.author if message.author in ("system", "user", "assistant") else "assistant"
    return StoredMessage(role=role, content=MessageContent(parts=parts), **kwargs)
