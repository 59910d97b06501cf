"""Translate between the engine's message shapes and OpenAI chat completion payloads."""

import json
from typing import Any, Dict, List, Optional, Sequence

from openai.types.chat import ChatCompletion, ChatCompletionToolParam

from agentic_loop.loop_core import (
    AssistantMessage,
    BaseMessage,
    SystemMessage,
    ToolCallRequest,
    ToolMessage,
    ToolRegistry,
    get_logger,
    parse_tool_arguments,
)
from .registry import OpenAIToolRegistry

logger = get_logger(__name__)

FINISH_REASONS = {
    "stop": "stop",
    "tool_calls": "tool-calls",
    "function_call": "tool-calls",
    "length": "length",
    "content_filter": "content-filter",
}


class OpenAIMessageAdapter:
    """Converts requests into chat completion arguments and completions back into responses."""

    @staticmethod
    def to_openai_messages(messages: Sequence[BaseMessage]) -> List[Dict[str, Any]]:
        """
        Converts model-shaped messages to OpenAI specific message dictionaries.

        Args:
            messages: The prompt in model shape.

        Returns:
            List of OpenAI message dictionaries.
        """
        converted: List[Dict[str, Any]] = []
        for msg in messages:
            if isinstance(msg, ToolMessage):
                converted.append({"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content})
            elif isinstance(msg, AssistantMessage):
                entry: Dict[str, Any] = {"role": "assistant", "content": msg.content or None}
                if msg.tool_calls:
                    entry["tool_calls"] = [
                        {
                            "id": call.get("tool_call_id"),
                            "type": "function",
                            "function": {
                                "name": call.get("tool_name"),
                                "arguments": json.dumps(call.get("args") or {}, default=str),
                            },
                        }
                        for call in msg.tool_calls
                    ]
                converted.append(entry)
            elif isinstance(msg, SystemMessage):
                converted.append({"role": "system", "content": msg.content})
            else:
                converted.append({"role": "user", "content": msg.content})
        return converted

    @staticmethod
    def to_openai_tools(registry: Optional[ToolRegistry]) -> Optional[List[ChatCompletionToolParam]]:
        """Function tool declarations for every tool in ``registry``, or None when there are none."""
        if registry is None or not registry.tools:
            return None
        if isinstance(registry, OpenAIToolRegistry):
            return registry.tool_object
        return [OpenAIToolRegistry.declaration(tool) for tool in registry.tools.values()]

    @staticmethod
    def get_tool_calls(response: ChatCompletion) -> List[ToolCallRequest]:
        """Extract tool calls from an OpenAI chat completion response.

        Arguments that are not valid JSON are kept as ``None`` so the tool call
        step can report them back to the model.

        Args:
            response: The chat completion response from OpenAI.

        Returns:
            The tool call requests in emission order.
        """
        if not response.choices:
            return []

        tool_calls = response.choices[0].message.tool_calls
        if not tool_calls:
            return []

        requests = []
        for tool_call in tool_calls:
            if tool_call.type != "function":
                continue
            args = parse_tool_arguments(tool_call.function.arguments)
            if args is None:
                logger.warning("Malformed arguments for tool call '%s' (%s).", tool_call.function.name, tool_call.id)
            requests.append(ToolCallRequest(tool_call_id=tool_call.id, tool_name=tool_call.function.name, args=args))
        return requests

    @staticmethod
    def finish_reason(response: ChatCompletion) -> Optional[str]:
        if not response.choices:
            return None
        reason = response.choices[0].finish_reason
        return FINISH_REASONS.get(reason, reason) if reason else None

    @staticmethod
    def usage(response: ChatCompletion) -> Dict[str, int]:
        if response.usage is None:
            return {}
        return {
            "input_tokens": response.usage.prompt_tokens or 0,
            "output_tokens": response.usage.completion_tokens or 0,
            "total_tokens": response.usage.total_tokens or 0,
        }
