"""Translate between the engine's message shapes and Gemini content payloads."""

import json
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from google.genai import types
from google.genai.types import GenerateContentResponse

from agentic_loop.loop_core import (
    AssistantMessage,
    BaseMessage,
    SystemMessage,
    ToolCallRequest,
    ToolMessage,
    ToolRegistry,
    get_logger,
)
from .registry import GeminiToolRegistry

logger = get_logger(__name__)

FINISH_REASONS = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content-filter",
    "RECITATION": "content-filter",
    "PROHIBITED_CONTENT": "content-filter",
    "BLOCKLIST": "content-filter",
    "MALFORMED_FUNCTION_CALL": "error",
}


class GeminiMessageAdapter:
    """Converts requests into Gemini contents and responses back into tool calls, text and usage."""

    @staticmethod
    def to_contents(messages: Sequence[BaseMessage]) -> Tuple[Optional[str], List[types.Content]]:
        """
        Converts model-shaped messages to Gemini Content objects.

        Gemini has no system role inside the conversation, so system messages
        are joined into the system instruction. Consecutive tool messages are
        sent together as one content of function responses.

        Args:
            messages: The prompt in model shape.

        Returns:
            The system instruction (or None) and the Gemini contents.
        """
        system_parts: List[str] = []
        contents: List[types.Content] = []
        for msg in messages:
            if isinstance(msg, SystemMessage):
                if msg.content:
                    system_parts.append(msg.content)
            elif isinstance(msg, ToolMessage):
                part = types.Part(
                    function_response=types.FunctionResponse(
                        id=msg.tool_call_id, name=msg.name, response=GeminiMessageAdapter._decode(msg.content)
                    )
                )
                previous = contents[-1] if contents else None
                if previous is not None and previous.parts and previous.parts[-1].function_response is not None:
                    previous.parts.append(part)
                else:
                    contents.append(types.Content(role="user", parts=[part]))
            elif isinstance(msg, AssistantMessage):
                parts: List[types.Part] = []
                if msg.content:
                    parts.append(types.Part(text=msg.content))
                for call in msg.tool_calls or []:
                    parts.append(
                        types.Part(
                            function_call=types.FunctionCall(
                                id=call.get("tool_call_id"), name=call.get("tool_name"), args=call.get("args") or {}
                            )
                        )
                    )
                if parts:
                    contents.append(types.Content(role="model", parts=parts))
            else:
                contents.append(types.Content(role="user", parts=[types.Part(text=msg.content)]))

        system_instruction = "\n\n".join(system_parts) if system_parts else None
        return system_instruction, contents

    @staticmethod
    def to_gemini_tools(registry: Optional[ToolRegistry]) -> Optional[List[types.Tool]]:
        if registry is None or not registry.tools:
            return None
        declarations = [GeminiToolRegistry.declaration(tool) for tool in registry.tools.values()]
        return [types.Tool(function_declarations=declarations)]

    @staticmethod
    def get_tool_calls(response: GenerateContentResponse) -> List[ToolCallRequest]:
        """Extract tool calls from a Gemini content response.

        Gemini may omit call ids, in which case one is generated so results
        can be matched to their calls.

        Args:
            response: The content response from Gemini.

        Returns:
            The tool call requests in emission order.
        """
        requests = []
        for part in GeminiMessageAdapter._parts(response):
            function_call = part.function_call
            if function_call is None or not function_call.name:
                continue
            requests.append(
                ToolCallRequest(
                    tool_call_id=function_call.id or f"call_{uuid4().hex[:24]}",
                    tool_name=function_call.name,
                    args=dict(function_call.args or {}),
                )
            )
        return requests

    @staticmethod
    def text(response: GenerateContentResponse) -> str:
        return "".join(part.text for part in GeminiMessageAdapter._parts(response) if part.text and not part.thought)

    @staticmethod
    def finish_reason(response: GenerateContentResponse, has_tool_calls: bool) -> Optional[str]:
        if has_tool_calls:
            return "tool-calls"
        if not response.candidates or response.candidates[0].finish_reason is None:
            return None
        reason = response.candidates[0].finish_reason
        name = getattr(reason, "name", str(reason))
        return FINISH_REASONS.get(name, name.lower())

    @staticmethod
    def usage(response: GenerateContentResponse) -> Dict[str, int]:
        metadata = response.usage_metadata
        if metadata is None:
            return {}
        return {
            "input_tokens": metadata.prompt_token_count or 0,
            "output_tokens": metadata.candidates_token_count or 0,
            "total_tokens": metadata.total_token_count or 0,
        }

    @staticmethod
    def _parts(response: GenerateContentResponse) -> List[types.Part]:
        if not response.candidates:
            return []
        content = response.candidates[0].content
        if content is None or not content.parts:
            return []
        return list(content.parts)

    @staticmethod
    def _decode(content: str) -> Dict[str, Any]:
        try:
            decoded = json.loads(content)
        except json.JSONDecodeError:
            return {"result": content}
        return decoded if isinstance(decoded, dict) else {"result": decoded}
