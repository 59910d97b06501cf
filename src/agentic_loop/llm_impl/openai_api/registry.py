"""Render registered tools as OpenAI function tool declarations."""

from typing import Any, Dict, List, Optional

from openai.types.chat import ChatCompletionToolParam

from agentic_loop.loop_core import ToolDefinition, ToolRegistry

EMPTY_PARAMETERS: Dict[str, Any] = {"type": "object", "properties": {}}


class OpenAIToolRegistry(ToolRegistry):
    """
    A specialized ToolRegistry for OpenAI models.

    Tools are declared to the chat completions API as ``function`` tools.
    """

    @property
    def tool_object(self) -> Optional[List[ChatCompletionToolParam]]:
        """
        Generates a list of tool definitions in the format expected by the OpenAI API.

        Returns:
            A list of function tool declarations, or None if no tools are registered.
        """
        if not self.tools:
            return None
        return [self.declaration(tool) for tool in self.tools.values()]

    @staticmethod
    def declaration(tool: ToolDefinition) -> ChatCompletionToolParam:
        """Single function tool declaration for ``tool``."""
        parameters = tool.parameters if isinstance(tool.parameters, dict) else EMPTY_PARAMETERS
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": parameters,
            },
        }
