"""Adapt generic tool definitions into Gemini-compatible function declaration structures."""

from typing import Optional

from google.genai import types

from agentic_loop.loop_core import ToolDefinition, ToolRegistry
from .schema_sanitizer import sanitize


class GeminiToolRegistry(ToolRegistry):
    """
    A specialized ToolRegistry for Google Gemini models.

    This class extends the base ToolRegistry to provide Gemini-specific
    tool object generation, which is required for integrating tools
    with the Google GenAI client.
    """

    @property
    def tool_object(self) -> Optional[types.Tool]:
        """
        Generates a `types.Tool` object suitable for the Gemini API
        based on the registered tools.

        Returns:
            A `types.Tool` object containing all registered function declarations,
            or None if no tools are registered.
        """
        if not self.tools:
            return None
        return types.Tool(function_declarations=[self.declaration(tool) for tool in self.tools.values()])

    @staticmethod
    def declaration(tool: ToolDefinition) -> types.FunctionDeclaration:
        """Function declaration for ``tool`` with a Gemini-compatible parameter schema."""
        if isinstance(tool.parameters, dict) and tool.parameters.get("properties"):
            return types.FunctionDeclaration(
                name=tool.name, description=tool.description, parameters=sanitize(tool.parameters)
            )
        return types.FunctionDeclaration(name=tool.name, description=tool.description)
