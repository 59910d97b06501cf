"""Tool-related data models."""

from .models import ToolDefinition
from .tool_call import (
    ToolCallRequest,
    ToolCallOutcome,
    ToolCallSuspension,
    SuspendOptions,
    SuspensionRecord,
    ApprovalDecision,
    NOT_APPROVED_MESSAGE,
    parse_tool_arguments,
)

__all__ = [
    "ToolDefinition",
    "ToolCallRequest",
    "ToolCallOutcome",
    "ToolCallSuspension",
    "SuspendOptions",
    "SuspensionRecord",
    "ApprovalDecision",
    "NOT_APPROVED_MESSAGE",
    "parse_tool_arguments",
]
