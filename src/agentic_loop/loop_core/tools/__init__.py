from .models import ToolDefinition, ToolCallRequest, ToolCallOutcome, ToolCallSuspension, SuspendOptions
from .registry import ToolRegistry
from .execution import (
    RequestContext,
    RunContext,
    ToolExecutionContext,
    ToolCallStep,
    ToolCallDispatcher,
    DispatchResult,
)

__all__ = [
    "ToolDefinition",
    "ToolCallRequest",
    "ToolCallOutcome",
    "ToolCallSuspension",
    "SuspendOptions",
    "ToolRegistry",
    "RequestContext",
    "RunContext",
    "ToolExecutionContext",
    "ToolCallStep",
    "ToolCallDispatcher",
    "DispatchResult",
]
