from .context import RequestContext, RunContext, ToolExecutionContext, REQUIRE_TOOL_APPROVAL_KEY
from .tool_call_step import ToolCallStep
from .dispatcher import ToolCallDispatcher, DispatchResult

__all__ = [
    "RequestContext",
    "RunContext",
    "ToolExecutionContext",
    "REQUIRE_TOOL_APPROVAL_KEY",
    "ToolCallStep",
    "ToolCallDispatcher",
    "DispatchResult",
]
