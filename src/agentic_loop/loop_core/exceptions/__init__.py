"""Export the exception hierarchy used across tool execution and run orchestration."""

from .exceptions import (
    LLMToolError,
    ToolRegistrationError,
    ToolNotFoundError,
    ToolExecutionError,
    ToolValidationError,
    MalformedArgumentsError,
    EngineError,
    PersistenceError,
    RunNotFoundError,
    ResumeLabelError,
    SuspendRequested,
    OutputRejected,
)

__all__ = [
    "LLMToolError",
    "ToolRegistrationError",
    "ToolNotFoundError",
    "ToolExecutionError",
    "ToolValidationError",
    "MalformedArgumentsError",
    "EngineError",
    "PersistenceError",
    "RunNotFoundError",
    "ResumeLabelError",
    "SuspendRequested",
    "OutputRejected",
]
