"""
Custom exception classes for the agentic loop engine.

Two families live here. ``LLMToolError`` and its subclasses describe problems
with a single tool call; inside a run they are never raised past the tool call
step but carried as the ``error`` of a ``ToolCallOutcome``. ``EngineError`` and
its subclasses are raised to callers of the public API (registration,
configuration, resuming a parked run).
"""


class LLMToolError(Exception):
    """Base exception for all tool-related errors."""

    pass


class ToolRegistrationError(LLMToolError):
    """Raised when there is an error registering a tool."""

    pass


class ToolNotFoundError(LLMToolError):
    """Raised when a requested tool is not found in the registry."""

    pass


class ToolExecutionError(LLMToolError):
    """Raised when a tool fails during execution."""

    pass


class ToolValidationError(LLMToolError):
    """Raised when tool parameters or definition are invalid."""

    pass


class MalformedArgumentsError(ToolValidationError):
    """Raised when the model produced tool arguments that could not be parsed."""

    pass


class EngineError(Exception):
    """Base exception for errors raised by the engine to its callers."""

    pass


class PersistenceError(EngineError):
    """Raised when durable messages or snapshots could not be written."""

    pass


class RunNotFoundError(EngineError):
    """Raised when a run id has no parked snapshot to resume from."""

    pass


class ResumeLabelError(EngineError):
    """Raised when a resume label does not match any suspended tool call of a run."""

    pass


class SuspendRequested(BaseException):
    """Unwinds a tool's ``execute`` after it called ``context.suspend``.

    Derives from ``BaseException`` like ``asyncio.CancelledError`` so that a
    tool's ``except Exception`` blocks do not intercept it.
    """

    def __init__(self, resume_label: str) -> None:
        super().__init__(f"Tool call '{resume_label}' suspended.")
        self.resume_label = resume_label


class OutputRejected(EngineError):
    """Raised by an output guard to reject a model turn.

    Attributes:
        retry: Ask the model to try again with the rejection reason as feedback.
        metadata: Free-form data attached to the tripwire event.
    """

    def __init__(self, reason: str, retry: bool = False, metadata: dict | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.retry = retry
        self.metadata = metadata or {}
