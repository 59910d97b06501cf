"""Public exports for the loop engine: tools, suspension, persistence and orchestration."""

from .logger import get_logger, setup_logging
from .config import EngineConfig
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
from .messages import (
    BaseMessage,
    UserMessage,
    AssistantMessage,
    SystemMessage,
    ToolMessage,
    StoredMessage,
    ConversationStore,
)
from .tools import (
    ToolDefinition,
    ToolRegistry,
    ToolCallRequest,
    ToolCallOutcome,
    ToolCallSuspension,
    SuspendOptions,
    RequestContext,
    RunContext,
    ToolExecutionContext,
    ToolCallStep,
    ToolCallDispatcher,
    DispatchResult,
)
from .tools.models import SuspensionRecord, ApprovalDecision, parse_tool_arguments
from .tools.schema import SchemaValidator
from .suspension import SuspensionMetadataManager
from .persistence import (
    ConversationMemory,
    InMemoryConversationMemory,
    RunSnapshot,
    SnapshotStore,
    InMemorySnapshotStore,
    JsonFileSnapshotStore,
)
from .events import EngineEvent, EventSink, EventBuffer
from .base import ModelClient, ModelRequest, ModelResponse
from .orchestration import AgenticLoop, RunResult, IterationData, ToolResultMapper

__all__ = [
    "get_logger",
    "setup_logging",
    "EngineConfig",
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
    "BaseMessage",
    "UserMessage",
    "AssistantMessage",
    "SystemMessage",
    "ToolMessage",
    "StoredMessage",
    "ConversationStore",
    "ToolDefinition",
    "ToolRegistry",
    "ToolCallRequest",
    "ToolCallOutcome",
    "ToolCallSuspension",
    "SuspendOptions",
    "SuspensionRecord",
    "ApprovalDecision",
    "parse_tool_arguments",
    "RequestContext",
    "RunContext",
    "ToolExecutionContext",
    "ToolCallStep",
    "ToolCallDispatcher",
    "DispatchResult",
    "SchemaValidator",
    "SuspensionMetadataManager",
    "ConversationMemory",
    "InMemoryConversationMemory",
    "RunSnapshot",
    "SnapshotStore",
    "InMemorySnapshotStore",
    "JsonFileSnapshotStore",
    "EngineEvent",
    "EventSink",
    "EventBuffer",
    "ModelClient",
    "ModelRequest",
    "ModelResponse",
    "AgenticLoop",
    "RunResult",
    "IterationData",
    "ToolResultMapper",
]
