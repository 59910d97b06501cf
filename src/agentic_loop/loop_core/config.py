"""Engine-wide configuration."""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from .logger import get_logger

logger = get_logger(__name__)

DEFAULT_TOOL_CALL_CONCURRENCY = 10


class EngineConfig(BaseModel):
    """
    Settings for an ``AgenticLoop``.

    Attributes:
        max_steps: Maximum number of model turns per run (including resumed passes).
        tool_call_concurrency: Upper bound for parallel tool calls in one turn.
            Non-positive values fall back to ``DEFAULT_TOOL_CALL_CONCURRENCY``.
        require_tool_approval: Force human approval for every tool call.
        tool_timeout: Timeout in seconds for a single tool execution.
        max_processor_retries: How often an output guard may reject a model turn
            before the run ends with a tripwire. ``None`` disables retries.
        max_retries: Retries for failed model calls.
        base_retry_delay: Initial backoff delay in seconds for model retries.
        memory_config: Opaque configuration forwarded to the conversation memory.
    """

    max_steps: int = Field(default=5, ge=1)
    tool_call_concurrency: int = DEFAULT_TOOL_CALL_CONCURRENCY
    require_tool_approval: bool = False
    tool_timeout: float = Field(default=180.0, gt=0)
    max_processor_retries: Optional[int] = Field(default=None, ge=0)
    max_retries: int = Field(default=3, ge=0)
    base_retry_delay: float = Field(default=1.0, ge=0)
    memory_config: Optional[dict[str, Any]] = None

    @field_validator("tool_call_concurrency", mode="before")
    @classmethod
    def _fallback_concurrency(cls, value: Any) -> int:
        if value is None or int(value) <= 0:
            logger.debug("Non-positive tool call concurrency %r, using %d.", value, DEFAULT_TOOL_CALL_CONCURRENCY)
            return DEFAULT_TOOL_CALL_CONCURRENCY
        return int(value)
