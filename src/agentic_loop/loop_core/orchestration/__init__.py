"""Run orchestration: the loop, its iteration data and the outcome mapping."""

from .models import IterationData, IterationMessages, ModelOutput, StepResult, StreamState, RunResult
from .mapping import ToolResultMapper
from .loop import AgenticLoop

__all__ = [
    "IterationData",
    "IterationMessages",
    "ModelOutput",
    "StepResult",
    "StreamState",
    "RunResult",
    "ToolResultMapper",
    "AgenticLoop",
]
