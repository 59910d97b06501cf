"""Data passed between the stages of one loop iteration, and the result of a run."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from ..exceptions import exceptions as exception_types
from ..exceptions import ToolExecutionError
from ..messages import BaseMessage, ConversationStore
from ..tools.models import ToolCallOutcome, ToolCallRequest, ToolCallSuspension

RunStatus = Literal["completed", "suspended", "max-steps", "aborted"]


@dataclass(frozen=True)
class IterationMessages:
    """Model-shaped views of the conversation at the end of a stage."""

    all: List[BaseMessage] = field(default_factory=list)
    user: List[BaseMessage] = field(default_factory=list)
    non_user: List[BaseMessage] = field(default_factory=list)

    @classmethod
    def from_store(cls, store: ConversationStore) -> "IterationMessages":
        return cls(all=store.all_model(), user=store.input_model(), non_user=store.response_model())


@dataclass(frozen=True)
class ModelOutput:
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    text: str = ""
    finish_reason: Optional[str] = None
    usage: Dict[str, int] = field(default_factory=dict)
    steps: int = 0


@dataclass(frozen=True)
class StepResult:
    """Why the last turn ended and whether the loop goes on."""

    reason: str = "stop"
    is_continued: bool = False


@dataclass(frozen=True)
class IterationData:
    """State handed from one stage to the next. Replaced, never mutated."""

    messages: IterationMessages = field(default_factory=IterationMessages)
    output: ModelOutput = field(default_factory=ModelOutput)
    step_result: StepResult = field(default_factory=StepResult)
    processor_retry_count: int = 0
    processor_retry_feedback: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize everything except the message views, which are rebuilt from the store."""
        return {
            "output": {
                "tool_calls": [call.model_dump(mode="json") for call in self.output.tool_calls],
                "text": self.output.text,
                "finish_reason": self.output.finish_reason,
                "usage": dict(self.output.usage),
                "steps": self.output.steps,
            },
            "step_result": {"reason": self.step_result.reason, "is_continued": self.step_result.is_continued},
            "processor_retry_count": self.processor_retry_count,
            "processor_retry_feedback": self.processor_retry_feedback,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], store: ConversationStore) -> "IterationData":
        output = dict(data.get("output") or {})
        output["tool_calls"] = [ToolCallRequest.model_validate(call) for call in output.get("tool_calls", [])]
        return cls(
            messages=IterationMessages.from_store(store),
            output=ModelOutput(**output),
            step_result=StepResult(**(data.get("step_result") or {})),
            processor_retry_count=data.get("processor_retry_count", 0),
            processor_retry_feedback=data.get("processor_retry_feedback"),
        )


@dataclass
class StreamState:
    """Output accumulated over the turns of a run. Captured whenever a call parks."""

    step_texts: List[str] = field(default_factory=list)
    finish_reasons: List[Optional[str]] = field(default_factory=list)
    usage: Dict[str, int] = field(default_factory=dict)

    def record_step(self, text: str, finish_reason: Optional[str], usage: Dict[str, int]) -> None:
        self.step_texts.append(text)
        self.finish_reasons.append(finish_reason)
        for key, value in usage.items():
            self.usage[key] = self.usage.get(key, 0) + value

    @property
    def text(self) -> str:
        """Text of the last turn."""
        return self.step_texts[-1] if self.step_texts else ""

    def serialize(self) -> Dict[str, Any]:
        return {
            "step_texts": list(self.step_texts),
            "finish_reasons": list(self.finish_reasons),
            "usage": dict(self.usage),
        }

    @classmethod
    def restore(cls, data: Optional[Dict[str, Any]]) -> "StreamState":
        data = data or {}
        return cls(
            step_texts=list(data.get("step_texts", [])),
            finish_reasons=list(data.get("finish_reasons", [])),
            usage=dict(data.get("usage", {})),
        )


@dataclass
class RunResult:
    """What ``AgenticLoop.run`` and ``AgenticLoop.resume`` return.

    Attributes:
        run_id: Id to resume a suspended run with.
        status: ``completed``, ``suspended``, ``max-steps`` or ``aborted``.
        text: Text of the last model turn.
        finish_reason: Reason of the last turn (``stop``, ``tool-calls``, ``tripwire``, ...).
        steps: Model turns taken.
        messages: The conversation in model shape.
        tool_results: Outcomes of every tool call settled in this pass.
        suspensions: Parked calls when ``status == "suspended"``.
        usage: Accumulated token counts.
    """

    run_id: str
    status: RunStatus
    text: str = ""
    finish_reason: Optional[str] = None
    steps: int = 0
    messages: List[BaseMessage] = field(default_factory=list)
    tool_results: List[ToolCallOutcome] = field(default_factory=list)
    suspensions: List[ToolCallSuspension] = field(default_factory=list)
    usage: Dict[str, int] = field(default_factory=dict)

    @property
    def is_suspended(self) -> bool:
        return self.status == "suspended"

    @property
    def resume_labels(self) -> List[str]:
        return [suspension.resume_label for suspension in self.suspensions]


def outcome_to_dict(outcome: ToolCallOutcome) -> Dict[str, Any]:
    """JSON-compatible form of an outcome for snapshots."""
    data: Dict[str, Any] = {"request": outcome.request.model_dump(mode="json"), "status": outcome.status}
    if outcome.status == "result":
        data["result"] = _jsonable(outcome.result)
    elif outcome.status == "error":
        data["error"] = {"message": str(outcome.error), "type": type(outcome.error).__name__}
    return data


def outcome_from_dict(data: Dict[str, Any]) -> ToolCallOutcome:
    """Inverse of ``outcome_to_dict``. Errors come back as the library exception of the same name."""
    request = ToolCallRequest.model_validate(data["request"])
    status = data["status"]
    if status == "error":
        error = data.get("error") or {}
        error_cls = getattr(exception_types, error.get("type", ""), None)
        if not (isinstance(error_cls, type) and issubclass(error_cls, Exception)):
            error_cls = ToolExecutionError
        return ToolCallOutcome.failure(request, error_cls(error.get("message", "")))
    if status == "pending":
        return ToolCallOutcome.pending(request)
    return ToolCallOutcome.success(request, data.get("result"))


def _jsonable(value: Any) -> Any:
    return json.loads(json.dumps(value, default=str))
