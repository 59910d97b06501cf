"""Data models for a single tool call: request, outcome and suspension."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SuspensionKind = Literal["approval", "suspension"]
NOT_APPROVED_MESSAGE = "Tool call was not approved by the user"


class ToolCallRequest(BaseModel):
    """A tool call requested by the model. Immutable.

    Attributes:
        tool_call_id: Unique id of the call; doubles as the resume label.
        tool_name: Name the model used for the tool.
        args: Decoded JSON arguments, or ``None`` when the model emitted malformed JSON.
        provider_executed: The provider already ran the tool server-side.
        output: Result reported by the provider for provider-executed tools.
        provider_metadata: Opaque provider data carried through to the result message.
    """

    model_config = ConfigDict(frozen=True)

    tool_call_id: str
    tool_name: str
    args: Any = None
    provider_executed: bool = False
    output: Any = None
    provider_metadata: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ToolCallOutcome:
    """The terminal outcome of one tool call.

    Exactly one of ``result`` or ``error`` is meaningful: ``status == "result"``
    carries a result (possibly ``None``), ``status == "error"`` carries an
    exception. ``status == "pending"`` is a client-side tool whose result is
    supplied out of band and carries neither.
    """

    request: ToolCallRequest
    status: Literal["result", "error", "pending"]
    result: Any = None
    error: Optional[BaseException] = None

    def __post_init__(self) -> None:
        if self.status == "error":
            if not isinstance(self.error, BaseException):
                raise ValueError("An error outcome requires an exception instance.")
            if self.result is not None:
                raise ValueError("An error outcome cannot carry a result.")
        elif self.error is not None:
            raise ValueError(f"A '{self.status}' outcome cannot carry an error.")
        if self.status == "pending" and self.result is not None:
            raise ValueError("A pending outcome cannot carry a result.")

    @classmethod
    def success(cls, request: ToolCallRequest, result: Any) -> "ToolCallOutcome":
        return cls(request=request, status="result", result=result)

    @classmethod
    def failure(cls, request: ToolCallRequest, error: BaseException) -> "ToolCallOutcome":
        return cls(request=request, status="error", error=error)

    @classmethod
    def pending(cls, request: ToolCallRequest) -> "ToolCallOutcome":
        return cls(request=request, status="pending")

    @property
    def tool_call_id(self) -> str:
        return self.request.tool_call_id

    @property
    def tool_name(self) -> str:
        return self.request.tool_name

    @property
    def args(self) -> Any:
        return self.request.args

    @property
    def has_result(self) -> bool:
        return self.status == "result"

    @property
    def is_error(self) -> bool:
        return self.status == "error"

    def to_dict(self) -> Dict[str, Any]:
        """Flatten the request fields together with ``result`` or ``error``."""
        data = self.request.model_dump(exclude_none=True, exclude_defaults=True)
        data.setdefault("args", self.request.args)
        if self.status == "result":
            data["result"] = self.result
        elif self.status == "error":
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class SuspendOptions:
    """Options a tool passes to ``context.suspend``.

    Attributes:
        resume_schema: Schema of the data expected on resume (defaults to the tool's own).
        require_tool_approval: Ask for approval instead of a free-form resume.
        run_id: Run id of a sub-agent or sub-workflow the tool delegated to.
        resume_label: Label of the nested suspension inside that sub-run.
    """

    resume_schema: Any = None
    require_tool_approval: bool = False
    run_id: Optional[str] = None
    resume_label: Optional[str] = None


@dataclass(frozen=True)
class ToolCallSuspension:
    """The parked state returned instead of an outcome when a call suspends.

    Attributes:
        request: The request to replay on resume.
        kind: ``approval`` or ``suspension``.
        resume_label: Label the caller resumes with (the tool call id).
        payload: Data describing why the call is parked.
        resume_schema: JSON string schema the resume data has to follow.
        serialized_output_state: Output/stream state captured when parking.
    """

    request: ToolCallRequest
    kind: SuspensionKind
    resume_label: str
    payload: Dict[str, Any] = field(default_factory=dict)
    resume_schema: Optional[str] = None
    serialized_output_state: Optional[Dict[str, Any]] = None
    phase: Literal["suspended"] = "suspended"

    @property
    def tool_call_id(self) -> str:
        return self.request.tool_call_id

    @property
    def tool_name(self) -> str:
        return self.request.tool_name


class SuspensionRecord(BaseModel):
    """Durable marker that a tool call awaits approval or an external event.

    Serialized with camelCase keys, the layout found in stored message metadata.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    tool_call_id: str
    tool_name: str
    args: Any = None
    type: SuspensionKind
    run_id: Optional[str] = None
    resume_schema: Optional[str] = None
    suspend_payload: Any = None

    def to_metadata(self) -> Dict[str, Any]:
        """Wire form; ``suspendPayload`` only appears on suspension records."""
        data = self.model_dump(by_alias=True, mode="json")
        if self.type != "suspension":
            data.pop("suspendPayload", None)
        return data


class ApprovalDecision(BaseModel):
    """Resume data expected by a call that waits for approval."""

    approved: bool = Field(
        description="Controls if the tool call is approved or not, should be true when approved and false when declined"
    )


def parse_tool_arguments(raw_args: Any) -> Any:
    """Decode raw model tool arguments.

    Handles JSON strings, dictionaries, or empty values.

    Args:
        raw_args: Arguments as delivered by the provider.

    Returns:
        A dictionary of arguments, or ``None`` when the arguments cannot be decoded
        into a JSON object. ``None`` is the malformed-arguments marker the tool
        call step reports back to the model.
    """
    if raw_args is None or raw_args == "":
        return {}

    if isinstance(raw_args, dict):
        return raw_args

    if isinstance(raw_args, str):
        try:
            parsed = json.loads(raw_args)
        except json.JSONDecodeError:
            return None
        if parsed is None:
            return {}
        return parsed if isinstance(parsed, dict) else None

    try:
        return dict(raw_args)
    except (TypeError, ValueError):
        return None
