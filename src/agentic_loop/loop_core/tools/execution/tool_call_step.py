"""Execution of a single tool call, including approval gating and suspension."""

from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from .context import RunContext, ToolExecutionContext
from ..models import (
    ApprovalDecision,
    NOT_APPROVED_MESSAGE,
    SuspendOptions,
    SuspensionRecord,
    ToolCallOutcome,
    ToolCallRequest,
    ToolCallSuspension,
    ToolDefinition,
)
from ..registry import ToolRegistry
from ..schema import SchemaValidator
from ...events import EngineEvent, EventSink
from ...exceptions import (
    MalformedArgumentsError,
    SuspendRequested,
    ToolExecutionError,
    ToolNotFoundError,
    ToolValidationError,
)
from ...messages import ConversationStore
from ...logger import get_logger

if TYPE_CHECKING:
    from ...suspension import SuspensionMetadataManager

logger = get_logger(__name__)

StepReturn = Union[ToolCallOutcome, ToolCallSuspension]

AGENT_TOOL_PREFIX = "agent-"
WORKFLOW_TOOL_PREFIX = "workflow-"
INLINE_RESUME_KEYS = ("resumeData", "resume_data")
SUSPENDED_RUN_ID_ARG = "suspended_tool_run_id"


class ToolCallStep:
    """Runs one tool call to an outcome or to a parked suspension.

    The step is the error boundary of a tool call: every failure, including a
    missing tool, malformed arguments, a validation error, a timeout or an
    exception raised by the tool, becomes an error outcome. Only
    ``asyncio.CancelledError`` propagates.
    """

    def __init__(
        self,
        *,
        registry: Optional[ToolRegistry],
        store: ConversationStore,
        run_context: RunContext,
        metadata: "SuspensionMetadataManager",
        events: Optional[EventSink] = None,
        require_tool_approval: bool = False,
        tool_timeout: float = 180.0,
        output_state: Optional[Callable[[], Dict[str, Any]]] = None,
    ) -> None:
        """Initialize the step.

        Args:
            registry: Tools the model may call.
            store: Conversation of the run.
            run_context: Shared run state.
            metadata: Writer of suspension records.
            events: Receiver of tool events.
            require_tool_approval: Force approval for every call.
            tool_timeout: Timeout in seconds for a single tool execution.
            output_state: Returns the output state to capture when a call parks.
        """
        self.registry = registry
        self.store = store
        self.run_context = run_context
        self.metadata = metadata
        self.events = events
        self.require_tool_approval = require_tool_approval
        self.tool_timeout = tool_timeout
        self._output_state = output_state

    def resolve(self, tool_name: str) -> Optional[ToolDefinition]:
        return self.registry.resolve(tool_name) if self.registry else None

    async def execute(self, request: ToolCallRequest, resume_data: Any = None) -> StepReturn:
        """Run ``request`` and return its outcome, or the suspension it parked in.

        Args:
            request: The tool call.
            resume_data: Data the caller resumed this call with, if any.

        Returns:
            A ``ToolCallOutcome`` or a ``ToolCallSuspension``.
        """
        name = request.tool_name
        logger.debug(f"Handling tool call: {name} (ID: {request.tool_call_id})")

        if request.provider_executed:
            output = request.output
            if output is None:
                output = {"providerExecuted": True, "toolName": name}
            return ToolCallOutcome.success(request, output)

        tool = self.resolve(name)
        if tool is None:
            return ToolCallOutcome.failure(request, self._not_found_error(name))

        if request.args is None:
            msg = (
                f'Tool "{name}" received invalid arguments — the provided JSON could not be parsed. '
                "Please provide valid JSON arguments."
            )
            logger.warning(msg)
            return ToolCallOutcome.failure(request, MalformedArgumentsError(msg))

        await self._call_input_hook(tool, request)

        if tool.execute is None:
            logger.debug("Tool '%s' has no execute body; leaving call %s pending.", name, request.tool_call_id)
            return ToolCallOutcome.pending(request)

        try:
            return await self._run(tool, request, resume_data)
        except Exception as e:
            logger.error(f"Tool call '{name}' failed: {e}", exc_info=True)
            return ToolCallOutcome.failure(request, e)

    async def _run(self, tool: ToolDefinition, request: ToolCallRequest, workflow_resume_data: Any) -> StepReturn:
        name = request.tool_name
        args = dict(request.args) if isinstance(request.args, dict) else request.args

        inline_resume_data = None
        if isinstance(args, dict):
            for key in INLINE_RESUME_KEYS:
                if key in args:
                    value = args.pop(key)
                    if inline_resume_data is None:
                        inline_resume_data = value
        is_resume_tool_call = inline_resume_data is not None
        resume_data = inline_resume_data if is_resume_tool_call else workflow_resume_data

        is_agent_tool = name.startswith(AGENT_TOOL_PREFIX)
        is_workflow_tool = name.startswith(WORKFLOW_TOOL_PREFIX)

        suspended_run_id = None
        if resume_data is not None and (is_agent_tool or is_workflow_tool) and not is_resume_tool_call:
            suspended_run_id = self.metadata.find_run_id(name)

        requires_approval = await self._requires_approval(tool, args)
        if requires_approval:
            if resume_data is None:
                return await self._park_for_approval(request)
            await self.metadata.remove(name, "approval")
            if not self._is_approved(resume_data):
                logger.info("Tool call %s for '%s' was declined.", request.tool_call_id, name)
                return ToolCallOutcome.success(request, NOT_APPROVED_MESSAGE)
        elif resume_data is not None:
            await self.metadata.remove(name, "suspension")

        tool_resume_data = resume_data
        if not is_agent_tool and requires_approval and self._is_approval_envelope(resume_data):
            tool_resume_data = None

        if isinstance(args, dict):
            if tool_resume_data is not None and suspended_run_id:
                args[SUSPENDED_RUN_ID_ARG] = suspended_run_id
            if is_agent_tool and "prompt" in args:
                args["thread_id"] = args.get("thread_id") or self.run_context.thread_id
                args["resource_id"] = args.get("resource_id") or self.run_context.resource_id

        if tool.args_model is not None:
            try:
                # Shallow: nested models reach the tool as model instances
                args = dict(tool.args_model.model_validate(args))
            except ValidationError as validation_error:
                msg = f"Argument validation failed: {validation_error}"
                logger.warning(f"Validation error for '{name}': {msg}")
                return ToolCallOutcome.failure(request, ToolValidationError(msg))

        parked: List[ToolCallSuspension] = []

        async def suspend(payload: Any = None, options: Optional[SuspendOptions] = None) -> None:
            options = options or SuspendOptions()
            if not parked:
                if options.require_tool_approval:
                    parked.append(await self._park_for_approval(request, run_id=options.run_id))
                else:
                    parked.append(await self._park_for_suspension(tool, request, payload, options))
            raise SuspendRequested(request.tool_call_id)

        async def write(data: Any) -> None:
            self._emit("tool-output", {"tool_call_id": request.tool_call_id, "tool_name": name, "output": data})

        context = ToolExecutionContext(
            tool_call_id=request.tool_call_id,
            tool_name=name,
            abort_signal=self.run_context.abort_signal,
            messages=self.store.all_model() if is_agent_tool else self.store.input_model(),
            request_context=self.run_context.request_context,
            suspend_fn=suspend,
            write_fn=write,
            resume_data=tool_resume_data,
            run_id=self.run_context.run_id,
            thread_id=self.run_context.thread_id,
            resource_id=self.run_context.resource_id,
        )

        result: Any = None
        logger.info(f"Executing tool '{name}'...")
        try:
            result = await asyncio.wait_for(tool.execute(args, context), timeout=self.tool_timeout)
        except SuspendRequested:
            pass
        except asyncio.TimeoutError:
            if not parked:
                msg = f"Tool execution timed out after {self.tool_timeout} seconds."
                logger.warning(f"Tool '{name}': {msg}")
                return ToolCallOutcome.failure(request, ToolExecutionError(msg))
        except Exception:
            if not parked:
                raise

        if parked:
            logger.info("Tool call %s for '%s' parked (%s).", request.tool_call_id, name, parked[0].kind)
            return parked[0]

        logger.info(f"Tool '{name}' executed successfully.")
        await self._call_output_hook(tool, request, args, result)
        return ToolCallOutcome.success(request, result)

    async def _requires_approval(self, tool: ToolDefinition, args: Any) -> bool:
        if self.require_tool_approval or self.run_context.request_context.requires_tool_approval:
            return True
        if tool.require_approval:
            return True
        if tool.needs_approval_fn is None:
            return False
        try:
            return bool(await _maybe_await(tool.needs_approval_fn(args)))
        except Exception:
            logger.error(
                "Error evaluating needs_approval_fn for tool '%s'; requiring approval.", tool.name, exc_info=True
            )
            return True

    async def _park_for_approval(self, request: ToolCallRequest, run_id: Optional[str] = None) -> ToolCallSuspension:
        resume_schema = SchemaValidator.to_json_string(ApprovalDecision)
        record = SuspensionRecord(
            tool_call_id=request.tool_call_id,
            tool_name=request.tool_name,
            args=request.args,
            type="approval",
            run_id=run_id or self.run_context.run_id,
            resume_schema=resume_schema,
        )
        self.metadata.write(request.tool_name, record)
        await self.metadata.flush()
        self._emit(
            "tool-call-approval",
            {
                "tool_call_id": request.tool_call_id,
                "tool_name": request.tool_name,
                "args": request.args,
                "resume_schema": resume_schema,
            },
        )
        return ToolCallSuspension(
            request=request,
            kind="approval",
            resume_label=request.tool_call_id,
            payload={
                "require_tool_approval": {
                    "tool_call_id": request.tool_call_id,
                    "tool_name": request.tool_name,
                    "args": request.args,
                }
            },
            resume_schema=resume_schema,
            serialized_output_state=self._capture_output_state(),
        )

    async def _park_for_suspension(
        self,
        tool: ToolDefinition,
        request: ToolCallRequest,
        payload: Any,
        options: SuspendOptions,
    ) -> ToolCallSuspension:
        schema = options.resume_schema if options.resume_schema is not None else tool.resume_schema
        resume_schema = SchemaValidator.to_json_string(schema)
        record = SuspensionRecord(
            tool_call_id=request.tool_call_id,
            tool_name=request.tool_name,
            args=request.args,
            type="suspension",
            run_id=options.run_id or self.run_context.run_id,
            resume_schema=resume_schema,
            suspend_payload=payload,
        )
        self.metadata.write(request.tool_name, record)
        await self.metadata.flush()
        self._emit(
            "tool-call-suspended",
            {
                "tool_call_id": request.tool_call_id,
                "tool_name": request.tool_name,
                "args": request.args,
                "resume_schema": resume_schema,
                "suspend_payload": payload,
            },
        )
        return ToolCallSuspension(
            request=request,
            kind="suspension",
            resume_label=request.tool_call_id,
            payload={
                "tool_call_suspended": payload,
                "tool_name": request.tool_name,
                "resume_label": options.resume_label,
            },
            resume_schema=resume_schema,
            serialized_output_state=self._capture_output_state(),
        )

    async def _call_input_hook(self, tool: ToolDefinition, request: ToolCallRequest) -> None:
        if tool.on_input_available is None:
            return
        try:
            await _maybe_await(
                tool.on_input_available(
                    tool_call_id=request.tool_call_id,
                    args=request.args,
                    messages=self.store.input_model(),
                    abort_signal=self.run_context.abort_signal,
                )
            )
        except Exception:
            logger.error("Error calling on_input_available for tool '%s'.", tool.name, exc_info=True)

    async def _call_output_hook(self, tool: ToolDefinition, request: ToolCallRequest, args: Any, result: Any) -> None:
        if tool.on_output is None:
            return
        try:
            await _maybe_await(
                tool.on_output(
                    tool_call_id=request.tool_call_id,
                    tool_name=request.tool_name,
                    args=args,
                    output=result,
                )
            )
        except Exception:
            logger.error("Error calling on_output for tool '%s'.", tool.name, exc_info=True)

    def _not_found_error(self, name: str) -> ToolNotFoundError:
        available = self.registry.names if self.registry else []
        available_str = f" Available tools: {', '.join(available)}." if available else ""
        msg = (
            f'Tool "{name}" not found.{available_str} '
            "Call tools by their exact name only — never add prefixes, namespaces, or colons."
        )
        logger.warning(msg)
        return ToolNotFoundError(msg)

    def _capture_output_state(self) -> Optional[Dict[str, Any]]:
        return self._output_state() if self._output_state else None

    def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self.events is None:
            return
        self.events.enqueue(EngineEvent(type=event_type, run_id=self.run_context.run_id, payload=payload))

    @staticmethod
    def _is_approved(resume_data: Any) -> bool:
        if isinstance(resume_data, ApprovalDecision):
            return resume_data.approved
        if isinstance(resume_data, dict):
            return bool(resume_data.get("approved"))
        return bool(getattr(resume_data, "approved", False))

    @staticmethod
    def _is_approval_envelope(resume_data: Any) -> bool:
        if isinstance(resume_data, ApprovalDecision):
            return True
        return isinstance(resume_data, dict) and list(resume_data) == ["approved"]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value
