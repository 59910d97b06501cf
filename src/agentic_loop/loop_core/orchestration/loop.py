"""The agentic loop: call the model, run the requested tools, feed results back, repeat."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union
from uuid import uuid4

from .mapping import ToolResultMapper
from .models import (
    IterationData,
    IterationMessages,
    ModelOutput,
    RunResult,
    RunStatus,
    StepResult,
    StreamState,
    outcome_from_dict,
    outcome_to_dict,
)
from ..base import ModelClient, ModelRequest, ModelResponse
from ..config import EngineConfig
from ..events import EngineEvent, EventSink
from ..exceptions import OutputRejected, PersistenceError, ResumeLabelError, RunNotFoundError
from ..messages import BaseMessage, ConversationStore, StoredMessage, SystemMessage, UserMessage
from ..persistence import ConversationMemory, InMemorySnapshotStore, ParkedCall, RunSnapshot, SnapshotStore
from ..suspension import SuspensionMetadataManager
from ..tools.execution import DispatchResult, RequestContext, RunContext, ToolCallDispatcher, ToolCallStep
from ..tools.models import ToolCallOutcome, ToolCallRequest
from ..tools.registry import ToolRegistry
from ..logger import get_logger

logger = get_logger(__name__)

MessageInput = Union[str, BaseMessage, StoredMessage, Sequence[Union[str, BaseMessage, StoredMessage]]]
OutputGuard = Callable[[ModelResponse], Union[None, Awaitable[None]]]
StopCondition = Callable[[IterationData], Union[bool, Awaitable[bool]]]

FEEDBACK_TEMPLATE = (
    "[Processor Feedback] Your previous response was not accepted: {reason}. "
    "Please try again with the feedback in mind."
)


@dataclass
class _Run:
    """Collaborators and mutable state of one run."""

    store: ConversationStore
    context: RunContext
    metadata: SuspensionMetadataManager
    dispatcher: ToolCallDispatcher
    mapper: ToolResultMapper
    stream: StreamState
    step_count: int = 0
    tool_results: List[ToolCallOutcome] = field(default_factory=list)


@dataclass
class _PendingBatch:
    """A tool batch to finish before the next model turn (set when resuming)."""

    requests: List[ToolCallRequest]
    completed: Dict[str, ToolCallOutcome]
    resume_label: str
    resume_data: Any


class AgenticLoop:
    """
    Drives a run through repeated model turns and tool batches.

    Each iteration captures how many response messages already exist, runs the
    model, records only the messages that are new, dispatches the requested
    tool calls, maps their outcomes back into the conversation and decides
    whether to go on. A tool call that asks for approval or suspends itself
    parks the whole run: a snapshot is written and ``run`` returns with
    status ``suspended``. ``resume`` picks the run up again, in this process
    or another one sharing the snapshot store.
    """

    def __init__(
        self,
        model: ModelClient,
        registry: Optional[ToolRegistry] = None,
        *,
        config: Optional[EngineConfig] = None,
        memory: Optional[ConversationMemory] = None,
        snapshots: Optional[SnapshotStore] = None,
        events: Optional[EventSink] = None,
        system_instruction: Optional[str] = None,
        output_guard: Optional[OutputGuard] = None,
        stop_when: Optional[StopCondition] = None,
    ) -> None:
        """
        Initializes the loop.

        Args:
            model: Client used for every model turn.
            registry: Tools the model may call.
            config: Engine settings; defaults to ``EngineConfig()``.
            memory: Durable conversation memory messages are flushed to.
            snapshots: Store for snapshots of parked runs; in-memory by default.
            events: Receiver of run events.
            system_instruction: System prompt placed before the conversation.
            output_guard: Called with every model response; raises ``OutputRejected``
                to reject the turn.
            stop_when: Predicate over the latest iteration that ends the run early.
        """
        self.model = model
        self.registry = registry
        self.config = config or EngineConfig()
        self.memory = memory
        self.snapshots: SnapshotStore = snapshots if snapshots is not None else InMemorySnapshotStore()
        self.events = events
        self.system_instruction = system_instruction
        self.output_guard = output_guard
        self.stop_when = stop_when

    async def run(
        self,
        messages: MessageInput,
        *,
        history: Optional[Sequence[Union[BaseMessage, StoredMessage]]] = None,
        run_id: Optional[str] = None,
        thread_id: Optional[str] = None,
        resource_id: Optional[str] = None,
        request_context: Optional[Dict[str, Any]] = None,
        abort_signal: Optional[asyncio.Event] = None,
    ) -> RunResult:
        """
        Starts a run.

        Args:
            messages: The new input: a prompt string, a message, or a list of them.
            history: Earlier conversation recalled from memory.
            run_id: Id for the run; generated when omitted.
            thread_id: Thread messages are flushed to.
            resource_id: Owner of the thread.
            request_context: Values forwarded to every tool.
            abort_signal: Event that stops the run when set.

        Returns:
            The run result. ``status == "suspended"`` means the run is parked
            and waits for ``resume``.
        """
        store = ConversationStore(thread_id=thread_id, resource_id=resource_id)
        if self.system_instruction:
            store.add_system(self.system_instruction)
        if history:
            store.add(list(history), ConversationStore.MEMORY)
        store.add(self._normalize_input(messages), ConversationStore.INPUT)

        context = RunContext(
            run_id=run_id or uuid4().hex,
            thread_id=thread_id,
            resource_id=resource_id,
            memory_config=self.config.memory_config,
            request_context=RequestContext(request_context or {}),
            abort_signal=abort_signal or asyncio.Event(),
        )
        run = self._new_run(store, context, StreamState())
        logger.info(f"Starting run '{context.run_id}'.")
        iteration = IterationData(messages=IterationMessages.from_store(store))
        return await self._drive(run, iteration)

    async def resume(
        self,
        run_id: str,
        resume_data: Any = None,
        *,
        resume_label: Optional[str] = None,
        request_context: Optional[Dict[str, Any]] = None,
        abort_signal: Optional[asyncio.Event] = None,
    ) -> RunResult:
        """
        Continues a parked run.

        Args:
            run_id: The suspended run.
            resume_data: ``{"approved": bool}`` for approvals, else the tool's resume payload.
            resume_label: Tool call id of the parked call. May be omitted when
                exactly one call is parked.
            request_context: Values laid over the stored request context. Needed
                for values a JSON snapshot store could not keep.
            abort_signal: Event that stops the run when set.

        Returns:
            The run result.

        Raises:
            RunNotFoundError: If no snapshot exists for ``run_id``.
            ResumeLabelError: If the label matches no parked call.
        """
        snapshot = await self.snapshots.load(run_id)
        if snapshot is None:
            raise RunNotFoundError(f"No suspended run with id '{run_id}'.")

        labels = snapshot.suspended_labels
        if resume_label is None:
            if len(labels) != 1:
                raise ResumeLabelError(
                    f"Run '{run_id}' has {len(labels)} parked tool calls; pass one of {labels} as resume_label."
                )
            resume_label = labels[0]
        elif resume_label not in labels:
            raise ResumeLabelError(f"Run '{run_id}' has no parked tool call '{resume_label}'. Parked: {labels}")

        store = ConversationStore.restore(snapshot.messages, snapshot.thread_id, snapshot.resource_id)
        context = RunContext(
            run_id=snapshot.run_id,
            thread_id=snapshot.thread_id,
            resource_id=snapshot.resource_id,
            memory_config=self.config.memory_config,
            thread_exists=snapshot.thread_exists,
            assistant_message_id=snapshot.assistant_message_id,
            request_context=RequestContext({**snapshot.request_context, **(request_context or {})}),
            abort_signal=abort_signal or asyncio.Event(),
        )
        run = self._new_run(store, context, StreamState.restore(snapshot.output_state))
        run.step_count = snapshot.step_count

        iteration = IterationData.from_dict(snapshot.iteration, store)
        batch = _PendingBatch(
            requests=list(iteration.output.tool_calls),
            completed={call_id: outcome_from_dict(data) for call_id, data in snapshot.completed_outcomes.items()},
            resume_label=resume_label,
            resume_data=resume_data,
        )
        run.tool_results.extend(
            batch.completed[call.tool_call_id] for call in batch.requests if call.tool_call_id in batch.completed
        )
        logger.info(f"Resuming run '{run_id}' at tool call '{resume_label}'.")
        return await self._drive(run, iteration, batch)

    def _new_run(self, store: ConversationStore, context: RunContext, stream: StreamState) -> _Run:
        metadata = SuspensionMetadataManager(store, context, self.memory)
        step = ToolCallStep(
            registry=self.registry,
            store=store,
            run_context=context,
            metadata=metadata,
            events=self.events,
            require_tool_approval=self.config.require_tool_approval,
            tool_timeout=self.config.tool_timeout,
            output_state=stream.serialize,
        )
        dispatcher = ToolCallDispatcher(
            step,
            concurrency=self.config.tool_call_concurrency,
            require_tool_approval=self.config.require_tool_approval,
        )
        mapper = ToolResultMapper(store, self.registry, self.events, context.run_id)
        return _Run(
            store=store, context=context, metadata=metadata, dispatcher=dispatcher, mapper=mapper, stream=stream
        )

    async def _drive(self, run: _Run, iteration: IterationData, batch: Optional[_PendingBatch] = None) -> RunResult:
        while True:
            if batch is None:
                if run.context.abort_signal.is_set():
                    return await self._finish(run, iteration, "aborted")
                iteration = await self._execute_model(run, iteration)
                requests = list(iteration.output.tool_calls)
                completed: Dict[str, ToolCallOutcome] = {}
                resume_label, resume_data = None, None
            else:
                requests, completed = batch.requests, batch.completed
                resume_label, resume_data = batch.resume_label, batch.resume_data
                batch = None

            if requests:
                dispatched = await run.dispatcher.dispatch(
                    requests, completed=completed, resume_label=resume_label, resume_data=resume_data
                )
                run.tool_results.extend(o for o in dispatched.outcomes if o.tool_call_id not in completed)
                if dispatched.is_suspended:
                    return await self._park(run, iteration, dispatched)

                iteration, bail = await run.mapper.map(iteration, dispatched.outcomes)
                if bail:
                    return await self._finish(run, iteration, "completed")

            if iteration.step_result.reason == "tripwire":
                return await self._finish(run, iteration, "aborted")
            if not iteration.step_result.is_continued:
                return await self._finish(run, iteration, "completed")
            if await self._should_stop(iteration):
                logger.info(f"Stop condition met for run '{run.context.run_id}'.")
                return await self._finish(run, iteration, "completed")
            if run.context.abort_signal.is_set():
                return await self._finish(run, iteration, "aborted")
            if run.step_count >= self.config.max_steps:
                logger.warning(f"Max steps ({self.config.max_steps}) reached. Stopping execution.")
                return await self._finish(run, iteration, "max-steps")

    async def _execute_model(self, run: _Run, iteration: IterationData) -> IterationData:
        store = run.store
        step = run.step_count
        baseline = len(iteration.messages.non_user)

        prompt = store.all_model()
        if iteration.processor_retry_feedback:
            prompt.append(SystemMessage(content=iteration.processor_retry_feedback))

        self._emit(run, "step-start", {"step": step})
        response = await self.model.generate(
            ModelRequest(
                messages=prompt,
                tools=self.registry,
                response_messages=list(iteration.messages.non_user),
                step=step,
            )
        )
        run.step_count += 1

        added = store.add(response.response_messages[baseline:], ConversationStore.RESPONSE)
        assistant = store.latest_assistant(added)
        if assistant is not None:
            run.context.assistant_message_id = assistant.id

        tool_calls = list(response.tool_calls)
        reason = response.finish_reason or ("tool-calls" if tool_calls else "stop")
        is_continued = bool(tool_calls)
        text = response.text
        retry_count = iteration.processor_retry_count
        feedback = None

        rejection = await self._check_output(response)
        if rejection is not None:
            max_retries = self.config.max_processor_retries
            can_retry = max_retries is not None and retry_count < max_retries
            if rejection.retry and not can_retry:
                logger.warning(
                    f"Output guard requested a retry but max_processor_retries ({max_retries}) "
                    f"does not allow it. Current count: {retry_count}. Treating as abort."
                )
            self._emit(
                run,
                "tripwire",
                {"reason": rejection.reason, "retry": rejection.retry, "metadata": rejection.metadata},
            )
            tool_calls, text = [], ""
            if rejection.retry and can_retry:
                store.remove_by_ids([message.id for message in added])
                reason, is_continued = "retry", True
                retry_count += 1
                feedback = FEEDBACK_TEMPLATE.format(reason=rejection.reason)
            else:
                reason, is_continued = "tripwire", False

        run.stream.record_step(text, reason, response.usage)
        self._emit(
            run,
            "step-finish",
            {
                "step": step,
                "finish_reason": reason,
                "text": text,
                "tool_calls": [call.model_dump(mode="json") for call in tool_calls],
                "usage": dict(response.usage),
            },
        )
        return IterationData(
            messages=IterationMessages.from_store(store),
            output=ModelOutput(
                tool_calls=tool_calls,
                text=text,
                finish_reason=reason,
                usage=dict(response.usage),
                steps=run.step_count,
            ),
            step_result=StepResult(reason=reason, is_continued=is_continued),
            processor_retry_count=retry_count,
            processor_retry_feedback=feedback,
        )

    async def _check_output(self, response: ModelResponse) -> Optional[OutputRejected]:
        if self.output_guard is None:
            return None
        try:
            verdict = self.output_guard(response)
            if inspect.isawaitable(verdict):
                await verdict
        except OutputRejected as rejection:
            logger.info(f"Output guard rejected the model response: {rejection.reason}")
            return rejection
        return None

    async def _should_stop(self, iteration: IterationData) -> bool:
        if self.stop_when is None:
            return False
        verdict = self.stop_when(iteration)
        if inspect.isawaitable(verdict):
            verdict = await verdict
        return bool(verdict)

    async def _park(self, run: _Run, iteration: IterationData, dispatched: DispatchResult) -> RunResult:
        context = run.context
        snapshot = RunSnapshot(
            run_id=context.run_id,
            thread_id=context.thread_id,
            resource_id=context.resource_id,
            messages=run.store.dump(),
            iteration=iteration.to_dict(),
            completed_outcomes={o.tool_call_id: outcome_to_dict(o) for o in dispatched.outcomes},
            parked_calls=[
                ParkedCall(
                    request=s.request.model_dump(mode="json"),
                    kind=s.kind,
                    resume_label=s.resume_label,
                    payload=s.payload,
                    resume_schema=s.resume_schema,
                )
                for s in dispatched.suspensions
            ],
            step_count=run.step_count,
            output_state=run.stream.serialize(),
            assistant_message_id=context.assistant_message_id,
            thread_exists=context.thread_exists,
            request_context=dict(context.request_context),
        )
        try:
            await self.snapshots.save(snapshot)
        except Exception as e:
            logger.error(f"Could not save snapshot for run '{context.run_id}'; withdrawing its suspension records.")
            for suspension in dispatched.suspensions:
                await run.metadata.remove(suspension.tool_name, suspension.kind)
            if isinstance(e, PersistenceError):
                raise
            raise PersistenceError(f"Could not save snapshot for run '{context.run_id}': {e}") from e
        logger.info(
            f"Run '{context.run_id}' suspended on {len(dispatched.suspensions)} tool call(s): "
            f"{', '.join(s.resume_label for s in dispatched.suspensions)}"
        )
        return RunResult(
            run_id=context.run_id,
            status="suspended",
            text=run.stream.text,
            finish_reason=iteration.step_result.reason,
            steps=run.step_count,
            messages=run.store.all_model(),
            tool_results=list(run.tool_results),
            suspensions=list(dispatched.suspensions),
            usage=dict(run.stream.usage),
        )

    async def _finish(self, run: _Run, iteration: IterationData, status: RunStatus) -> RunResult:
        context = run.context
        await run.metadata.flush()
        await self.snapshots.delete(context.run_id)
        result = RunResult(
            run_id=context.run_id,
            status=status,
            text=run.stream.text,
            finish_reason=iteration.step_result.reason,
            steps=run.step_count,
            messages=run.store.all_model(),
            tool_results=list(run.tool_results),
            usage=dict(run.stream.usage),
        )
        self._emit(
            run,
            "finish",
            {"status": status, "finish_reason": result.finish_reason, "steps": result.steps, "text": result.text},
        )
        logger.info(f"Run '{context.run_id}' finished with status '{status}' after {run.step_count} step(s).")
        return result

    def _emit(self, run: _Run, event_type: str, payload: Dict[str, Any]) -> None:
        if self.events is not None:
            self.events.enqueue(EngineEvent(type=event_type, run_id=run.context.run_id, payload=payload))

    @staticmethod
    def _normalize_input(messages: MessageInput) -> List[Union[BaseMessage, StoredMessage]]:
        if isinstance(messages, (str, BaseMessage, StoredMessage)):
            messages = [messages]
        return [UserMessage(content=m) if isinstance(m, str) else m for m in messages]
