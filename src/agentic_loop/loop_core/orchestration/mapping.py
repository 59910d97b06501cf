"""Maps tool call outcomes back into the conversation and decides how the loop goes on."""

import dataclasses
import inspect
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .models import IterationData, IterationMessages, StepResult
from ..events import EngineEvent, EventSink
from ..messages import ConversationStore, MessageContent, MessagePart, StoredMessage
from ..messages.conversion import MODEL_OUTPUT_NAMESPACE
from ..messages.models import TOOL_RESULT_PART
from ..tools.models import ToolCallOutcome
from ..tools.registry import ToolRegistry
from ..logger import get_logger

logger = get_logger(__name__)


class ToolResultMapper:
    """
    Turns a batch of outcomes into ``tool-result`` / ``tool-error`` events and
    tool-result messages on the conversation store.

    Results of client-executed tools and of provider-executed tools are kept
    in separate messages; the latter are flagged ``provider_executed``.
    """

    def __init__(
        self,
        store: ConversationStore,
        registry: Optional[ToolRegistry] = None,
        events: Optional[EventSink] = None,
        run_id: Optional[str] = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.events = events
        self.run_id = run_id

    async def map(self, iteration: IterationData, outcomes: Sequence[ToolCallOutcome]) -> Tuple[IterationData, bool]:
        """Record ``outcomes`` and derive the next iteration.

        When every call has a result, the step result is left as the model
        turn set it. When errors occurred and no client-side call is still
        pending, the loop continues so the model can correct itself. Otherwise
        (a pending client-side call) the run stops here.

        Args:
            iteration: The iteration the outcomes belong to.
            outcomes: Outcomes in request order.

        Returns:
            The new iteration and whether the run has to stop after this turn.
        """
        errors = [outcome for outcome in outcomes if outcome.is_error]
        successes = [outcome for outcome in outcomes if outcome.has_result]
        has_pending = any(outcome.status == "pending" and not outcome.request.provider_executed for outcome in outcomes)

        for outcome in errors:
            self._emit(
                "tool-error",
                {
                    "tool_call_id": outcome.tool_call_id,
                    "tool_name": outcome.tool_name,
                    "args": outcome.args,
                    "error": str(outcome.error),
                    "provider_metadata": outcome.request.provider_metadata,
                },
            )
        if errors:
            self.store.add(self._error_message(errors), ConversationStore.RESPONSE)

        for outcome in successes:
            self._emit(
                "tool-result",
                {
                    "tool_call_id": outcome.tool_call_id,
                    "tool_name": outcome.tool_name,
                    "args": outcome.args,
                    "result": outcome.result,
                    "provider_metadata": outcome.request.provider_metadata,
                    "provider_executed": outcome.request.provider_executed,
                },
            )
        await self._add_result_messages(successes)

        bail = False
        step_result = iteration.step_result
        if errors and not has_pending:
            logger.info("%d tool call(s) failed; continuing so the model can correct itself.", len(errors))
            step_result = StepResult(reason="tool-calls", is_continued=True)
        elif has_pending:
            logger.info("Client-side tool call pending; stopping the run.")
            if step_result.reason != "retry":
                step_result = dataclasses.replace(step_result, is_continued=False)
            bail = True

        updated = dataclasses.replace(
            iteration,
            messages=IterationMessages.from_store(self.store),
            step_result=step_result,
        )
        return updated, bail

    async def _add_result_messages(self, successes: Sequence[ToolCallOutcome]) -> None:
        client_results = [outcome for outcome in successes if not outcome.request.provider_executed]
        provider_results = [outcome for outcome in successes if outcome.request.provider_executed]

        if client_results:
            parts = [
                MessagePart(
                    type=TOOL_RESULT_PART,
                    tool_call_id=outcome.tool_call_id,
                    tool_name=outcome.tool_name,
                    args=outcome.args,
                    result=outcome.result,
                    provider_metadata=await self._provider_metadata(outcome),
                )
                for outcome in client_results
            ]
            self.store.add(StoredMessage(role="tool", content=MessageContent(parts=parts)), ConversationStore.RESPONSE)

        if provider_results:
            parts = [
                MessagePart(
                    type=TOOL_RESULT_PART,
                    tool_call_id=outcome.tool_call_id,
                    tool_name=outcome.tool_name,
                    args=outcome.args,
                    result=outcome.result,
                    provider_metadata=outcome.request.provider_metadata,
                    provider_executed=True,
                )
                for outcome in provider_results
            ]
            self.store.add(StoredMessage(role="tool", content=MessageContent(parts=parts)), ConversationStore.RESPONSE)

    async def _provider_metadata(self, outcome: ToolCallOutcome) -> Optional[Dict[str, Any]]:
        """Provider metadata of a result, with the tool's model output under our namespace."""
        metadata = dict(outcome.request.provider_metadata or {})
        tool = self.registry.resolve(outcome.tool_name) if self.registry else None
        if tool is not None and tool.to_model_output is not None and outcome.result is not None:
            try:
                model_output = tool.to_model_output(outcome.result)
                if inspect.isawaitable(model_output):
                    model_output = await model_output
            except Exception:
                logger.error("Error calling to_model_output for tool '%s'.", tool.name, exc_info=True)
                model_output = None
            if model_output is not None:
                namespace = dict(metadata.get(MODEL_OUTPUT_NAMESPACE) or {})
                namespace["model_output"] = model_output
                metadata[MODEL_OUTPUT_NAMESPACE] = namespace
        return metadata or None

    @staticmethod
    def _error_message(errors: List[ToolCallOutcome]) -> StoredMessage:
        parts = [
            MessagePart(
                type=TOOL_RESULT_PART,
                tool_call_id=outcome.tool_call_id,
                tool_name=outcome.tool_name,
                args=outcome.args,
                result=str(outcome.error),
                is_error=True,
                provider_metadata=outcome.request.provider_metadata,
            )
            for outcome in errors
        ]
        return StoredMessage(role="tool", content=MessageContent(parts=parts))

    def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self.events is not None:
            self.events.enqueue(EngineEvent(type=event_type, run_id=self.run_id, payload=payload))
