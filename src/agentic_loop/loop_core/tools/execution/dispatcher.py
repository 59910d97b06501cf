"""Runs one turn's batch of tool calls with bounded or forced-sequential concurrency."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .tool_call_step import ToolCallStep
from ..models import ToolCallOutcome, ToolCallRequest, ToolCallSuspension
from ...config import DEFAULT_TOOL_CALL_CONCURRENCY
from ...logger import get_logger

logger = get_logger(__name__)


@dataclass
class DispatchResult:
    """What one dispatch pass produced.

    Attributes:
        outcomes: Finished outcomes in request order. Calls that parked or
            never started in this pass are missing.
        suspensions: Parked calls in request order.
        not_started: Requests a sequential pass did not reach because an
            earlier call parked.
    """

    outcomes: List[ToolCallOutcome] = field(default_factory=list)
    suspensions: List[ToolCallSuspension] = field(default_factory=list)
    not_started: List[ToolCallRequest] = field(default_factory=list)

    @property
    def is_suspended(self) -> bool:
        return bool(self.suspensions)

    def outcomes_by_id(self) -> Dict[str, ToolCallOutcome]:
        return {outcome.tool_call_id: outcome for outcome in self.outcomes}


class ToolCallDispatcher:
    """Fans a batch of tool calls out to the tool call step.

    The batch runs sequentially when approval is forced globally or any
    registered tool may ask for approval or suspend itself; otherwise up to
    ``concurrency`` calls run at once. Results always come back in request
    order.
    """

    def __init__(
        self,
        step: ToolCallStep,
        *,
        concurrency: Optional[int] = DEFAULT_TOOL_CALL_CONCURRENCY,
        require_tool_approval: bool = False,
    ) -> None:
        self.step = step
        self.concurrency = concurrency if concurrency and concurrency > 0 else DEFAULT_TOOL_CALL_CONCURRENCY
        self.require_tool_approval = require_tool_approval

    def is_sequential(self) -> bool:
        """Whether this turn's batch must run one call at a time."""
        if self.require_tool_approval or self.step.run_context.request_context.requires_tool_approval:
            return True
        registry = self.step.registry
        if registry is None:
            return False
        return any(tool.has_suspend_schema or tool.require_approval for tool in registry.tools.values())

    def effective_concurrency(self) -> int:
        return 1 if self.is_sequential() else self.concurrency

    async def dispatch(
        self,
        requests: Sequence[ToolCallRequest],
        *,
        completed: Optional[Mapping[str, ToolCallOutcome]] = None,
        resume_label: Optional[str] = None,
        resume_data: Any = None,
    ) -> DispatchResult:
        """Run the batch.

        Args:
            requests: Tool calls of the turn, in the order the model emitted them.
            completed: Outcomes finished in an earlier pass, by tool call id; reused as-is.
            resume_label: Tool call id that receives ``resume_data``.
            resume_data: Data the parked call is resumed with.

        Returns:
            The outcomes and suspensions of this pass.
        """
        completed = completed or {}
        concurrency = self.effective_concurrency()
        logger.info(f"Dispatching {len(requests)} tool call(s) with concurrency {concurrency}.")

        def data_for(request: ToolCallRequest) -> Any:
            return resume_data if resume_label is not None and request.tool_call_id == resume_label else None

        if concurrency == 1:
            return await self._run_sequential(requests, completed, data_for)

        semaphore = asyncio.Semaphore(concurrency)

        async def run_one(request: ToolCallRequest) -> Any:
            if request.tool_call_id in completed:
                return completed[request.tool_call_id]
            async with semaphore:
                return await self.step.execute(request, data_for(request))

        results = await asyncio.gather(*(run_one(request) for request in requests))
        result = DispatchResult()
        for item in results:
            self._collect(result, item)
        return result

    async def _run_sequential(
        self,
        requests: Sequence[ToolCallRequest],
        completed: Mapping[str, ToolCallOutcome],
        data_for: Callable[[ToolCallRequest], Any],
    ) -> DispatchResult:
        result = DispatchResult()
        for index, request in enumerate(requests):
            if request.tool_call_id in completed:
                result.outcomes.append(completed[request.tool_call_id])
                continue
            item = await self.step.execute(request, data_for(request))
            self._collect(result, item)
            if isinstance(item, ToolCallSuspension):
                result.not_started = list(requests[index + 1 :])
                logger.debug(
                    "Call %s parked; %d call(s) left for a later pass.", request.tool_call_id, len(result.not_started)
                )
                break
        return result

    @staticmethod
    def _collect(result: DispatchResult, item: Any) -> None:
        if isinstance(item, ToolCallSuspension):
            result.suspensions.append(item)
        else:
            result.outcomes.append(item)
