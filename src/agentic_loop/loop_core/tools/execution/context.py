"""Run-scoped and call-scoped context objects handed to tools."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..models import SuspendOptions
from ...messages import BaseMessage

REQUIRE_TOOL_APPROVAL_KEY = "require_tool_approval"


class RequestContext(dict):
    """Caller-supplied values forwarded unchanged to every tool.

    The key ``require_tool_approval`` forces approval for every tool call of the run.
    """

    @property
    def requires_tool_approval(self) -> bool:
        return bool(self.get(REQUIRE_TOOL_APPROVAL_KEY))


@dataclass
class RunContext:
    """Mutable state of one run shared by the loop, the tool call step and the metadata manager.

    Attributes:
        run_id: Id of the run; suspensions are resumed by it.
        thread_id: Thread messages are flushed to. ``None`` disables durable flushing.
        resource_id: Owner of the thread.
        memory_config: Opaque configuration forwarded to the conversation memory.
        thread_exists: Set once the thread is known to exist in durable memory.
        assistant_message_id: Assistant message of the current turn; suspension
            records are written onto it.
        request_context: Values forwarded to tools.
        abort_signal: Set to ask the run and its tools to stop.
    """

    run_id: str
    thread_id: Optional[str] = None
    resource_id: Optional[str] = None
    memory_config: Optional[Dict[str, Any]] = None
    thread_exists: bool = False
    assistant_message_id: Optional[str] = None
    request_context: RequestContext = field(default_factory=RequestContext)
    abort_signal: asyncio.Event = field(default_factory=asyncio.Event)


SuspendFn = Callable[[Any, Optional[SuspendOptions]], Awaitable[None]]
WriteFn = Callable[[Any], Awaitable[None]]


@dataclass
class ToolExecutionContext:
    """What a tool receives as its second ``execute`` argument.

    ``suspend`` and ``write`` are bound by the tool call step for this one call.
    """

    tool_call_id: str
    tool_name: str
    abort_signal: asyncio.Event
    messages: List[BaseMessage]
    request_context: RequestContext
    suspend_fn: SuspendFn
    write_fn: WriteFn
    resume_data: Any = None
    run_id: Optional[str] = None
    thread_id: Optional[str] = None
    resource_id: Optional[str] = None

    async def suspend(self, payload: Any = None, options: Optional[SuspendOptions] = None) -> None:
        """Park this call until it is resumed with resume data.

        Records the suspension and unwinds the tool by raising ``SuspendRequested``.
        Pass ``SuspendOptions(require_tool_approval=True)`` to ask for approval instead.
        """
        await self.suspend_fn(payload, options)

    async def write(self, data: Any) -> None:
        """Emit intermediate output of the tool as a ``tool-output`` event."""
        await self.write_fn(data)

    @property
    def is_aborted(self) -> bool:
        return self.abort_signal.is_set()
