"""Events emitted while a run executes."""

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

EventType = Literal[
    "step-start",
    "step-finish",
    "tool-call-approval",
    "tool-call-suspended",
    "tool-result",
    "tool-error",
    "tool-output",
    "tripwire",
    "finish",
]


class EngineEvent(BaseModel):
    """A single event on the run's event stream.

    Attributes:
        type: Kind of event.
        run_id: Run that produced the event.
        payload: Event data. Tool events carry ``tool_call_id`` and ``tool_name``.
        created_at: Emission time (UTC).
    """

    type: EventType
    run_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
