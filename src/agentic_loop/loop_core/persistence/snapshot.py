"""Snapshots of parked runs and the stores that keep them."""

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union, runtime_checkable

from pydantic import BaseModel, Field, ValidationError, field_serializer
from pydantic_core import PydanticSerializationError, to_jsonable_python

from ..exceptions import PersistenceError
from ..logger import get_logger

logger = get_logger(__name__)


class ParkedCall(BaseModel):
    """A suspended tool call as stored in a snapshot."""

    request: Dict[str, Any]
    kind: str
    resume_label: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    resume_schema: Optional[str] = None


class RunSnapshot(BaseModel):
    """Everything needed to continue a parked run, possibly in another process.

    Attributes:
        run_id: The parked run.
        thread_id: Thread the run writes to.
        resource_id: Owner of the thread.
        messages: ``ConversationStore.dump()`` output.
        iteration: The serialized iteration that was being dispatched.
        completed_outcomes: Outcomes of the batch that already finished, by tool call id.
        parked_calls: The suspended calls, in request order.
        step_count: Model turns taken so far.
        output_state: Stream/output state captured when parking.
        assistant_message_id: Assistant message that carries the suspension records.
        thread_exists: Whether the thread was already created in durable memory.
        request_context: The caller's request context. Values are kept as given;
            JSON output drops the ones that cannot be serialized.
    """

    run_id: str
    thread_id: Optional[str] = None
    resource_id: Optional[str] = None
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    iteration: Dict[str, Any] = Field(default_factory=dict)
    completed_outcomes: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    parked_calls: List[ParkedCall] = Field(default_factory=list)
    step_count: int = 0
    output_state: Dict[str, Any] = Field(default_factory=dict)
    assistant_message_id: Optional[str] = None
    thread_exists: bool = False
    request_context: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("request_context", when_used="json")
    def _serialize_request_context(self, value: Dict[str, Any]) -> Dict[str, Any]:
        kept: Dict[str, Any] = {}
        for key, item in value.items():
            try:
                kept[key] = to_jsonable_python(item)
            except PydanticSerializationError:
                logger.warning(
                    "Request context value '%s' of run '%s' is not JSON serializable; pass it again on resume.",
                    key,
                    self.run_id,
                )
        return kept

    @property
    def suspended_labels(self) -> List[str]:
        return [call.resume_label for call in self.parked_calls]


@runtime_checkable
class SnapshotStore(Protocol):
    """Keeps snapshots of parked runs keyed by run id."""

    async def save(self, snapshot: RunSnapshot) -> None: ...

    async def load(self, run_id: str) -> Optional[RunSnapshot]: ...

    async def delete(self, run_id: str) -> None: ...


class InMemorySnapshotStore:
    """Snapshot store for a single process.

    Snapshots are stored as JSON-compatible dicts, except the request context,
    whose values are kept as the very objects the caller passed in.
    """

    def __init__(self) -> None:
        self._snapshots: Dict[str, Tuple[Dict[str, Any], Dict[str, Any]]] = {}

    async def save(self, snapshot: RunSnapshot) -> None:
        data = snapshot.model_dump(mode="json", exclude={"request_context"})
        self._snapshots[snapshot.run_id] = (data, dict(snapshot.request_context))

    async def load(self, run_id: str) -> Optional[RunSnapshot]:
        entry = self._snapshots.get(run_id)
        if entry is None:
            return None
        data, request_context = entry
        return RunSnapshot.model_validate({**data, "request_context": dict(request_context)})

    async def delete(self, run_id: str) -> None:
        self._snapshots.pop(run_id, None)

    def __contains__(self, run_id: object) -> bool:
        return run_id in self._snapshots


class JsonFileSnapshotStore:
    """Writes one ``<run_id>.json`` file per parked run into a directory."""

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)

    def _path(self, run_id: str) -> Path:
        return self.directory / f"{run_id}.json"

    async def save(self, snapshot: RunSnapshot) -> None:
        await asyncio.to_thread(self._write, snapshot)

    async def load(self, run_id: str) -> Optional[RunSnapshot]:
        return await asyncio.to_thread(self._read, run_id)

    async def delete(self, run_id: str) -> None:
        await asyncio.to_thread(self._path(run_id).unlink, missing_ok=True)

    def _write(self, snapshot: RunSnapshot) -> None:
        path = self._path(snapshot.run_id)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(snapshot.model_dump_json(indent=2), encoding="utf-8")
            tmp_path.replace(path)
        except OSError as e:
            raise PersistenceError(f"Could not write snapshot for run '{snapshot.run_id}': {e}") from e
        logger.debug("Wrote snapshot %s", path)

    def _read(self, run_id: str) -> Optional[RunSnapshot]:
        path = self._path(run_id)
        if not path.exists():
            return None
        try:
            return RunSnapshot.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise PersistenceError(f"Could not read snapshot for run '{run_id}': {e}") from e
