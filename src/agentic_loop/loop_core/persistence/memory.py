"""Durable conversation memory: protocol and in-memory implementation."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from ..messages import ConversationStore, StoredMessage
from ..logger import get_logger

logger = get_logger(__name__)


class ThreadInfo(BaseModel):
    """A conversation thread known to the memory."""

    id: str
    resource_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@runtime_checkable
class ConversationMemory(Protocol):
    """Durable store for threads and their messages."""

    async def flush_messages(
        self, store: ConversationStore, thread_id: str, memory_config: Optional[Dict[str, Any]] = None
    ) -> None:
        """Persist every message the store marks as unsaved."""
        ...

    async def get_thread_by_id(self, thread_id: str) -> Optional[ThreadInfo]: ...

    async def create_thread(
        self, thread_id: str, resource_id: Optional[str], memory_config: Optional[Dict[str, Any]] = None
    ) -> ThreadInfo: ...


class InMemoryConversationMemory:
    """Keeps threads and messages in process memory. Messages are upserted by id."""

    def __init__(self) -> None:
        self.threads: Dict[str, ThreadInfo] = {}
        self._messages: Dict[str, Dict[str, StoredMessage]] = {}

    async def flush_messages(
        self, store: ConversationStore, thread_id: str, memory_config: Optional[Dict[str, Any]] = None
    ) -> None:
        pending = store.drain_unsaved()
        if not pending:
            return
        bucket = self._messages.setdefault(thread_id, {})
        for message in pending:
            bucket[message.id] = message
        logger.debug("Flushed %d message(s) to thread '%s'.", len(pending), thread_id)

    async def get_thread_by_id(self, thread_id: str) -> Optional[ThreadInfo]:
        return self.threads.get(thread_id)

    async def create_thread(
        self, thread_id: str, resource_id: Optional[str], memory_config: Optional[Dict[str, Any]] = None
    ) -> ThreadInfo:
        thread = self.threads.get(thread_id)
        if thread is None:
            thread = ThreadInfo(id=thread_id, resource_id=resource_id)
            self.threads[thread_id] = thread
            logger.info(f"Created thread '{thread_id}'.")
        return thread

    def get_messages(self, thread_id: str) -> List[StoredMessage]:
        """Return the persisted messages of a thread in insertion order."""
        return list(self._messages.get(thread_id, {}).values())
