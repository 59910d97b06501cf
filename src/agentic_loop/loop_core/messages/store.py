"""In-process conversation store shared by the orchestrator, tool call step and metadata manager."""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from .conversion import from_model_message, to_model_messages
from .models import BaseMessage, MessageContent, StoredMessage
from ..logger import get_logger

logger = get_logger(__name__)

MessageLike = Union[StoredMessage, BaseMessage]


class ConversationStore:
    """
    Ordered list of stored messages tagged by source.

    Sources are opaque strings; the engine uses ``input`` (the caller's messages
    for this run), ``memory`` (recalled history), ``system`` and ``response``
    (everything produced while the run executes). Every change marks the message
    as unsaved so the durable memory can flush only what changed.
    """

    INPUT = "input"
    MEMORY = "memory"
    SYSTEM = "system"
    RESPONSE = "response"

    def __init__(self, thread_id: Optional[str] = None, resource_id: Optional[str] = None) -> None:
        """Initialize an empty store.

        Args:
            thread_id: Thread the messages belong to.
            resource_id: Resource (user, tenant, ...) owning the thread.
        """
        self.thread_id = thread_id
        self.resource_id = resource_id
        self._messages: List[StoredMessage] = []
        self._sources: Dict[str, str] = {}
        self._unsaved: Dict[str, None] = {}

    def __len__(self) -> int:
        return len(self._messages)

    def add(self, messages: Union[MessageLike, Iterable[MessageLike]], source: str) -> List[StoredMessage]:
        """Append messages (or replace messages with the same id).

        Args:
            messages: One message or several, stored or model-shaped.
            source: Source tag for the added messages.

        Returns:
            The stored messages as they were added.
        """
        if isinstance(messages, (StoredMessage, BaseMessage)):
            messages = [messages]

        added: List[StoredMessage] = []
        for message in messages:
            stored = self._to_stored(message)
            index = self._index_of(stored.id)
            if index is None:
                self._messages.append(stored)
            else:
                self._messages[index] = stored
            self._sources[stored.id] = source
            self._unsaved[stored.id] = None
            added.append(stored)
        return added

    def add_system(self, text: str) -> StoredMessage:
        """Append a system message built from text."""
        return self.add(StoredMessage.from_text("system", text), self.SYSTEM)[0]

    def get(self, message_id: str) -> Optional[StoredMessage]:
        """Return the message with the given id, if any."""
        index = self._index_of(message_id)
        return None if index is None else self._messages[index]

    def source_of(self, message_id: str) -> Optional[str]:
        """Return the source tag of a message."""
        return self._sources.get(message_id)

    def replace_content(self, message_id: str, content: MessageContent) -> StoredMessage:
        """Swap the content of a message for a new object and mark it unsaved.

        Args:
            message_id: Id of the message to update.
            content: The new content. It is stored as given; callers build a fresh object.

        Returns:
            The updated message.

        Raises:
            KeyError: If no message has this id.
        """
        index = self._index_of(message_id)
        if index is None:
            raise KeyError(message_id)
        updated = self._messages[index].model_copy(update={"content": content})
        self._messages[index] = updated
        self._unsaved[message_id] = None
        return updated

    def remove_by_ids(self, message_ids: Sequence[str]) -> None:
        """Drop messages from the store."""
        ids = set(message_ids)
        self._messages = [m for m in self._messages if m.id not in ids]
        for message_id in ids:
            self._sources.pop(message_id, None)
            self._unsaved.pop(message_id, None)

    def drain_unsaved(self) -> List[StoredMessage]:
        """Return messages changed since the last drain, in conversation order, and clear the set."""
        pending = [m for m in self._messages if m.id in self._unsaved]
        self._unsaved.clear()
        return pending

    def latest_assistant(self, messages: Optional[Sequence[StoredMessage]] = None) -> Optional[StoredMessage]:
        """Return the most recent assistant message (linear scan from the end)."""
        for message in reversed(list(self._messages if messages is None else messages)):
            if message.role == "assistant":
                return message
        return None

    # Stored-shape views

    def all_db(self) -> List[StoredMessage]:
        return list(self._messages)

    def input_db(self) -> List[StoredMessage]:
        return self._by_source(self.INPUT)

    def memory_db(self) -> List[StoredMessage]:
        return self._by_source(self.MEMORY)

    def response_db(self) -> List[StoredMessage]:
        return self._by_source(self.RESPONSE)

    # Model-shape views

    def all_model(self) -> List[BaseMessage]:
        return to_model_messages(self._messages)

    def input_model(self) -> List[BaseMessage]:
        return to_model_messages(self.input_db())

    def response_model(self) -> List[BaseMessage]:
        return to_model_messages(self.response_db())

    def dump(self) -> List[Dict[str, Any]]:
        """Serialize messages together with their source tags."""
        return [{"source": self._sources[m.id], "message": m.model_dump(mode="json")} for m in self._messages]

    @classmethod
    def restore(
        cls, entries: Sequence[Dict[str, Any]], thread_id: Optional[str] = None, resource_id: Optional[str] = None
    ) -> "ConversationStore":
        """Rebuild a store from ``dump()`` output. Restored messages start out saved."""
        store = cls(thread_id=thread_id, resource_id=resource_id)
        for entry in entries:
            store.add(StoredMessage.model_validate(entry["message"]), entry["source"])
        store.drain_unsaved()
        logger.debug("Restored conversation store with %d messages.", len(store))
        return store

    def _by_source(self, source: str) -> List[StoredMessage]:
        return [m for m in self._messages if self._sources.get(m.id) == source]

    def _index_of(self, message_id: str) -> Optional[int]:
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                return index
        return None

    def _to_stored(self, message: MessageLike) -> StoredMessage:
        if isinstance(message, StoredMessage):
            updates = {}
            if message.thread_id is None and self.thread_id is not None:
                updates["thread_id"] = self.thread_id
            if message.resource_id is None and self.resource_id is not None:
                updates["resource_id"] = self.resource_id
            return message.model_copy(update=updates) if updates else message
        return from_model_message(message, thread_id=self.thread_id, resource_id=self.resource_id)
