"""Bookkeeping of suspension and approval records on assistant messages."""

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from ..messages import ConversationStore, MessagePart, StoredMessage
from ..messages.models import SUSPENSION_DATA_PARTS
from ..persistence import ConversationMemory
from ..tools.models import SuspensionRecord
from ..tools.models.tool_call import SuspensionKind
from ..logger import get_logger

if TYPE_CHECKING:
    from ..tools.execution.context import RunContext

logger = get_logger(__name__)

METADATA_KEYS: Dict[str, str] = {
    "approval": "pendingToolApprovals",
    "suspension": "suspendedTools",
}


class SuspensionMetadataManager:
    """
    Writes, removes and looks up suspension records.

    Records live in the metadata of an assistant message, in a map keyed by
    tool name (``pendingToolApprovals`` or ``suspendedTools``). Messages written
    by older producers carry the same data as inline parts typed
    ``data-tool-call-suspended`` / ``data-tool-call-approval``; lookups and
    removals understand both encodings. All writes replace the message content
    through the conversation store; no metadata dict is changed in place.
    """

    def __init__(
        self,
        store: ConversationStore,
        run_context: "RunContext",
        memory: Optional[ConversationMemory] = None,
    ) -> None:
        self.store = store
        self.run_context = run_context
        self.memory = memory

    def write(self, tool_name: str, record: SuspensionRecord, message_id: Optional[str] = None) -> Optional[str]:
        """Store ``record`` for ``tool_name`` on the target assistant message.

        The target is ``message_id`` when given, else the assistant message of
        the current turn from the run context, else the latest assistant message
        among the response messages. An existing record of the same kind for
        the same tool name is overwritten.

        Args:
            tool_name: Key of the record.
            record: The record to store.
            message_id: Explicit target message.

        Returns:
            The id of the message that received the record, or ``None`` when there
            is no assistant message to annotate.
        """
        target = self._target_message(message_id)
        if target is None:
            logger.warning("No assistant message to attach the %s record for '%s' to.", record.type, tool_name)
            return None

        key = METADATA_KEYS[record.type]
        metadata: Dict[str, Any] = dict(target.content.metadata or {})
        entries = dict(metadata.get(key) or {})
        entries[tool_name] = record.to_metadata()
        metadata[key] = entries

        self.store.replace_content(target.id, target.content.model_copy(update={"metadata": metadata}))
        logger.debug("Wrote %s record for '%s' on message %s.", record.type, tool_name, target.id)
        return target.id

    async def remove(self, tool_name: str, kind: SuspensionKind) -> bool:
        """Remove the newest record of ``kind`` for ``tool_name`` and flush.

        Map entries are deleted (the map is dropped once empty); inline parts
        are marked ``resumed``.

        Returns:
            Whether a record was found.
        """
        key = METADATA_KEYS[kind]
        for message in reversed(self.store.all_db()):
            metadata = message.content.metadata or {}
            entries = metadata.get(key)
            if isinstance(entries, dict) and tool_name in entries:
                remaining = {name: entry for name, entry in entries.items() if name != tool_name}
                new_metadata = {k: v for k, v in metadata.items() if k != key}
                if remaining:
                    new_metadata[key] = remaining
                content = message.content.model_copy(update={"metadata": new_metadata or None})
                break

            parts, found = self._mark_parts_resumed(message.content.parts, tool_name)
            if found:
                content = message.content.model_copy(update={"parts": parts})
                break
        else:
            logger.debug("No %s record for '%s' to remove.", kind, tool_name)
            return False

        self.store.replace_content(message.id, content)
        logger.debug("Removed %s record for '%s' from message %s.", kind, tool_name, message.id)
        await self.flush()
        return True

    def find_run_id(self, tool_name: str) -> Optional[str]:
        """Return the run id stored with the newest live record for ``tool_name``."""
        for message in reversed(self.store.all_db()):
            if message.role != "assistant":
                continue
            metadata = message.content.metadata or {}
            for key in (METADATA_KEYS["suspension"], METADATA_KEYS["approval"]):
                entries = metadata.get(key)
                if isinstance(entries, dict) and tool_name in entries:
                    return entries[tool_name].get("runId")
            for part in message.content.parts:
                if self._is_live_part(part, tool_name):
                    return (part.data or {}).get("runId")
        return None

    def records(self, message: StoredMessage) -> List[SuspensionRecord]:
        """All live records on a message, from either encoding."""
        found: List[SuspensionRecord] = []
        metadata = message.content.metadata or {}
        for key in METADATA_KEYS.values():
            for entry in (metadata.get(key) or {}).values():
                found.append(SuspensionRecord.model_validate(entry))
        for part in message.content.parts:
            if part.type in SUSPENSION_DATA_PARTS and part.data and not part.data.get("resumed"):
                found.append(SuspensionRecord.model_validate(part.data))
        return found

    async def flush(self) -> bool:
        """Persist unsaved messages, creating the thread first when needed.

        Failures are logged and swallowed.

        Returns:
            Whether the flush went through.
        """
        ctx = self.run_context
        if self.memory is None or not ctx.thread_id:
            return False
        try:
            if not ctx.thread_exists and ctx.resource_id:
                thread = await self.memory.get_thread_by_id(ctx.thread_id)
                if thread is None:
                    await self.memory.create_thread(ctx.thread_id, ctx.resource_id, ctx.memory_config)
                ctx.thread_exists = True
            await self.memory.flush_messages(self.store, ctx.thread_id, ctx.memory_config)
        except Exception:
            logger.error("Error flushing messages for thread '%s'.", ctx.thread_id, exc_info=True)
            return False
        return True

    def _target_message(self, message_id: Optional[str]) -> Optional[StoredMessage]:
        for candidate_id in (message_id, self.run_context.assistant_message_id):
            if candidate_id:
                message = self.store.get(candidate_id)
                if message is not None and message.role == "assistant":
                    return message
        return self.store.latest_assistant(self.store.response_db())

    @staticmethod
    def _is_live_part(part: MessagePart, tool_name: str) -> bool:
        data = part.data or {}
        return part.type in SUSPENSION_DATA_PARTS and data.get("toolName") == tool_name and not data.get("resumed")

    @classmethod
    def _mark_parts_resumed(cls, parts: List[MessagePart], tool_name: str) -> Tuple[List[MessagePart], bool]:
        found = False
        updated: List[MessagePart] = []
        for part in parts:
            if cls._is_live_part(part, tool_name):
                part = part.model_copy(update={"data": {**(part.data or {}), "resumed": True}})
                found = True
            updated.append(part)
        return updated, found

