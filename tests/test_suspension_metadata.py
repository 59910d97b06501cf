from typing import Any, Dict, Optional

import pytest

from agentic_loop.loop_core import (
    AssistantMessage,
    ConversationStore,
    RunContext,
    StoredMessage,
    SuspensionMetadataManager,
    SuspensionRecord,
)
from agentic_loop.loop_core.messages import MessageContent, MessagePart
from agentic_loop.loop_core.persistence import InMemoryConversationMemory, ThreadInfo
from conftest import metadata_of


def approval_record(tool_name: str = "search", run_id: str = "run-1") -> SuspensionRecord:
    return SuspensionRecord(tool_call_id="c1", tool_name=tool_name, args={"q": "x"}, type="approval", run_id=run_id)


def suspension_record(tool_name: str = "wait", run_id: str = "run-1") -> SuspensionRecord:
    return SuspensionRecord(
        tool_call_id="c2", tool_name=tool_name, args={}, type="suspension", run_id=run_id, suspend_payload={"k": 1}
    )


def legacy_message(tool_name: str, run_id: str, resumed: bool = False) -> StoredMessage:
    data = {"toolCallId": "old", "toolName": tool_name, "args": {}, "type": "suspension", "runId": run_id}
    if resumed:
        data["resumed"] = True
    return StoredMessage(
        role="assistant",
        content=MessageContent(parts=[MessagePart(type="data-tool-call-suspended", data=data)]),
    )


def test_write_uses_camel_case_map_keyed_by_tool_name(
    metadata: SuspensionMetadataManager, store: ConversationStore, run_context: RunContext
) -> None:
    message_id = metadata.write("search", approval_record())

    assert message_id == run_context.assistant_message_id
    entry = metadata_of(store, message_id)["pendingToolApprovals"]["search"]
    assert entry == {
        "toolCallId": "c1",
        "toolName": "search",
        "args": {"q": "x"},
        "type": "approval",
        "runId": "run-1",
        "resumeSchema": None,
    }


def test_write_replaces_content_instead_of_mutating(
    metadata: SuspensionMetadataManager, store: ConversationStore, run_context: RunContext
) -> None:
    before = store.get(run_context.assistant_message_id or "")
    assert before is not None

    metadata.write("search", approval_record())

    after = store.get(before.id)
    assert after is not None
    assert before.content.metadata is None
    assert after.content is not before.content


def test_records_of_both_kinds_live_side_by_side(
    metadata: SuspensionMetadataManager, store: ConversationStore, run_context: RunContext
) -> None:
    metadata.write("search", approval_record())
    metadata.write("wait", suspension_record())

    meta = metadata_of(store, run_context.assistant_message_id or "")
    assert list(meta) == ["pendingToolApprovals", "suspendedTools"]
    assert meta["suspendedTools"]["wait"]["suspendPayload"] == {"k": 1}

    message = store.get(run_context.assistant_message_id or "")
    assert message is not None
    assert {record.tool_name for record in metadata.records(message)} == {"search", "wait"}


def test_write_falls_back_to_latest_response_assistant(store: ConversationStore) -> None:
    newer = store.add(AssistantMessage(content="Second turn"), ConversationStore.RESPONSE)[0]
    manager = SuspensionMetadataManager(store, RunContext(run_id="run-1"))

    assert manager.write("search", approval_record()) == newer.id


def test_write_without_assistant_message_is_a_no_op() -> None:
    store = ConversationStore()
    manager = SuspensionMetadataManager(store, RunContext(run_id="run-1"))

    assert manager.write("search", approval_record()) is None


@pytest.mark.asyncio
async def test_remove_drops_entry_and_empty_map(
    metadata: SuspensionMetadataManager, store: ConversationStore, run_context: RunContext
) -> None:
    metadata.write("search", approval_record())
    metadata.write("wait", suspension_record())

    assert await metadata.remove("search", "approval")
    meta = metadata_of(store, run_context.assistant_message_id or "")
    assert "pendingToolApprovals" not in meta
    assert "wait" in meta["suspendedTools"]

    assert await metadata.remove("wait", "suspension")
    assert metadata_of(store, run_context.assistant_message_id or "") == {}


@pytest.mark.asyncio
async def test_remove_unknown_record_returns_false(metadata: SuspensionMetadataManager) -> None:
    assert not await metadata.remove("search", "approval")


@pytest.mark.asyncio
async def test_remove_marks_legacy_parts_resumed(store: ConversationStore) -> None:
    legacy = store.add(legacy_message("wait", "run-old"), ConversationStore.MEMORY)[0]
    manager = SuspensionMetadataManager(store, RunContext(run_id="run-1"))

    assert await manager.remove("wait", "suspension")

    updated = store.get(legacy.id)
    assert updated is not None
    assert updated.content.parts[0].data == {**(legacy.content.parts[0].data or {}), "resumed": True}
    assert manager.records(updated) == []


def test_find_run_id_reads_map_and_legacy_parts(metadata: SuspensionMetadataManager, store: ConversationStore) -> None:
    store.add(legacy_message("agent-old", "run-legacy"), ConversationStore.MEMORY)
    store.add(legacy_message("agent-done", "run-finished", resumed=True), ConversationStore.MEMORY)
    metadata.write("agent-new", suspension_record("agent-new", run_id="run-sub"))

    assert metadata.find_run_id("agent-new") == "run-sub"
    assert metadata.find_run_id("agent-old") == "run-legacy"
    assert metadata.find_run_id("agent-done") is None
    assert metadata.find_run_id("nobody") is None


class TestFlush:
    @pytest.mark.asyncio
    async def test_creates_thread_once_then_flushes(
        self, metadata: SuspensionMetadataManager, memory: InMemoryConversationMemory, run_context: RunContext
    ) -> None:
        assert await metadata.flush()

        assert memory.threads["thread-1"].resource_id == "user-1"
        assert run_context.thread_exists
        assert [m.role for m in memory.get_messages("thread-1")] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_flush_persists_new_records(
        self, metadata: SuspensionMetadataManager, memory: InMemoryConversationMemory, store: ConversationStore
    ) -> None:
        await metadata.flush()
        metadata.write("search", approval_record())
        await metadata.flush()

        assert store.drain_unsaved() == []

        persisted = memory.get_messages("thread-1")
        assert any((m.content.metadata or {}).get("pendingToolApprovals") for m in persisted)

    @pytest.mark.asyncio
    async def test_without_memory_or_thread_nothing_happens(self, store: ConversationStore) -> None:
        no_memory = SuspensionMetadataManager(store, RunContext(run_id="r", thread_id="t"))
        no_thread = SuspensionMetadataManager(store, RunContext(run_id="r"), InMemoryConversationMemory())

        assert not await no_memory.flush()
        assert not await no_thread.flush()

    @pytest.mark.asyncio
    async def test_memory_errors_are_swallowed(self, store: ConversationStore, run_context: RunContext) -> None:
        class BrokenMemory(InMemoryConversationMemory):
            async def flush_messages(
                self, store: ConversationStore, thread_id: str, memory_config: Optional[Dict[str, Any]] = None
            ) -> None:
                raise OSError("disk full")

        manager = SuspensionMetadataManager(store, run_context, BrokenMemory())

        assert not await manager.flush()

    @pytest.mark.asyncio
    async def test_existing_thread_is_not_recreated(self, store: ConversationStore, run_context: RunContext) -> None:
        memory = InMemoryConversationMemory()
        memory.threads["thread-1"] = ThreadInfo(id="thread-1", resource_id="someone-else")
        manager = SuspensionMetadataManager(store, run_context, memory)

        await manager.flush()

        assert memory.threads["thread-1"].resource_id == "someone-else"
