"""Durable conversation memory and run snapshots."""

from .memory import ConversationMemory, InMemoryConversationMemory, ThreadInfo
from .snapshot import RunSnapshot, ParkedCall, SnapshotStore, InMemorySnapshotStore, JsonFileSnapshotStore

__all__ = [
    "ConversationMemory",
    "InMemoryConversationMemory",
    "ThreadInfo",
    "RunSnapshot",
    "ParkedCall",
    "SnapshotStore",
    "InMemorySnapshotStore",
    "JsonFileSnapshotStore",
]
