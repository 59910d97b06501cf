from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from agentic_loop.loop_core import (
    AssistantMessage,
    ConversationStore,
    EventBuffer,
    ModelClient,
    ModelRequest,
    ModelResponse,
    RunContext,
    SuspensionMetadataManager,
    ToolCallRequest,
    ToolCallStep,
    ToolRegistry,
    UserMessage,
)
from agentic_loop.loop_core.persistence import InMemoryConversationMemory

CallSpec = Tuple[str, str, Any]


def model_turn(text: str = "", calls: Sequence[CallSpec] = (), finish_reason: Optional[str] = None) -> ModelResponse:
    """Build a model response with text and ``(tool_call_id, tool_name, args)`` calls."""
    requests = [ToolCallRequest(tool_call_id=call_id, tool_name=name, args=args) for call_id, name, args in calls]
    message = AssistantMessage(
        content=text,
        tool_calls=[{"tool_call_id": r.tool_call_id, "tool_name": r.tool_name, "args": r.args} for r in requests]
        or None,
    )
    return ModelResponse(
        message=message,
        tool_calls=requests,
        finish_reason=finish_reason or ("tool-calls" if requests else "stop"),
        usage={"input_tokens": 10, "output_tokens": 5},
    )


class ScriptedModel(ModelClient):
    """Model client that replays prepared responses and records every request."""

    def __init__(self, responses: Sequence[ModelResponse]) -> None:
        super().__init__(max_retries=0, base_retry_delay=0)
        self.responses: List[ModelResponse] = list(responses)
        self.requests: List[ModelRequest] = []

    async def _generate_impl(self, request: ModelRequest) -> ModelResponse:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError("ScriptedModel ran out of responses.")
        return self.responses.pop(0).model_copy()


@pytest.fixture
def registry() -> ToolRegistry:
    return ToolRegistry()


@pytest.fixture
def events() -> EventBuffer:
    return EventBuffer()


@pytest.fixture
def memory() -> InMemoryConversationMemory:
    return InMemoryConversationMemory()


@pytest.fixture
def store() -> ConversationStore:
    """A store holding one user prompt and one assistant turn."""
    store = ConversationStore(thread_id="thread-1", resource_id="user-1")
    store.add(UserMessage(content="Find something"), ConversationStore.INPUT)
    store.add(AssistantMessage(content="Looking it up."), ConversationStore.RESPONSE)
    return store


@pytest.fixture
def run_context(store: ConversationStore) -> RunContext:
    context = RunContext(run_id="run-1", thread_id="thread-1", resource_id="user-1")
    assistant = store.latest_assistant()
    assert assistant is not None
    context.assistant_message_id = assistant.id
    return context


@pytest.fixture
def metadata(
    store: ConversationStore, run_context: RunContext, memory: InMemoryConversationMemory
) -> SuspensionMetadataManager:
    return SuspensionMetadataManager(store, run_context, memory)


@pytest.fixture
def step(
    registry: ToolRegistry,
    store: ConversationStore,
    run_context: RunContext,
    metadata: SuspensionMetadataManager,
    events: EventBuffer,
) -> ToolCallStep:
    return ToolCallStep(
        registry=registry, store=store, run_context=run_context, metadata=metadata, events=events, tool_timeout=1.0
    )


def call(call_id: str, name: str, args: Any = None, **kwargs: Any) -> ToolCallRequest:
    return ToolCallRequest(tool_call_id=call_id, tool_name=name, args={} if args is None else args, **kwargs)


def metadata_of(store: ConversationStore, message_id: str) -> Dict[str, Any]:
    message = store.get(message_id)
    assert message is not None
    return message.content.metadata or {}
