import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List

import pytest

from agentic_loop.loop_core import (
    AgenticLoop,
    AssistantMessage,
    EngineConfig,
    EventBuffer,
    InMemorySnapshotStore,
    JsonFileSnapshotStore,
    ModelResponse,
    OutputRejected,
    PersistenceError,
    ResumeLabelError,
    RunNotFoundError,
    SystemMessage,
    ToolExecutionContext,
    ToolMessage,
    ToolRegistry,
    UserMessage,
)
from agentic_loop.loop_core.persistence import InMemoryConversationMemory
from agentic_loop.loop_core.tools.models import NOT_APPROVED_MESSAGE
from conftest import ScriptedModel, model_turn

QUERY_SCHEMA = {"type": "object", "properties": {"q": {"type": "string"}}}


def search_registry(calls: List[Dict[str, Any]], **capabilities: Any) -> ToolRegistry:
    registry = ToolRegistry()

    async def search(args: Dict[str, Any], context: ToolExecutionContext) -> Any:
        calls.append(dict(args))
        return {"hits": 3}

    registry.register("search", description="Search the index", execute=search, parameters=QUERY_SCHEMA, **capabilities)
    return registry


def tool_messages(messages: List[Any]) -> List[ToolMessage]:
    return [m for m in messages if isinstance(m, ToolMessage)]


@pytest.mark.asyncio
async def test_plain_answer_completes_in_one_step() -> None:
    events = EventBuffer()
    model = ScriptedModel([model_turn("Hello there")])
    loop = AgenticLoop(model, events=events)

    result = await loop.run("Hi")

    assert result.status == "completed"
    assert result.text == "Hello there"
    assert result.finish_reason == "stop"
    assert result.steps == 1
    assert [m.content for m in result.messages] == ["Hi", "Hello there"]
    assert [e.type for e in events] == ["step-start", "step-finish", "finish"]


@pytest.mark.asyncio
async def test_tool_results_are_fed_back_to_the_model() -> None:
    calls: List[Dict[str, Any]] = []
    model = ScriptedModel([model_turn(calls=[("c1", "search", {"q": "x"})]), model_turn("Found 3 hits")])
    loop = AgenticLoop(model, search_registry(calls), system_instruction="Be brief.")

    result = await loop.run("Search x")

    assert result.status == "completed"
    assert result.text == "Found 3 hits"
    assert result.steps == 2
    assert calls == [{"q": "x"}]
    assert [(o.tool_call_id, o.result) for o in result.tool_results] == [("c1", {"hits": 3})]
    assert result.usage == {"input_tokens": 20, "output_tokens": 10}

    first, second = model.requests
    assert isinstance(first.messages[0], SystemMessage)
    assert first.response_messages == []
    [tool_message] = tool_messages(second.messages)
    assert tool_message.tool_call_id == "c1"
    assert json.loads(tool_message.content) == {"result": {"hits": 3}}
    assert len(second.response_messages) == 2


@pytest.mark.asyncio
async def test_response_messages_are_not_duplicated_across_steps() -> None:
    calls: List[Dict[str, Any]] = []
    model = ScriptedModel(
        [
            model_turn("one", calls=[("c1", "search", {"q": "a"})]),
            model_turn("two", calls=[("c2", "search", {"q": "b"})]),
            model_turn("three"),
        ]
    )
    loop = AgenticLoop(model, search_registry(calls))

    result = await loop.run("Go")

    assistants = [m.content for m in result.messages if isinstance(m, AssistantMessage)]
    assert assistants == ["one", "two", "three"]
    assert len(tool_messages(result.messages)) == 2


@pytest.mark.asyncio
async def test_max_steps_stops_the_run() -> None:
    model = ScriptedModel([model_turn(calls=[(f"c{i}", "search", {"q": "x"})]) for i in range(3)])
    loop = AgenticLoop(model, search_registry([]), config=EngineConfig(max_steps=2))

    result = await loop.run("Loop forever")

    assert result.status == "max-steps"
    assert result.steps == 2
    assert len(model.requests) == 2


@pytest.mark.asyncio
async def test_tool_errors_let_the_model_correct_itself() -> None:
    events = EventBuffer()
    model = ScriptedModel([model_turn(calls=[("c1", "serch", {})]), model_turn("Sorry, retrying is not needed")])
    loop = AgenticLoop(model, search_registry([]), events=events)

    result = await loop.run("Search")

    assert result.status == "completed"
    assert result.steps == 2
    [tool_message] = tool_messages(model.requests[1].messages)
    assert tool_message.is_error
    assert "not found" in json.loads(tool_message.content)["error"]
    [error_event] = events.of_type("tool-error")
    assert error_event.payload["tool_name"] == "serch"


@pytest.mark.asyncio
async def test_pending_client_tool_ends_the_run() -> None:
    registry = ToolRegistry()
    registry.register("ask_user", description="Ask the user", parameters=QUERY_SCHEMA)
    model = ScriptedModel([model_turn(calls=[("c1", "ask_user", {"q": "Which one?"})])])
    loop = AgenticLoop(model, registry)

    result = await loop.run("Help me pick")

    assert result.status == "completed"
    assert result.steps == 1
    assert result.tool_results[0].status == "pending"


@pytest.mark.asyncio
async def test_to_model_output_changes_what_the_model_sees() -> None:
    calls: List[Dict[str, Any]] = []
    registry = search_registry(calls, to_model_output=lambda result: f"{result['hits']} hits")
    model = ScriptedModel([model_turn(calls=[("c1", "search", {"q": "x"})]), model_turn("ok")])
    loop = AgenticLoop(model, registry)

    result = await loop.run("Search")

    [tool_message] = tool_messages(model.requests[1].messages)
    assert json.loads(tool_message.content) == {"result": "3 hits"}
    assert result.tool_results[0].result == {"hits": 3}


@pytest.mark.asyncio
async def test_history_comes_before_the_new_input() -> None:
    model = ScriptedModel([model_turn("Still blue")])
    loop = AgenticLoop(model)

    await loop.run(
        "And now?",
        history=[UserMessage(content="Favorite color?"), AssistantMessage(content="Blue")],
    )

    assert [m.content for m in model.requests[0].messages] == ["Favorite color?", "Blue", "And now?"]


@pytest.mark.asyncio
async def test_messages_are_flushed_to_memory() -> None:
    memory = InMemoryConversationMemory()
    model = ScriptedModel([model_turn("Hello")])
    loop = AgenticLoop(model, memory=memory)

    await loop.run("Hi", thread_id="t1", resource_id="u1")

    assert "t1" in memory.threads
    assert [m.text for m in memory.get_messages("t1")] == ["Hi", "Hello"]


class TestApprovalFlow:
    @pytest.mark.asyncio
    async def test_run_parks_on_approval_and_resumes_when_approved(self) -> None:
        calls: List[Dict[str, Any]] = []
        events = EventBuffer()
        snapshots = InMemorySnapshotStore()
        model = ScriptedModel([model_turn(calls=[("c1", "search", {"q": "x"})]), model_turn("Done")])
        loop = AgenticLoop(model, search_registry(calls, require_approval=True), snapshots=snapshots, events=events)

        parked = await loop.run("Search x", run_id="run-a")

        assert parked.status == "suspended"
        assert parked.is_suspended
        assert parked.resume_labels == ["c1"]
        assert parked.suspensions[0].kind == "approval"
        assert "run-a" in snapshots
        assert calls == []
        assert len(events.of_type("tool-call-approval")) == 1

        result = await loop.resume("run-a", {"approved": True})

        assert result.status == "completed"
        assert result.text == "Done"
        assert result.steps == 2
        assert calls == [{"q": "x"}]
        assert "run-a" not in snapshots
        assert result.usage == {"input_tokens": 20, "output_tokens": 10}
        assert len(model.requests) == 2

    @pytest.mark.asyncio
    async def test_declined_call_reports_not_approved_to_the_model(self) -> None:
        calls: List[Dict[str, Any]] = []
        model = ScriptedModel([model_turn(calls=[("c1", "search", {"q": "x"})]), model_turn("Understood")])
        loop = AgenticLoop(model, search_registry(calls, require_approval=True))

        await loop.run("Search x", run_id="run-b")
        result = await loop.resume("run-b", {"approved": False})

        assert result.status == "completed"
        assert calls == []
        [tool_message] = tool_messages(model.requests[1].messages)
        assert json.loads(tool_message.content) == {"result": NOT_APPROVED_MESSAGE}

    @pytest.mark.asyncio
    async def test_global_approval_flag_parks_every_tool(self) -> None:
        model = ScriptedModel([model_turn(calls=[("c1", "search", {"q": "x"})])])
        loop = AgenticLoop(model, search_registry([]), config=EngineConfig(require_tool_approval=True))

        result = await loop.run("Search x")

        assert result.status == "suspended"

    @pytest.mark.asyncio
    async def test_parallel_parks_need_an_explicit_label(self) -> None:
        calls: List[Dict[str, Any]] = []
        registry = search_registry(calls, needs_approval_fn=lambda args: True)
        model = ScriptedModel(
            [model_turn(calls=[("c1", "search", {"q": "a"}), ("c2", "search", {"q": "b"})]), model_turn("Both done")]
        )
        loop = AgenticLoop(model, registry)

        parked = await loop.run("Search twice", run_id="run-c")
        assert parked.resume_labels == ["c1", "c2"]

        with pytest.raises(ResumeLabelError):
            await loop.resume("run-c", {"approved": True})

        halfway = await loop.resume("run-c", {"approved": True}, resume_label="c1")
        assert halfway.status == "suspended"
        assert halfway.resume_labels == ["c2"]
        assert [o.tool_call_id for o in halfway.tool_results] == ["c1"]
        assert calls == [{"q": "a"}]

        result = await loop.resume("run-c", {"approved": True})
        assert result.status == "completed"
        assert [o.tool_call_id for o in result.tool_results] == ["c1", "c2"]
        assert calls == [{"q": "a"}, {"q": "b"}]
        assert [tm.tool_call_id for tm in tool_messages(model.requests[1].messages)] == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_unknown_run_or_label_is_rejected(self) -> None:
        model = ScriptedModel([model_turn(calls=[("c1", "search", {"q": "x"})])])
        loop = AgenticLoop(model, search_registry([], require_approval=True))
        await loop.run("Search", run_id="run-d")

        with pytest.raises(RunNotFoundError):
            await loop.resume("no-such-run", {"approved": True})
        with pytest.raises(ResumeLabelError):
            await loop.resume("run-d", {"approved": True}, resume_label="c9")


@pytest.mark.asyncio
async def test_suspended_tool_resumes_with_payload() -> None:
    registry = ToolRegistry()

    async def ask_human(args: Dict[str, Any], context: ToolExecutionContext) -> Any:
        if context.resume_data is None:
            await context.suspend({"question": args["q"]})
        return {"answer": context.resume_data["answer"]}

    registry.register(
        "ask_human",
        description="Ask a human",
        execute=ask_human,
        parameters=QUERY_SCHEMA,
        suspend_schema={"type": "object", "properties": {"question": {"type": "string"}}},
    )
    model = ScriptedModel([model_turn(calls=[("c1", "ask_human", {"q": "Color?"})]), model_turn("Blue it is")])
    loop = AgenticLoop(model, registry)

    parked = await loop.run("Pick a color", run_id="run-e")
    assert parked.suspensions[0].payload["tool_call_suspended"] == {"question": "Color?"}

    result = await loop.resume("run-e", {"answer": "blue"})

    assert result.text == "Blue it is"
    assert result.tool_results[0].result == {"answer": "blue"}


@pytest.mark.asyncio
async def test_resume_survives_a_process_restart(tmp_path: Path) -> None:
    calls: List[Dict[str, Any]] = []
    first_model = ScriptedModel([model_turn(calls=[("c1", "search", {"q": "x"})])])
    first = AgenticLoop(
        first_model, search_registry(calls, require_approval=True), snapshots=JsonFileSnapshotStore(tmp_path)
    )

    await first.run("Search x", run_id="run-file", thread_id="t1", request_context={"tenant": "acme"})
    assert (tmp_path / "run-file.json").exists()

    second_model = ScriptedModel([model_turn("Done after restart")])
    second = AgenticLoop(
        second_model, search_registry(calls, require_approval=True), snapshots=JsonFileSnapshotStore(tmp_path)
    )
    result = await second.resume("run-file", {"approved": True})

    assert result.status == "completed"
    assert result.text == "Done after restart"
    assert result.steps == 2
    assert calls == [{"q": "x"}]
    assert not (tmp_path / "run-file.json").exists()
    [tool_message] = tool_messages(second_model.requests[0].messages)
    assert tool_message.tool_call_id == "c1"


class TestOutputGuard:
    @staticmethod
    def reject_bad(response: ModelResponse) -> None:
        if response.text == "bad":
            raise OutputRejected("answer was rude", retry=True, metadata={"rule": "tone"})

    @pytest.mark.asyncio
    async def test_retry_sends_feedback_and_drops_rejected_turn(self) -> None:
        events = EventBuffer()
        model = ScriptedModel([model_turn("bad"), model_turn("good")])
        loop = AgenticLoop(
            model, events=events, output_guard=self.reject_bad, config=EngineConfig(max_processor_retries=1)
        )

        result = await loop.run("Answer politely")

        assert result.status == "completed"
        assert result.text == "good"
        assert result.steps == 2
        assert "bad" not in [m.content for m in result.messages]
        feedback = model.requests[1].messages[-1]
        assert isinstance(feedback, SystemMessage)
        assert feedback.content == (
            "[Processor Feedback] Your previous response was not accepted: answer was rude. "
            "Please try again with the feedback in mind."
        )
        [tripwire] = events.of_type("tripwire")
        assert tripwire.payload == {"reason": "answer was rude", "retry": True, "metadata": {"rule": "tone"}}

    @pytest.mark.asyncio
    async def test_rejection_without_retries_aborts(self) -> None:
        model = ScriptedModel([model_turn("bad")])
        loop = AgenticLoop(model, output_guard=self.reject_bad)

        result = await loop.run("Answer politely")

        assert result.status == "aborted"
        assert result.finish_reason == "tripwire"
        assert result.text == ""

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self) -> None:
        model = ScriptedModel([model_turn("bad"), model_turn("bad")])
        loop = AgenticLoop(model, output_guard=self.reject_bad, config=EngineConfig(max_processor_retries=1))

        result = await loop.run("Answer politely")

        assert result.status == "aborted"
        assert result.steps == 2


@pytest.mark.asyncio
async def test_stop_condition_ends_the_run_early() -> None:
    model = ScriptedModel([model_turn(calls=[("c1", "search", {"q": "x"})]), model_turn("unused")])
    loop = AgenticLoop(model, search_registry([]), stop_when=lambda iteration: bool(iteration.output.tool_calls))

    result = await loop.run("Search")

    assert result.status == "completed"
    assert result.steps == 1
    assert len(model.requests) == 1


@pytest.mark.asyncio
async def test_abort_signal_stops_before_the_model_is_called() -> None:
    abort = asyncio.Event()
    abort.set()
    model = ScriptedModel([model_turn("unused")])
    loop = AgenticLoop(model)

    result = await loop.run("Hi", abort_signal=abort)

    assert result.status == "aborted"
    assert result.steps == 0
    assert model.requests == []


@pytest.mark.asyncio
async def test_abort_between_steps() -> None:
    abort = asyncio.Event()
    registry = ToolRegistry()

    async def stop_everything(args: Dict[str, Any], context: ToolExecutionContext) -> str:
        abort.set()
        return "stopping"

    registry.register("stop", description="Stops the run", execute=stop_everything, parameters=QUERY_SCHEMA)
    model = ScriptedModel([model_turn(calls=[("c1", "stop", {})]), model_turn("unused")])
    loop = AgenticLoop(model, registry)

    result = await loop.run("Go", abort_signal=abort)

    assert result.status == "aborted"
    assert result.steps == 1


class Client:
    """Stands in for a live handle a caller passes along, such as an API client."""


def context_registry(seen: List[Any]) -> ToolRegistry:
    registry = ToolRegistry()

    async def search(args: Dict[str, Any], context: ToolExecutionContext) -> Any:
        seen.append(dict(context.request_context))
        return {"hits": 3}

    registry.register(
        "search", description="Search the index", execute=search, parameters=QUERY_SCHEMA, require_approval=True
    )
    return registry


class TestRequestContext:
    @pytest.mark.asyncio
    async def test_live_values_survive_park_and_resume(self) -> None:
        client = Client()
        seen: List[Any] = []
        model = ScriptedModel([model_turn(calls=[("c1", "search", {"q": "x"})]), model_turn("Done")])
        loop = AgenticLoop(model, context_registry(seen))

        parked = await loop.run("Search x", run_id="run-ctx", request_context={"client": client, "tenant": "acme"})
        assert parked.status == "suspended"

        result = await loop.resume("run-ctx", {"approved": True})

        assert result.status == "completed"
        [request_context] = seen
        assert request_context["client"] is client
        assert request_context["tenant"] == "acme"

    @pytest.mark.asyncio
    async def test_json_store_keeps_serializable_values_and_takes_the_rest_on_resume(self, tmp_path: Path) -> None:
        client = Client()
        seen: List[Any] = []
        first = AgenticLoop(
            ScriptedModel([model_turn(calls=[("c1", "search", {"q": "x"})])]),
            context_registry(seen),
            snapshots=JsonFileSnapshotStore(tmp_path),
        )
        await first.run("Search x", run_id="run-json", request_context={"client": client, "tenant": "acme"})

        stored = json.loads((tmp_path / "run-json.json").read_text(encoding="utf-8"))
        assert stored["request_context"] == {"tenant": "acme"}

        second = AgenticLoop(
            ScriptedModel([model_turn("Done")]), context_registry(seen), snapshots=JsonFileSnapshotStore(tmp_path)
        )
        result = await second.resume("run-json", {"approved": True}, request_context={"client": client})

        assert result.status == "completed"
        [request_context] = seen
        assert request_context["client"] is client
        assert request_context["tenant"] == "acme"

    @pytest.mark.asyncio
    async def test_failed_snapshot_withdraws_the_approval_record(self) -> None:
        class BrokenStore(InMemorySnapshotStore):
            async def save(self, snapshot: Any) -> None:
                raise OSError("disk full")

        memory = InMemoryConversationMemory()
        model = ScriptedModel([model_turn(calls=[("c1", "search", {"q": "x"})])])
        loop = AgenticLoop(model, search_registry([], require_approval=True), memory=memory, snapshots=BrokenStore())

        with pytest.raises(PersistenceError, match="disk full"):
            await loop.run("Search x", run_id="run-broken", thread_id="t1", resource_id="u1")

        assistant = [m for m in memory.get_messages("t1") if m.role == "assistant"]
        assert assistant
        assert not any((m.content.metadata or {}).get("pendingToolApprovals") for m in assistant)
