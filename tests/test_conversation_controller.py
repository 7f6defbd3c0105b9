"""End-to-end tests for the approval-gated continuation loop."""

from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from pathlib import Path

import pytest

from helpers import (
    FakeBackend,
    backend_failure,
    confirm_entry,
    server_entry,
    text_reply,
    tool_reply,
)
from scriptpilot.ai.backend import AssistantRequest, AssistantResponse, ToolUseEntry
from scriptpilot.ai.orchestration.controller import ConversationController
from scriptpilot.ai.orchestration.event_log import ConversationEventLogger
from scriptpilot.ai.orchestration.gate import ConfirmationGate
from scriptpilot.ai.orchestration.preview import CANCELLED_MESSAGE
from scriptpilot.ai.orchestration.state_machine import ConversationState
from scriptpilot.ai.tools.errors import (
    BackingStoreError,
    ConversationBusyError,
    EmptyPromptError,
    InvalidTransitionError,
    NoPendingApprovalError,
    TurnLimitReachedError,
)
from scriptpilot.chat.session import SessionManager
from scriptpilot.services.backing_store import InMemoryBackingStore

HELLO_CODE = "function init() { routeRegistry.registerRoute('/hello', () => 'hi'); }"


def _create_hello(tool_use_id: str = "toolu_create") -> ToolUseEntry:
    return server_entry(
        tool_use_id,
        "create_script",
        "Script 'hello.js' ready to create",
        requires_client_action=True,
        script_name="hello.js",
        code=HELLO_CODE,
        message="Adds a /hello route",
    )


def _explain(tool_use_id: str, text: str = "Routes map URLs to handlers") -> ToolUseEntry:
    return server_entry(tool_use_id, "explain_only", text, explanation=text)


def _controller(backend: FakeBackend, store: InMemoryBackingStore, **kwargs) -> ConversationController:
    return ConversationController(backend, store, **kwargs)


# ----------------------------------------------------------------------
# Scenarios
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_then_continue_to_final_text(store: InMemoryBackingStore) -> None:
    backend = FakeBackend(tool_reply(_create_hello(), text="I'll create it."), text_reply("Done! Visit /hello."))
    controller = _controller(backend, store)

    first = await controller.submit_prompt("create hello.js that returns 'hi'")

    assert first.awaiting_approval
    assert first.preview is not None
    assert first.preview.title == "Create Script: hello.js"
    assert controller.state is ConversationState.AWAITING_APPROVAL
    assert "hello.js" not in store.scripts

    final = await controller.approve(first.preview.tool_use_id)

    assert store.scripts["hello.js"] == HELLO_CODE
    assert final.state is ConversationState.TERMINAL
    assert final.text == "Done! Visit /hello."
    assert [commit.content for commit in final.commits] == ["Successfully created script: hello.js"]

    continuation = backend.requests[1].messages[-1]
    assert continuation.role == "user"
    assert [block.content for block in continuation.tool_results] == [
        "Successfully created script: hello.js"
    ]
    roles = [message.role for message in controller.session.messages]
    assert roles == ["user", "assistant", "user", "assistant"]
    assert controller.session.turn_count == 1


@pytest.mark.asyncio
async def test_eleventh_prompt_is_rejected_locally(store: InMemoryBackingStore) -> None:
    backend = FakeBackend(*[text_reply(f"answer {index}") for index in range(10)])
    controller = _controller(backend, store, session_manager=SessionManager(max_turns=10))
    for index in range(10):
        await controller.submit_prompt(f"question {index}")
    assert controller.session.turn_count == 10
    before = len(controller.session)

    with pytest.raises(TurnLimitReachedError):
        await controller.submit_prompt("one more")

    assert len(controller.session) == before
    assert len(backend.requests) == 10
    assert controller.state is ConversationState.LIMIT_REACHED


@pytest.mark.asyncio
async def test_rejected_delete_sends_cancellation_and_writes_nothing(
    store: InMemoryBackingStore,
) -> None:
    store.scripts["important.js"] = "keep me"
    backend = FakeBackend(
        tool_reply(
            confirm_entry(
                "toolu_del", "delete_script", script_name="important.js", message="Unused"
            )
        ),
        text_reply("Okay, I left it alone."),
    )
    controller = _controller(backend, store)

    pending = await controller.submit_prompt("clean up old scripts")
    assert pending.preview is not None
    assert pending.preview.confirmation_prompt is not None

    final = await controller.reject()

    assert store.scripts["important.js"] == "keep me"
    assert store.mutating_calls == []
    delivered = controller.session.messages[2]
    assert delivered.role == "user"
    assert len(delivered.tool_results) == 1
    assert delivered.tool_results[0].content == CANCELLED_MESSAGE
    assert delivered.tool_results[0].tool_use_id == "toolu_del"
    assert final.text == "Okay, I left it alone."


@pytest.mark.asyncio
async def test_commit_failure_is_reported_to_the_model(store: InMemoryBackingStore) -> None:
    class _Offline(InMemoryBackingStore):
        async def upsert_asset(self, name: str, encoded_content: str, mimetype: str) -> None:
            raise BackingStoreError(message="connection reset", operation="upsert_asset", target=name)

    offline = _Offline(assets={"main.css": "body {}\n"})
    backend = FakeBackend(
        tool_reply(
            confirm_entry(
                "toolu_edit",
                "edit_asset",
                script_name="hello.js",
                asset_path="main.css",
                original_code="body {}\n",
                code="body { margin: 0; }\n",
                message="Reset margins",
            )
        ),
        text_reply("The save failed; want me to try again?"),
    )
    controller = _controller(backend, offline)

    await controller.submit_prompt("remove the default margin")
    final = await controller.approve()

    assert final.commits[0].success is False
    assert final.commits[0].content == "Error: connection reset"
    result = backend.requests[1].messages[-1].tool_results[0]
    assert result.content == "Error: connection reset"
    assert result.is_error
    assert final.state is ConversationState.TERMINAL
    assert controller.session.turn_count == 1
    assert offline.assets["main.css"] == "body {}\n"


# ----------------------------------------------------------------------
# Routing
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_explain_only_never_touches_the_store(store: InMemoryBackingStore) -> None:
    backend = FakeBackend(tool_reply(_explain("t1")), text_reply("Anything else?"))
    controller = _controller(backend, store)

    outcome = await controller.submit_prompt("how do routes work?")

    assert outcome.state is ConversationState.TERMINAL
    assert outcome.preview is None
    assert store.calls == []
    assert [block.content for block in outcome.results] == ["Routes map URLs to handlers"]
    decision = controller.decision_for("t1")
    assert decision is not None and not decision.requires_operator


@pytest.mark.asyncio
async def test_results_of_one_response_are_batched_in_order(store: InMemoryBackingStore) -> None:
    backend = FakeBackend(
        tool_reply(
            _explain("t1", "first"),
            confirm_entry("t2", "delete_asset", asset_path="main.css", message="Unused"),
            _explain("t3", "third"),
        ),
        text_reply("All done."),
    )
    controller = _controller(backend, store)

    pending = await controller.submit_prompt("tidy up")
    assert pending.preview is not None
    assert pending.preview.tool_use_id == "t2"
    # Nothing is delivered while an approval is outstanding.
    assert len(controller.session) == 2

    await controller.approve("t2")

    delivered = controller.session.messages[2]
    assert [block.tool_use_id for block in delivered.tool_results] == ["t1", "t2", "t3"]
    assert delivered.tool_results[1].content == "Successfully deleted asset: main.css"
    assert len(backend.requests) == 2


@pytest.mark.asyncio
async def test_unknown_tool_gets_error_result(store: InMemoryBackingStore) -> None:
    backend = FakeBackend(
        tool_reply(ToolUseEntry(tool_use_id="t1", tool_name="rename_script", tool_input={})),
        text_reply("Sorry, I can't rename."),
    )
    controller = _controller(backend, store)

    outcome = await controller.submit_prompt("rename hello.js")

    assert outcome.results[0].content == "Error: Unknown tool: rename_script"
    assert outcome.results[0].is_error
    assert store.mutating_calls == []


@pytest.mark.asyncio
async def test_edited_approval_commits_operator_content(store: InMemoryBackingStore) -> None:
    backend = FakeBackend(tool_reply(_create_hello()), text_reply("ok"))
    controller = _controller(backend, store)

    pending = await controller.submit_prompt("create hello.js")
    assert pending.preview is not None
    await controller.approve(pending.preview.tool_use_id, edited_content="// operator version\n")

    assert store.scripts["hello.js"] == "// operator version\n"


@pytest.mark.asyncio
async def test_emptying_an_asset_reaches_the_operator(store: InMemoryBackingStore) -> None:
    backend = FakeBackend(
        tool_reply(
            confirm_entry(
                "t1",
                "edit_asset",
                script_name="hello.js",
                asset_path="main.css",
                original_code="body { color: red; }\n",
                code="",
                message="",
            )
        ),
        text_reply("Cleared."),
    )
    controller = _controller(backend, store)

    outcome = await controller.submit_prompt("empty main.css")

    assert outcome.preview is not None
    assert outcome.preview.title == "Edit Asset: main.css"
    assert "-body { color: red; }" in outcome.preview.diff

    finished = await controller.approve()

    assert finished.commits[0].content == "Successfully updated asset: main.css"
    assert store.assets["main.css"] == ""


@pytest.mark.asyncio
async def test_approve_wrong_id_is_rejected(store: InMemoryBackingStore) -> None:
    backend = FakeBackend(tool_reply(_create_hello("t1")))
    controller = _controller(backend, store)
    await controller.submit_prompt("create hello.js")

    with pytest.raises(NoPendingApprovalError):
        await controller.approve("t9")

    assert controller.state is ConversationState.AWAITING_APPROVAL
    assert store.mutating_calls == []


# ----------------------------------------------------------------------
# History and failures
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_history_is_append_only(store: InMemoryBackingStore) -> None:
    backend = FakeBackend(tool_reply(_create_hello()), text_reply("ok"), text_reply("again"))
    controller = _controller(backend, store)

    await controller.submit_prompt("create hello.js")
    snapshot = controller.session.messages
    await controller.approve()
    await controller.submit_prompt("thanks")

    assert controller.session.messages[: len(snapshot)] == snapshot


@pytest.mark.asyncio
async def test_transport_failure_appends_nothing_and_can_retry(store: InMemoryBackingStore) -> None:
    backend = FakeBackend(backend_failure(), text_reply("Here you go."))
    controller = _controller(backend, store)

    failed = await controller.submit_prompt("hello?")

    assert failed.failed
    assert failed.error is not None and failed.error.status_code == 502
    assert controller.state is ConversationState.IDLE
    assert [message.role for message in controller.session.messages] == ["user"]

    recovered = await controller.retry()

    assert recovered.text == "Here you go."
    assert controller.session.turn_count == 1
    assert backend.requests[0].messages == backend.requests[1].messages


@pytest.mark.asyncio
async def test_retry_with_event_logging_keeps_the_session_usable(
    store: InMemoryBackingStore, tmp_path: Path
) -> None:
    backend = FakeBackend(backend_failure(), text_reply("Here you go."), text_reply("Again."))
    logger = ConversationEventLogger(enabled=True, base_dir=tmp_path)
    controller = _controller(backend, store, event_logger=logger)

    await controller.submit_prompt("hello?")
    recovered = await controller.retry()

    assert recovered.text == "Here you go."
    assert controller.state is ConversationState.TERMINAL

    follow_up = await controller.submit_prompt("once more")

    assert follow_up.text == "Again."
    assert [message.role for message in controller.session.messages] == [
        "user",
        "assistant",
        "user",
        "assistant",
    ]
    starts = [
        json.loads(path.read_text(encoding="utf-8").splitlines()[0])
        for path in tmp_path.glob("conversation-*.jsonl")
    ]
    assert len(starts) == 3
    (retried,) = [start for start in starts if start["retry"]]
    assert retried["prompt"] == "hello?"


class _ExplodingGate(ConfirmationGate):
    def route(self, entry):
        raise RuntimeError("gate exploded")


@pytest.mark.asyncio
async def test_unexpected_error_returns_to_idle_with_tool_uses_answered(
    store: InMemoryBackingStore,
) -> None:
    backend = FakeBackend(
        tool_reply(confirm_entry("t1", "delete_script", script_name="hello.js", message="Unused")),
        text_reply("Recovered."),
    )
    controller = _controller(backend, store, gate=_ExplodingGate())

    with pytest.raises(RuntimeError):
        await controller.submit_prompt("remove hello.js")

    assert controller.state is ConversationState.IDLE
    assert controller.pending_preview is None
    last = controller.session.last_message
    assert last is not None and last.role == "user"
    (result,) = last.tool_results
    assert result.tool_use_id == "t1"
    assert result.content == "Error: gate exploded"
    assert result.is_error

    recovered = await controller.retry()

    assert recovered.text == "Recovered."
    assert "hello.js" in store.scripts
    assert controller.session.turn_count == 1


@pytest.mark.asyncio
async def test_retry_without_failure_is_invalid(store: InMemoryBackingStore) -> None:
    backend = FakeBackend(text_reply("hi"))
    controller = _controller(backend, store)
    await controller.submit_prompt("hello")

    with pytest.raises(InvalidTransitionError):
        await controller.retry()


@pytest.mark.asyncio
async def test_iteration_cap_stops_runaway_loops(store: InMemoryBackingStore) -> None:
    backend = FakeBackend(*[tool_reply(_explain(f"t{index}")) for index in range(5)])
    controller = _controller(backend, store, max_tool_iterations=2)

    outcome = await controller.submit_prompt("explain forever")

    assert len(backend.requests) == 2
    assert outcome.state is ConversationState.TERMINAL
    assert outcome.notice is not None and "2 model round trips" in outcome.notice


@pytest.mark.asyncio
async def test_empty_prompt_is_rejected(store: InMemoryBackingStore) -> None:
    controller = _controller(FakeBackend(), store)

    with pytest.raises(EmptyPromptError):
        await controller.submit_prompt("   ")

    assert len(controller.session) == 0


# ----------------------------------------------------------------------
# Concurrency and lifecycle
# ----------------------------------------------------------------------


class _BlockingBackend(FakeBackend):
    def __init__(self, *responses: AssistantResponse) -> None:
        super().__init__(*responses)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def send(self, request: AssistantRequest) -> AssistantResponse:
        self.started.set()
        await self.release.wait()
        return await super().send(request)


@pytest.mark.asyncio
async def test_second_call_while_request_outstanding_is_busy(store: InMemoryBackingStore) -> None:
    backend = _BlockingBackend(text_reply("done"))
    controller = _controller(backend, store)

    task = asyncio.create_task(controller.submit_prompt("first"))
    await backend.started.wait()

    assert controller.is_busy
    with pytest.raises(ConversationBusyError):
        await controller.submit_prompt("second")
    with pytest.raises(ConversationBusyError):
        controller.reset()

    backend.release.set()
    outcome = await task
    assert outcome.text == "done"
    assert controller.session.turn_count == 1


@pytest.mark.asyncio
async def test_prompt_while_awaiting_approval_is_busy(store: InMemoryBackingStore) -> None:
    backend = FakeBackend(tool_reply(_create_hello()))
    controller = _controller(backend, store)
    await controller.submit_prompt("create hello.js")

    with pytest.raises(ConversationBusyError):
        await controller.submit_prompt("never mind")

    assert controller.session.turn_count == 1


@pytest.mark.asyncio
async def test_reset_discards_pending_approval(store: InMemoryBackingStore) -> None:
    backend = FakeBackend(tool_reply(_create_hello()))
    controller = _controller(backend, store)
    await controller.submit_prompt("create hello.js")
    old_id = controller.session.id

    session = controller.reset()

    assert session.id != old_id
    assert controller.state is ConversationState.IDLE
    assert controller.pending_preview is None
    with pytest.raises(NoPendingApprovalError):
        await controller.approve()
    assert store.mutating_calls == []


@pytest.mark.asyncio
async def test_reset_after_limit_allows_new_prompts(store: InMemoryBackingStore) -> None:
    backend = FakeBackend(text_reply("one"), text_reply("fresh"))
    controller = _controller(backend, store, session_manager=SessionManager(max_turns=1))
    await controller.submit_prompt("first")
    with pytest.raises(TurnLimitReachedError):
        await controller.submit_prompt("second")

    controller.reset()
    outcome = await controller.submit_prompt("second")

    assert outcome.text == "fresh"
    assert controller.session.turn_count == 1


@pytest.mark.asyncio
async def test_idle_session_is_replaced_on_next_prompt(store: InMemoryBackingStore) -> None:
    backend = FakeBackend(text_reply("one"), text_reply("two"))
    controller = _controller(backend, store, session_manager=SessionManager(idle_timeout=60))
    await controller.submit_prompt("first")
    stale = controller.session
    stale.last_activity -= timedelta(minutes=5)

    await controller.submit_prompt("second")

    assert controller.session.id != stale.id
    assert controller.session.turn_count == 1
    assert backend.requests[1].session_id == controller.session.id


@pytest.mark.asyncio
async def test_request_carries_editing_context(store: InMemoryBackingStore) -> None:
    backend = FakeBackend(text_reply("ok"))
    controller = _controller(backend, store)
    controller.set_context(script="hello.js", asset="main.css")

    await controller.submit_prompt("what does this do?")

    request = backend.requests[0]
    assert request.current_script == "hello.js"
    assert request.current_asset == "main.css"
    assert request.session_id == controller.session.id
