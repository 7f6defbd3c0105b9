"""Tests for per-prompt conversation event logs."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from helpers import FakeBackend, confirm_entry, text_reply, tool_reply
from scriptpilot.ai.orchestration.controller import ConversationController
from scriptpilot.ai.orchestration.event_log import ConversationEventLogger, ConversationEventLogRun
from scriptpilot.services.backing_store import InMemoryBackingStore


def _read_events(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_disabled_logger_writes_nothing(tmp_path: Path) -> None:
    logger = ConversationEventLogger(enabled=False, base_dir=tmp_path)

    run = logger.start_run(session_id="abc", prompt="hi", turn_count=1)
    run.log_completion(response_text="ok", iterations=1)

    assert run.path is None
    assert list(tmp_path.iterdir()) == []


def test_run_writes_jsonl_entries(tmp_path: Path) -> None:
    logger = ConversationEventLogger(enabled=True, base_dir=tmp_path)

    run = logger.start_run(session_id="abc-123", prompt="hi", turn_count=1, current_script="a.js")
    assert isinstance(run, ConversationEventLogRun)
    run.log_assistant_message(iteration=1, response_text="hello", tool_uses=[], stop_reason="end_turn")
    run.log_completion(response_text="hello", iterations=1)
    run.log_failure(message="ignored after completion")

    assert run.path.name.startswith("conversation-")
    assert run.path.name.endswith("-abc123.jsonl")
    events = _read_events(run.path)
    assert [event["event"] for event in events] == ["start", "assistant", "completion"]
    assert events[0]["current_script"] == "a.js"
    assert events[-1]["status"] == "success"


def test_finalized_run_drops_later_entries(tmp_path: Path) -> None:
    logger = ConversationEventLogger(enabled=True, base_dir=tmp_path)

    run = logger.start_run(session_id="abc", prompt="hi", turn_count=1)
    run.log_failure(message="upstream unavailable")
    run.log_assistant_message(iteration=2, response_text="late", tool_uses=[])
    run.log_tool_batch(iteration=2, results=[{"tool_use_id": "t1", "content": "x"}])

    events = _read_events(run.path)
    assert [event["event"] for event in events] == ["start", "failure"]
    assert events[0]["retry"] is False


@pytest.mark.asyncio
async def test_controller_logs_approvals_and_tool_batches(tmp_path: Path) -> None:
    store = InMemoryBackingStore(scripts={"old.js": "x"})
    backend = FakeBackend(
        tool_reply(confirm_entry("t1", "delete_script", script_name="old.js", message="Unused")),
        text_reply("Removed."),
    )
    logger = ConversationEventLogger(enabled=True, base_dir=tmp_path)
    controller = ConversationController(backend, store, event_logger=logger)

    await controller.submit_prompt("remove old.js")
    await controller.approve()

    (path,) = tmp_path.glob("conversation-*.jsonl")
    events = _read_events(path)
    assert [event["event"] for event in events] == [
        "start",
        "assistant",
        "approval",
        "tools",
        "assistant",
        "completion",
    ]
    assert events[2]["decision"] == "approved"
    assert events[3]["results"][0]["content"] == "Successfully deleted script: old.js"
