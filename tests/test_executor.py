"""Tests for committing approved changes."""

from __future__ import annotations

import base64

import pytest

from scriptpilot.ai.orchestration.executor import ChangeExecutor, ToolOutcome
from scriptpilot.ai.orchestration.preview import ApprovalLedger, PendingChange
from scriptpilot.ai.tools.errors import BackingStoreError, UnapprovedChangeError
from scriptpilot.services.backing_store import InMemoryBackingStore, StoreCall


def _change(tool_use_id: str, tool_name: str, action: str, target_type: str, name: str, content: str = "") -> PendingChange:
    return PendingChange(
        tool_use_id=tool_use_id,
        tool_name=tool_name,
        target_name=name,
        new_content=content,
        action=action,  # type: ignore[arg-type]
        target_type=target_type,  # type: ignore[arg-type]
    )


def _approved(*ids: str) -> ApprovalLedger:
    ledger = ApprovalLedger()
    for tool_use_id in ids:
        ledger.record(tool_use_id)
    return ledger


class _FailingStore(InMemoryBackingStore):
    async def upsert_script(self, name: str, content: str) -> None:
        self.calls.append(StoreCall("upsert_script", name))
        raise BackingStoreError(message="disk full", operation="upsert_script", target=name)


@pytest.mark.asyncio
async def test_commit_without_approval_raises(store: InMemoryBackingStore) -> None:
    executor = ChangeExecutor(store, ApprovalLedger())

    with pytest.raises(UnapprovedChangeError):
        await executor.commit(_change("t1", "create_script", "create", "script", "a.js", "x"))

    assert store.mutating_calls == []


@pytest.mark.asyncio
async def test_create_script_success_message(store: InMemoryBackingStore) -> None:
    executor = ChangeExecutor(store, _approved("t1"))

    outcome = await executor.commit(
        _change("t1", "create_script", "create", "script", "a.js", "function init() {}")
    )

    assert outcome == ToolOutcome(
        tool_use_id="t1", success=True, message="Successfully created script: a.js"
    )
    assert store.scripts["a.js"] == "function init() {}"


@pytest.mark.asyncio
async def test_edit_asset_uploads_base64_with_mime_type(store: InMemoryBackingStore) -> None:
    executor = ChangeExecutor(store, _approved("t1"))

    outcome = await executor.commit(
        _change("t1", "edit_asset", "edit", "asset", "main.css", "body { color: blue; }")
    )

    assert outcome.message == "Successfully updated asset: main.css"
    assert store.assets["main.css"] == "body { color: blue; }"
    assert store.asset_mimetype("main.css") == "text/css"


@pytest.mark.asyncio
async def test_asset_encoding_handles_non_ascii() -> None:
    captured: dict[str, str] = {}

    class _Capture(InMemoryBackingStore):
        async def upsert_asset(self, name: str, encoded_content: str, mimetype: str) -> None:
            captured.update(name=name, encoded=encoded_content, mimetype=mimetype)

    executor = ChangeExecutor(_Capture(), _approved("t1"))
    await executor.commit(_change("t1", "create_asset", "create", "asset", "logo.svg", "<svg>é</svg>"))

    assert base64.b64decode(captured["encoded"]).decode("utf-8") == "<svg>é</svg>"
    assert captured["mimetype"] == "image/svg+xml"


@pytest.mark.asyncio
async def test_delete_missing_target_succeeds_with_caveat(store: InMemoryBackingStore) -> None:
    executor = ChangeExecutor(store, _approved("t1"))

    outcome = await executor.commit(_change("t1", "delete_script", "delete", "script", "ghost.js"))

    assert outcome.success
    assert outcome.caveat == "it did not exist"
    assert outcome.content == "Successfully deleted script: ghost.js (it did not exist)"


@pytest.mark.asyncio
async def test_delete_existing_asset(store: InMemoryBackingStore) -> None:
    executor = ChangeExecutor(store, _approved("t1"))

    outcome = await executor.commit(_change("t1", "delete_asset", "delete", "asset", "main.css"))

    assert outcome.content == "Successfully deleted asset: main.css"
    assert "main.css" not in store.assets


@pytest.mark.asyncio
async def test_storage_failure_becomes_error_result_without_retry() -> None:
    failing = _FailingStore()
    executor = ChangeExecutor(failing, _approved("t1"))

    outcome = await executor.commit(_change("t1", "create_script", "create", "script", "a.js", "x"))

    assert not outcome.success
    assert outcome.message == "Error: disk full"
    block = outcome.to_result_block()
    assert block.is_error
    assert block.tool_use_id == "t1"
    assert len(failing.calls) == 1


@pytest.mark.asyncio
async def test_invalid_original_input_is_not_written(store: InMemoryBackingStore) -> None:
    executor = ChangeExecutor(store, _approved("t1"))

    outcome = await executor.commit(
        _change("t1", "create_script", "create", "script", "a.js", "x"),
        {"script_name": "a.js"},
    )

    assert not outcome.success
    assert outcome.message.startswith("Error: Missing required field(s): code, message")
    assert store.mutating_calls == []
