"""Diff/preview controller capturing operator approval for proposed changes."""

from __future__ import annotations

import difflib
import logging
import posixpath
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

from ...chat.message_model import ToolResultBlock
from ...services.backing_store import BackingStore
from ..tools.catalog import get_tool_spec
from ..tools.errors import BackingStoreError, NoPendingApprovalError, PreviewBusyError
from .gate import PendingToolExecution

LOGGER = logging.getLogger(__name__)

__all__ = [
    "ApprovalLedger",
    "CANCELLED_MESSAGE",
    "DiffPreviewController",
    "PendingChange",
    "Preview",
    "PreviewState",
    "language_for",
    "render_unified_diff",
]

CANCELLED_MESSAGE = "User cancelled the operation"

ChangeAction = Literal["create", "edit", "delete"]
TargetType = Literal["script", "asset"]

_LANGUAGES = {
    ".js": "javascript",
    ".mjs": "javascript",
    ".css": "css",
    ".html": "html",
    ".htm": "html",
    ".json": "json",
    ".svg": "xml",
    ".xml": "xml",
    ".md": "markdown",
    ".yaml": "yaml",
    ".yml": "yaml",
}
_ACTION_TITLES = {"create": "Create", "edit": "Edit", "delete": "Delete"}


class PreviewState(str, Enum):
    IDLE = "idle"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"


def language_for(name: str) -> str:
    """Return an editor language hint for ``name`` based on its extension."""

    return _LANGUAGES.get(posixpath.splitext(name.lower())[1], "plaintext")


def render_unified_diff(current: str, proposed: str, *, filename: str, context: int = 3) -> str:
    diff = difflib.unified_diff(
        current.splitlines(),
        proposed.splitlines(),
        fromfile=f"a/{filename}",
        tofile=f"b/{filename}",
        lineterm="",
        n=max(0, context),
    )
    return "\n".join(diff)


@dataclass(slots=True, frozen=True)
class Preview:
    """What the operator sees before deciding on a tool use."""

    tool_use_id: str
    tool_name: str
    action: ChangeAction
    target_type: TargetType
    target_name: str
    title: str
    explanation: str
    language: str
    current_content: str
    proposed_content: str
    diff: str
    owner_script: str | None = None

    @property
    def is_destructive(self) -> bool:
        return self.action == "delete"

    @property
    def confirmation_prompt(self) -> str | None:
        """Destructive-confirmation text shown instead of a diff for deletes."""

        if not self.is_destructive:
            return None
        return f"{self.explanation}\n\nAre you sure you want to delete {self.target_name}?"


@dataclass(slots=True, frozen=True)
class PendingChange:
    """An approved change ready for the executor."""

    tool_use_id: str
    tool_name: str
    target_name: str
    new_content: str
    action: ChangeAction
    target_type: TargetType
    owner_script: str | None = None
    explanation: str = ""
    edited: bool = False


@dataclass(slots=True)
class ApprovalLedger:
    """Append-only record of operator approvals keyed by tool_use_id."""

    _approved: list[str] = field(default_factory=list)

    def record(self, tool_use_id: str) -> None:
        self._approved.append(tool_use_id)

    def is_approved(self, tool_use_id: str) -> bool:
        return tool_use_id in self._approved

    @property
    def events(self) -> tuple[str, ...]:
        return tuple(self._approved)


class DiffPreviewController:
    """Drives one tool use at a time through Idle, AwaitingApproval and back.

    ``present`` moves to AwaitingApproval, ``approve`` to Approved until
    :meth:`finish` is called after the commit, and ``reject`` straight back
    to Idle.
    """

    def __init__(self, store: BackingStore, *, ledger: ApprovalLedger | None = None) -> None:
        self._store = store
        self.ledger = ledger or ApprovalLedger()
        self._state = PreviewState.IDLE
        self._pending: PendingToolExecution | None = None
        self._preview: Preview | None = None

    @property
    def state(self) -> PreviewState:
        return self._state

    @property
    def current(self) -> Preview | None:
        return self._preview

    @property
    def pending(self) -> PendingToolExecution | None:
        return self._pending

    async def present(self, pending: PendingToolExecution) -> Preview:
        if self._state is not PreviewState.IDLE:
            raise PreviewBusyError(
                pending_tool_use_id=self._pending.tool_use_id if self._pending else None
            )
        spec = get_tool_spec(pending.tool_name)
        action: ChangeAction = spec.action or "edit"  # type: ignore[assignment]
        target_type: TargetType = spec.target_type or "script"  # type: ignore[assignment]
        tool_input = pending.tool_input
        target_name = str(tool_input.get(spec.target_field or "script_name") or "")
        explanation = str(tool_input.get("message") or "")
        proposed = "" if action == "delete" else str(tool_input.get("code") or "")
        current = await self._current_content(action, target_type, target_name, tool_input)

        title = f"{_ACTION_TITLES[action]} {target_type.capitalize()}: {target_name}"
        diff = "" if action == "delete" else render_unified_diff(
            current, proposed, filename=target_name
        )
        preview = Preview(
            tool_use_id=pending.tool_use_id,
            tool_name=pending.tool_name,
            action=action,
            target_type=target_type,
            target_name=target_name,
            title=title,
            explanation=explanation,
            language=language_for(target_name),
            current_content=current,
            proposed_content=proposed,
            diff=diff,
            owner_script=str(tool_input["script_name"])
            if target_type == "asset" and tool_input.get("script_name")
            else None,
        )
        self._pending = pending
        self._preview = preview
        self._state = PreviewState.AWAITING_APPROVAL
        LOGGER.debug("Presenting %s (%s)", title, pending.tool_use_id)
        return preview

    def approve(self, tool_use_id: str, *, edited_content: str | None = None) -> PendingChange:
        preview = self._require_awaiting(tool_use_id)
        content = preview.proposed_content
        edited = False
        if edited_content is not None and preview.action != "delete":
            edited = edited_content != preview.proposed_content
            content = edited_content
        self.ledger.record(tool_use_id)
        self._state = PreviewState.APPROVED
        LOGGER.info("Operator approved %s%s", preview.title, " (edited)" if edited else "")
        return PendingChange(
            tool_use_id=tool_use_id,
            tool_name=preview.tool_name,
            target_name=preview.target_name,
            new_content=content,
            action=preview.action,
            target_type=preview.target_type,
            owner_script=preview.owner_script,
            explanation=preview.explanation,
            edited=edited,
        )

    def reject(self, tool_use_id: str) -> ToolResultBlock:
        preview = self._require_awaiting(tool_use_id)
        LOGGER.info("Operator rejected %s", preview.title)
        self._clear()
        return ToolResultBlock(tool_use_id=tool_use_id, content=CANCELLED_MESSAGE)

    def finish(self, tool_use_id: str) -> None:
        """Return to Idle once an approved change has been committed."""

        if self._state is not PreviewState.APPROVED or self._pending is None:
            raise NoPendingApprovalError(tool_use_id=tool_use_id)
        if self._pending.tool_use_id != tool_use_id:
            raise NoPendingApprovalError(tool_use_id=tool_use_id)
        self._clear()

    def reset(self) -> None:
        self._clear()

    def _require_awaiting(self, tool_use_id: str) -> Preview:
        preview = self._preview
        if (
            self._state is not PreviewState.AWAITING_APPROVAL
            or preview is None
            or preview.tool_use_id != tool_use_id
        ):
            raise NoPendingApprovalError(tool_use_id=tool_use_id)
        return preview

    def _clear(self) -> None:
        self._state = PreviewState.IDLE
        self._pending = None
        self._preview = None

    async def _current_content(
        self,
        action: ChangeAction,
        target_type: TargetType,
        target_name: str,
        tool_input,
    ) -> str:
        if action == "create":
            return ""
        try:
            if target_type == "script":
                stored = await self._store.get_script(target_name)
            else:
                stored = await self._store.get_asset(target_name)
        except BackingStoreError as exc:
            LOGGER.warning("Could not load %s %s for preview: %s", target_type, target_name, exc)
            stored = None
        if stored is not None:
            return stored
        return str(tool_input.get("original_code") or "")
