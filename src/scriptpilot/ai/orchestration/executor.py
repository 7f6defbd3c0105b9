"""Executor committing approved changes to the backing store."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ...chat.message_model import ToolResultBlock
from ...services.backing_store import BackingStore, encode_asset_content, mime_type_for
from ..tools.errors import BackingStoreError, ToolError, UnapprovedChangeError
from ..tools.validation import validate_tool_input
from .preview import ApprovalLedger, PendingChange

LOGGER = logging.getLogger(__name__)

__all__ = ["ChangeExecutor", "ToolOutcome"]

_PAST_TENSE = {"create": "created", "edit": "updated", "delete": "deleted"}


@dataclass(slots=True, frozen=True)
class ToolOutcome:
    """Result of a commit attempt, ready to be fed back to the model."""

    tool_use_id: str
    success: bool
    message: str
    caveat: str | None = None

    @property
    def content(self) -> str:
        if self.caveat:
            return f"{self.message} ({self.caveat})"
        return self.message

    def to_result_block(self) -> ToolResultBlock:
        return ToolResultBlock(
            tool_use_id=self.tool_use_id,
            content=self.content,
            is_error=not self.success,
        )


class ChangeExecutor:
    """Applies a :class:`PendingChange` to the backing store.

    Storage failures are returned as unsuccessful outcomes rather than
    raised, and are never retried. Committing a change the operator did not
    approve is a programming error and raises.
    """

    def __init__(self, store: BackingStore, ledger: ApprovalLedger) -> None:
        self._store = store
        self._ledger = ledger

    async def commit(
        self,
        change: PendingChange,
        tool_input: dict | None = None,
    ) -> ToolOutcome:
        """Commit ``change``.

        Args:
            change: The approved change.
            tool_input: Original tool input, re-validated against the tool's
                schema before anything is written.

        Raises:
            UnapprovedChangeError: If no approval was recorded for the change.
        """
        if not self._ledger.is_approved(change.tool_use_id):
            raise UnapprovedChangeError(
                tool_use_id=change.tool_use_id,
                details={"tool_name": change.tool_name, "target": change.target_name},
            )
        if tool_input is not None:
            try:
                validate_tool_input(change.tool_name, tool_input)
            except ToolError as exc:
                return ToolOutcome(
                    tool_use_id=change.tool_use_id,
                    success=False,
                    message=exc.as_tool_content(),
                )

        label = f"{change.target_type}: {change.target_name}"
        try:
            caveat = await self._apply(change)
        except BackingStoreError as exc:
            LOGGER.warning("Commit of %s %s failed: %s", change.action, label, exc.message)
            return ToolOutcome(
                tool_use_id=change.tool_use_id,
                success=False,
                message=f"Error: {exc.message}",
            )
        message = f"Successfully {_PAST_TENSE[change.action]} {label}"
        LOGGER.info("%s%s", message, f" ({caveat})" if caveat else "")
        return ToolOutcome(
            tool_use_id=change.tool_use_id,
            success=True,
            message=message,
            caveat=caveat,
        )

    async def _apply(self, change: PendingChange) -> str | None:
        name = change.target_name
        if change.target_type == "script":
            if change.action == "delete":
                found = await self._store.delete_script(name)
                return None if found else "it did not exist"
            await self._store.upsert_script(name, change.new_content)
            return None
        if change.action == "delete":
            found = await self._store.delete_asset(name)
            return None if found else "it did not exist"
        await self._store.upsert_asset(
            name,
            encode_asset_content(change.new_content),
            mime_type_for(name),
        )
        return None
