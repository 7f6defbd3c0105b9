"""Confirmation gate deciding whether a tool use may be applied without the operator."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Union

from ...chat.message_model import ToolResultBlock
from ..backend import ToolUseEntry
from ..tools.catalog import CONFIRMATION_REQUIRED_TOOLS, get_tool_spec
from ..tools.errors import ToolError, UnknownToolError
from ..tools.validation import validate_tool_input

LOGGER = logging.getLogger(__name__)

__all__ = [
    "AutoApplied",
    "ConfirmationGate",
    "GateDecision",
    "GateOutcome",
    "PendingPreview",
    "PendingToolExecution",
    "PREVIEW_EXEMPT_TOOLS",
]

# Tools applied without a client preview. Everything else is previewed.
PREVIEW_EXEMPT_TOOLS: frozenset[str] = frozenset({"explain_only"})


@dataclass(slots=True, frozen=True)
class PendingToolExecution:
    """A tool use waiting for the operator to approve, edit or reject it."""

    tool_name: str
    tool_input: Mapping[str, Any]
    tool_use_id: str


@dataclass(slots=True, frozen=True)
class GateDecision:
    """Both gate checks for one tool use, kept separate.

    ``server_confirmation`` is the endpoint's ``requires_confirmation`` flag
    (or the catalog's own list when the flag is missing). ``client_preview``
    is the client's insistence on showing every content change.
    """

    tool_use_id: str
    tool_name: str
    server_confirmation: bool
    client_preview: bool

    @property
    def requires_operator(self) -> bool:
        return self.server_confirmation or self.client_preview


@dataclass(slots=True, frozen=True)
class AutoApplied:
    """Tool use resolved immediately; ``result`` goes straight back to the model."""

    result: ToolResultBlock
    decision: GateDecision

    @property
    def tool_use_id(self) -> str:
        return self.result.tool_use_id


@dataclass(slots=True, frozen=True)
class PendingPreview:
    """Tool use that must go through the diff/preview controller."""

    pending: PendingToolExecution
    decision: GateDecision = field(compare=False)

    @property
    def tool_use_id(self) -> str:
        return self.pending.tool_use_id


GateOutcome = Union[AutoApplied, PendingPreview]


class ConfirmationGate:
    """Routes tool uses to auto-application or to the preview controller."""

    def classify(self, entry: ToolUseEntry) -> GateDecision:
        flagged = bool(entry.requires_confirmation)
        if entry.requires_confirmation is False and entry.tool_name in CONFIRMATION_REQUIRED_TOOLS:
            LOGGER.warning(
                "Endpoint cleared the confirmation flag for %s; keeping it gated", entry.tool_name
            )
        return GateDecision(
            tool_use_id=entry.tool_use_id,
            tool_name=entry.tool_name,
            server_confirmation=flagged or entry.tool_name in CONFIRMATION_REQUIRED_TOOLS,
            client_preview=entry.tool_name not in PREVIEW_EXEMPT_TOOLS,
        )

    def route(self, entry: ToolUseEntry) -> GateOutcome:
        decision = self.classify(entry)
        try:
            get_tool_spec(entry.tool_name)
        except UnknownToolError as exc:
            LOGGER.info("Model requested unknown tool %s", entry.tool_name)
            return AutoApplied(result=_error_result(entry, exc), decision=decision)

        try:
            validate_tool_input(entry.tool_name, entry.tool_input)
        except ToolError as exc:
            LOGGER.info("Rejected %s input: %s", entry.tool_name, exc.message)
            return AutoApplied(result=_error_result(entry, exc), decision=decision)

        if decision.requires_operator:
            LOGGER.debug(
                "Tool %s (%s) needs the operator: server=%s client=%s",
                entry.tool_name,
                entry.tool_use_id,
                decision.server_confirmation,
                decision.client_preview,
            )
            return PendingPreview(
                pending=PendingToolExecution(
                    tool_name=entry.tool_name,
                    tool_input=dict(entry.tool_input),
                    tool_use_id=entry.tool_use_id,
                ),
                decision=decision,
            )
        return AutoApplied(result=_auto_result(entry), decision=decision)


def _auto_result(entry: ToolUseEntry) -> ToolResultBlock:
    if entry.result is not None:
        if not entry.result.success:
            return ToolResultBlock(
                tool_use_id=entry.tool_use_id,
                content=f"Error: {entry.result.message}",
                is_error=True,
            )
        return ToolResultBlock(tool_use_id=entry.tool_use_id, content=entry.result.message)
    explanation = str(entry.tool_input.get("explanation") or "")
    return ToolResultBlock(tool_use_id=entry.tool_use_id, content=explanation)


def _error_result(entry: ToolUseEntry, error: ToolError) -> ToolResultBlock:
    return ToolResultBlock(
        tool_use_id=entry.tool_use_id,
        content=error.as_tool_content(),
        is_error=True,
    )
