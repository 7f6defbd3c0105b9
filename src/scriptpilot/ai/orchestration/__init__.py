"""Approval-gated orchestration of model tool calls."""

from .controller import ConversationController, TurnOutcome
from .event_log import ConversationEventLogger
from .executor import ChangeExecutor, ToolOutcome
from .gate import AutoApplied, ConfirmationGate, GateDecision, PendingPreview, PendingToolExecution
from .preview import ApprovalLedger, DiffPreviewController, PendingChange, Preview, PreviewState
from .state_machine import ConversationEvent, ConversationState, transition

__all__ = [
    "ApprovalLedger",
    "AutoApplied",
    "ChangeExecutor",
    "ConfirmationGate",
    "ConversationController",
    "ConversationEvent",
    "ConversationEventLogger",
    "ConversationState",
    "DiffPreviewController",
    "GateDecision",
    "PendingChange",
    "PendingPreview",
    "PendingToolExecution",
    "Preview",
    "PreviewState",
    "ToolOutcome",
    "TurnOutcome",
    "transition",
]
