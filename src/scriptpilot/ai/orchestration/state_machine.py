"""Conversation state machine driving the continuation loop.

``transition`` is pure: it maps a state and an event to the next state and
raises :class:`InvalidTransitionError` for anything not listed in
``TRANSITIONS``. The controller owns the current state.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Mapping

from ..tools.errors import InvalidTransitionError

__all__ = ["ConversationState", "ConversationEvent", "TRANSITIONS", "transition", "can_transition"]


class ConversationState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    AWAITING_APPROVAL = "awaiting_approval"
    COMMITTING = "committing"
    TERMINAL = "terminal"
    LIMIT_REACHED = "limit_reached"


class ConversationEvent(str, Enum):
    PROMPT_SUBMITTED = "prompt_submitted"
    RETRY_REQUESTED = "retry_requested"
    MODEL_RESPONDED = "model_responded"
    MODEL_FAILED = "model_failed"
    APPROVAL_REQUESTED = "approval_requested"
    TOOLS_RESOLVED = "tools_resolved"
    CONTINUATION_CAPPED = "continuation_capped"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMMITTED = "committed"
    LIMIT_HIT = "limit_hit"
    RESET = "reset"
    ABORTED = "aborted"


_S = ConversationState
_E = ConversationEvent

_READY = {
    _E.PROMPT_SUBMITTED: _S.AWAITING_MODEL,
    _E.LIMIT_HIT: _S.LIMIT_REACHED,
    _E.RESET: _S.IDLE,
}

# AWAITING_MODEL covers the whole automatic part of the loop: the request
# in flight and the gate pass over the tool uses of its response.
TRANSITIONS: Mapping[ConversationState, Mapping[ConversationEvent, ConversationState]] = MappingProxyType(
    {
        _S.IDLE: MappingProxyType({**_READY, _E.RETRY_REQUESTED: _S.AWAITING_MODEL}),
        _S.TERMINAL: MappingProxyType(dict(_READY)),
        _S.AWAITING_MODEL: MappingProxyType(
            {
                _E.MODEL_RESPONDED: _S.TERMINAL,
                _E.MODEL_FAILED: _S.IDLE,
                _E.APPROVAL_REQUESTED: _S.AWAITING_APPROVAL,
                _E.TOOLS_RESOLVED: _S.AWAITING_MODEL,
                _E.CONTINUATION_CAPPED: _S.TERMINAL,
                _E.RESET: _S.IDLE,
                _E.ABORTED: _S.IDLE,
            }
        ),
        _S.AWAITING_APPROVAL: MappingProxyType(
            {
                _E.APPROVED: _S.COMMITTING,
                _E.REJECTED: _S.AWAITING_MODEL,
                _E.RESET: _S.IDLE,
                _E.ABORTED: _S.IDLE,
            }
        ),
        _S.COMMITTING: MappingProxyType(
            {_E.COMMITTED: _S.AWAITING_MODEL, _E.ABORTED: _S.IDLE}
        ),
        _S.LIMIT_REACHED: MappingProxyType(
            {_E.LIMIT_HIT: _S.LIMIT_REACHED, _E.RESET: _S.IDLE}
        ),
    }
)


def transition(state: ConversationState, event: ConversationEvent) -> ConversationState:
    """Return the state reached from ``state`` on ``event``.

    Raises:
        InvalidTransitionError: If ``event`` is not accepted in ``state``.
    """
    target = TRANSITIONS.get(state, {}).get(event)
    if target is None:
        raise InvalidTransitionError(state=state.value, event=event.value)
    return target


def can_transition(state: ConversationState, event: ConversationEvent) -> bool:
    return event in TRANSITIONS.get(state, {})
