"""Session lifecycle and turn accounting.

A :class:`Session` is the bounded conversation between one operator and the
model backend. It is owned by a single controller, mutated only through
:class:`SessionManager`, and discarded (never persisted) on reset.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable

from ..ai.tools.errors import TurnLimitReachedError
from .message_model import (
    ChatRole,
    ContentBlock,
    Message,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 10

__all__ = ["DEFAULT_MAX_TURNS", "Session", "SessionManager"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Session:
    """Conversation history plus its turn budget.

    ``messages`` is exposed as a tuple snapshot; the underlying list is only
    ever appended to by :meth:`SessionManager.append_message`.
    """

    id: str
    max_turns: int = DEFAULT_MAX_TURNS
    turn_count: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    last_activity: datetime = field(default_factory=_utcnow)
    _messages: list[Message] = field(default_factory=list, repr=False)

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def last_message(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def __len__(self) -> int:
        return len(self._messages)

    def to_payload(self) -> list[dict]:
        """Serialize the history to the request wire shape."""

        return [message.to_dict() for message in self._messages]


class SessionManager:
    """Creates sessions and owns every mutation of their state."""

    def __init__(
        self,
        *,
        max_turns: int = DEFAULT_MAX_TURNS,
        idle_timeout: float | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            max_turns: Turn budget given to new sessions.
            idle_timeout: Seconds of inactivity after which :meth:`is_expired`
                reports a session as stale. ``None`` or ``0`` disables expiry.
        """
        self._max_turns = max(1, int(max_turns))
        self._idle_timeout = float(idle_timeout) if idle_timeout else None

    @property
    def max_turns(self) -> int:
        return self._max_turns

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_session(self) -> Session:
        session = Session(id=uuid.uuid4().hex, max_turns=self._max_turns)
        LOGGER.debug("Created session %s (max_turns=%d)", session.id, session.max_turns)
        return session

    def reset(self, session: Session | None = None) -> Session:
        """Discard ``session`` and return a brand new one with a new id."""

        if session is not None:
            LOGGER.debug(
                "Discarding session %s after %d turn(s), %d message(s)",
                session.id,
                session.turn_count,
                len(session),
            )
        return self.create_session()

    def is_expired(self, session: Session, now: datetime | None = None) -> bool:
        if self._idle_timeout is None:
            return False
        current = now or _utcnow()
        return current - session.last_activity >= timedelta(seconds=self._idle_timeout)

    # ------------------------------------------------------------------
    # Turn accounting
    # ------------------------------------------------------------------

    @staticmethod
    def is_turn_limit_reached(session: Session) -> bool:
        return session.turn_count >= session.max_turns

    @staticmethod
    def remaining_turns(session: Session) -> int:
        return max(0, session.max_turns - session.turn_count)

    def append_message(
        self,
        session: Session,
        role: ChatRole,
        content: str | ContentBlock | Iterable[ContentBlock],
    ) -> Message:
        """Append a message to ``session`` and return it.

        Operator-authored user messages (those carrying no tool results)
        consume one turn. The limit is checked before anything is mutated.

        Raises:
            TurnLimitReachedError: If an operator prompt is appended to a
                session whose budget is spent.
        """
        message = Message(role=role, content=_normalize_content(content))
        if message.is_operator_prompt:
            if self.is_turn_limit_reached(session):
                raise TurnLimitReachedError(
                    max_turns=session.max_turns,
                    details={"session_id": session.id, "turn_count": session.turn_count},
                )
            session.turn_count += 1
        session._messages.append(message)
        session.last_activity = message.created_at
        LOGGER.debug(
            "Session %s: appended %s message (%d block(s)); turn %d/%d",
            session.id,
            role,
            len(message.content),
            session.turn_count,
            session.max_turns,
        )
        return message


def _normalize_content(
    content: str | ContentBlock | Iterable[ContentBlock],
) -> tuple[ContentBlock, ...]:
    if isinstance(content, str):
        return (TextBlock(text=content),)
    if isinstance(content, (TextBlock, ToolUseBlock, ToolResultBlock)):
        return (content,)
    return tuple(content)
