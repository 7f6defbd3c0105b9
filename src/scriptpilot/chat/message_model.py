"""Conversation message and content block data models."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Mapping, Sequence, Union

__all__ = [
    "ChatRole",
    "TextBlock",
    "ToolUseBlock",
    "ToolResultBlock",
    "ContentBlock",
    "Message",
    "block_from_dict",
]


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)

ChatRole = Literal["user", "assistant"]
_ROLES: frozenset[str] = frozenset({"user", "assistant"})


@dataclass(slots=True, frozen=True)
class TextBlock:
    """Free text emitted by the operator or the model."""

    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(slots=True, frozen=True)
class ToolUseBlock:
    """Structured action request emitted by the model."""

    id: str
    name: str
    input: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": dict(self.input)}


@dataclass(slots=True, frozen=True)
class ToolResultBlock:
    """Outcome of a tool use, delivered back to the model in a user-role message."""

    tool_use_id: str
    content: str
    is_error: bool = False

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
        }
        if self.is_error:
            payload["is_error"] = True
        return payload


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


def block_from_dict(payload: Mapping[str, Any]) -> ContentBlock:
    """Rebuild a content block from its wire representation."""

    block_type = payload.get("type")
    if block_type == "text":
        return TextBlock(text=str(payload.get("text") or ""))
    if block_type == "tool_use":
        raw_input = payload.get("input")
        if isinstance(raw_input, str):
            try:
                raw_input = json.loads(raw_input)
            except json.JSONDecodeError:
                raw_input = {}
        return ToolUseBlock(
            id=str(payload.get("id") or ""),
            name=str(payload.get("name") or ""),
            input=dict(raw_input) if isinstance(raw_input, Mapping) else {},
        )
    if block_type == "tool_result":
        return ToolResultBlock(
            tool_use_id=str(payload.get("tool_use_id") or ""),
            content=_coerce_result_content(payload.get("content")),
            is_error=bool(payload.get("is_error", False)),
        )
    raise ValueError(f"Unsupported content block type: {block_type!r}")


def _coerce_result_content(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, Sequence):
        parts = [
            str(item.get("text") or "")
            for item in value
            if isinstance(item, Mapping) and item.get("type") == "text"
        ]
        return "\n".join(parts)
    return str(value)


@dataclass(slots=True, frozen=True)
class Message:
    """A single conversation turn: a role plus its ordered content blocks."""

    role: ChatRole
    content: tuple[ContentBlock, ...]
    created_at: datetime = field(default_factory=_utcnow, compare=False)

    def __post_init__(self) -> None:
        if self.role not in _ROLES:
            raise ValueError(f"Unsupported message role: {self.role!r}")
        object.__setattr__(self, "content", tuple(self.content))

    @property
    def text(self) -> str:
        """Concatenated text blocks."""

        return "\n".join(block.text for block in self.content if isinstance(block, TextBlock))

    @property
    def tool_uses(self) -> tuple[ToolUseBlock, ...]:
        return tuple(block for block in self.content if isinstance(block, ToolUseBlock))

    @property
    def tool_results(self) -> tuple[ToolResultBlock, ...]:
        return tuple(block for block in self.content if isinstance(block, ToolResultBlock))

    @property
    def is_operator_prompt(self) -> bool:
        """True for user messages authored by the operator rather than tool-result deliveries."""

        return self.role == "user" and not self.tool_results

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the request wire shape."""

        return {"role": self.role, "content": [block.to_dict() for block in self.content]}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Message":
        role = payload.get("role")
        raw_content = payload.get("content")
        if isinstance(raw_content, str):
            blocks: list[ContentBlock] = [TextBlock(text=raw_content)]
        elif isinstance(raw_content, Sequence):
            blocks = [block_from_dict(item) for item in raw_content if isinstance(item, Mapping)]
        else:
            blocks = []
        return cls(role=role, content=tuple(blocks))  # type: ignore[arg-type]

    @classmethod
    def user_text(cls, text: str) -> "Message":
        return cls(role="user", content=(TextBlock(text=text),))
