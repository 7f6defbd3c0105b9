"""Conversion between conversation messages and chat-completions payloads."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from ..chat.message_model import Message, TextBlock, ToolResultBlock, ToolUseBlock

LOGGER = logging.getLogger(__name__)

__all__ = ["ParsedReply", "build_chat_messages", "parse_completion", "map_stop_reason"]

_STOP_REASONS: Mapping[str, str] = {
    "tool_calls": "tool_use",
    "function_call": "tool_use",
    "stop": "end_turn",
    "length": "max_tokens",
    "content_filter": "refusal",
}


@dataclass(slots=True)
class ParsedReply:
    """Text and tool-use blocks extracted from one completion."""

    text: str = ""
    tool_uses: list[ToolUseBlock] = field(default_factory=list)
    stop_reason: str = "end_turn"
    model: str | None = None
    usage: dict[str, Any] | None = None


def map_stop_reason(finish_reason: str | None) -> str:
    if not finish_reason:
        return "end_turn"
    return _STOP_REASONS.get(finish_reason, finish_reason)


def build_chat_messages(system_prompt: str, history: Sequence[Message]) -> list[dict[str, Any]]:
    """Translate the conversation into chat-completions messages.

    Tool results become ``tool`` role messages placed directly after the
    assistant message that issued the matching calls; any operator text in
    the same user message follows them.
    """

    messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for message in history:
        if message.role == "assistant":
            messages.append(_assistant_message(message))
            continue
        texts: list[str] = []
        for block in message.content:
            if isinstance(block, ToolResultBlock):
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": block.tool_use_id,
                        "content": block.content,
                    }
                )
            elif isinstance(block, TextBlock) and block.text:
                texts.append(block.text)
        if texts:
            messages.append({"role": "user", "content": "\n".join(texts)})
    return messages


def _assistant_message(message: Message) -> dict[str, Any]:
    payload: dict[str, Any] = {"role": "assistant", "content": message.text or None}
    tool_calls = [
        {
            "id": block.id,
            "type": "function",
            "function": {"name": block.name, "arguments": json.dumps(dict(block.input))},
        }
        for block in message.tool_uses
    ]
    if tool_calls:
        payload["tool_calls"] = tool_calls
    elif payload["content"] is None:
        payload["content"] = ""
    return payload


def parse_completion(completion: Any) -> ParsedReply:
    """Extract text, tool calls and metadata from a chat completion."""

    choices = getattr(completion, "choices", None) or []
    if not choices:
        return ParsedReply(model=getattr(completion, "model", None))
    choice = choices[0]
    message = getattr(choice, "message", None)
    text = str(getattr(message, "content", None) or "")
    tool_uses: list[ToolUseBlock] = []
    for call in getattr(message, "tool_calls", None) or []:
        function = getattr(call, "function", None)
        name = str(getattr(function, "name", "") or "")
        tool_uses.append(
            ToolUseBlock(
                id=str(getattr(call, "id", "") or ""),
                name=name,
                input=_parse_arguments(name, getattr(function, "arguments", None)),
            )
        )
    return ParsedReply(
        text=text,
        tool_uses=tool_uses,
        stop_reason=map_stop_reason(getattr(choice, "finish_reason", None)),
        model=getattr(completion, "model", None),
        usage=_usage_payload(getattr(completion, "usage", None)),
    )


def _parse_arguments(tool_name: str, raw: Any) -> dict[str, Any]:
    if isinstance(raw, Mapping):
        return dict(raw)
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        LOGGER.warning("Discarding malformed arguments for tool %s", tool_name)
        return {}
    if not isinstance(parsed, dict):
        LOGGER.warning("Tool %s arguments are not a JSON object", tool_name)
        return {}
    return parsed


def _usage_payload(usage: Any) -> dict[str, Any] | None:
    if usage is None:
        return None
    prompt_tokens = getattr(usage, "prompt_tokens", None)
    completion_tokens = getattr(usage, "completion_tokens", None)
    if prompt_tokens is None and completion_tokens is None:
        return None
    return {"input_tokens": prompt_tokens, "output_tokens": completion_tokens}
