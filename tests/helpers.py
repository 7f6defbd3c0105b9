"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, Iterable, Mapping

from scriptpilot.ai.backend import AssistantRequest, AssistantResponse, ToolExecutionResult, ToolUseEntry
from scriptpilot.ai.tools.errors import ModelBackendError


class FakeBackend:
    """Model backend stub replaying scripted responses.

    Each scripted item is either an :class:`AssistantResponse` or an
    exception instance, which is raised instead of answering.
    """

    def __init__(self, *responses: AssistantResponse | Exception) -> None:
        self._responses = list(responses)
        self.requests: list[AssistantRequest] = []

    def queue(self, *responses: AssistantResponse | Exception) -> None:
        self._responses.extend(responses)

    async def send(self, request: AssistantRequest) -> AssistantResponse:
        self.requests.append(request)
        if not self._responses:
            raise AssertionError("FakeBackend ran out of scripted responses")
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def pending(self) -> int:
        return len(self._responses)


def text_reply(text: str) -> AssistantResponse:
    return AssistantResponse(text=text, stop_reason="end_turn")


def tool_reply(*entries: ToolUseEntry, text: str = "") -> AssistantResponse:
    return AssistantResponse(
        text=text,
        tool_uses=tuple(entries),
        needs_confirmation=any(entry.requires_confirmation for entry in entries),
        stop_reason="tool_use",
    )


def confirm_entry(tool_use_id: str, tool_name: str, **tool_input: Any) -> ToolUseEntry:
    """Tool use the endpoint flagged for confirmation (edit/delete)."""

    return ToolUseEntry(
        tool_use_id=tool_use_id,
        tool_name=tool_name,
        tool_input=tool_input,
        requires_confirmation=True,
    )


def server_entry(
    tool_use_id: str,
    tool_name: str,
    message: str,
    /,
    *,
    success: bool = True,
    requires_client_action: bool = False,
    **tool_input: Any,
) -> ToolUseEntry:
    """Tool use the endpoint handled itself and attached a result to."""

    return ToolUseEntry(
        tool_use_id=tool_use_id,
        tool_name=tool_name,
        tool_input=tool_input,
        result=ToolExecutionResult(
            message=message,
            success=success,
            requires_client_action=requires_client_action,
        ),
    )


def backend_failure(message: str = "upstream unavailable", status_code: int | None = 502) -> ModelBackendError:
    return ModelBackendError(message=message, status_code=status_code)


# ----------------------------------------------------------------------
# OpenAI client stubs
# ----------------------------------------------------------------------


def completion(
    *,
    text: str | None = None,
    tool_calls: Iterable[tuple[str, str, Mapping[str, Any] | str]] = (),
    finish_reason: str = "stop",
    model: str = "test-model",
    usage: tuple[int, int] | None = (12, 7),
) -> SimpleNamespace:
    """Build an object shaped like ``openai.types.chat.ChatCompletion``."""

    calls = [
        SimpleNamespace(
            id=call_id,
            type="function",
            function=SimpleNamespace(
                name=name,
                arguments=arguments if isinstance(arguments, str) else json.dumps(dict(arguments)),
            ),
        )
        for call_id, name, arguments in tool_calls
    ]
    message = SimpleNamespace(role="assistant", content=text, tool_calls=calls or None)
    return SimpleNamespace(
        model=model,
        choices=[SimpleNamespace(index=0, message=message, finish_reason=finish_reason)],
        usage=SimpleNamespace(prompt_tokens=usage[0], completion_tokens=usage[1]) if usage else None,
    )


class FakeCompletions:
    def __init__(self, *results: Any) -> None:
        self._results = list(results)
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if not self._results:
            raise AssertionError("FakeCompletions ran out of scripted results")
        result = self._results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class FakeOpenAI:
    """Minimal stand-in for ``AsyncOpenAI`` exposing ``chat.completions.create``."""

    def __init__(self, *results: Any) -> None:
        self.completions = FakeCompletions(*results)
        self.chat = SimpleNamespace(completions=self.completions)
        self.closed = False

    async def close(self) -> None:
        self.closed = True
