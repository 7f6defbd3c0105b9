"""Model Backend request/response contract and its HTTP client."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, runtime_checkable

import httpx

from ..chat.message_model import ContentBlock, Message, TextBlock, ToolUseBlock
from .tools.errors import ModelBackendError, TurnLimitExceededError

LOGGER = logging.getLogger(__name__)

__all__ = [
    "AssistantRequest",
    "AssistantResponse",
    "ToolExecutionResult",
    "ToolUseEntry",
    "ModelBackend",
    "HttpModelBackend",
    "ASSISTANT_ROUTE",
]

ASSISTANT_ROUTE = "/api/ai-assistant/tools"


@dataclass(slots=True, frozen=True)
class AssistantRequest:
    """Full conversation plus editing context sent on every round trip."""

    session_id: str
    messages: tuple[Message, ...]
    current_script: str | None = None
    current_asset: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "messages": [message.to_dict() for message in self.messages],
            "currentScript": self.current_script,
            "currentAsset": self.current_asset,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AssistantRequest":
        raw_messages = payload.get("messages") or []
        return cls(
            session_id=str(payload.get("sessionId") or ""),
            messages=tuple(
                Message.from_dict(item) for item in raw_messages if isinstance(item, Mapping)
            ),
            current_script=payload.get("currentScript") or None,
            current_asset=payload.get("currentAsset") or None,
        )

    @property
    def operator_prompt_count(self) -> int:
        return sum(1 for message in self.messages if message.is_operator_prompt)


@dataclass(slots=True, frozen=True)
class ToolExecutionResult:
    """Outcome of a tool the endpoint handled without operator involvement."""

    message: str
    success: bool = True
    requires_client_action: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.success:
            payload["message"] = self.message
        else:
            payload["error"] = self.message
        if self.requires_client_action:
            payload["requires_client_action"] = True
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ToolExecutionResult":
        success = bool(payload.get("success", True))
        message = payload.get("message") if success else payload.get("error")
        return cls(
            message=str(message or payload.get("message") or payload.get("error") or ""),
            success=success,
            requires_client_action=bool(payload.get("requires_client_action", False)),
        )


@dataclass(slots=True, frozen=True)
class ToolUseEntry:
    """One tool use as reported by the endpoint.

    ``requires_confirmation`` is ``None`` when the endpoint omitted the flag.
    """

    tool_use_id: str
    tool_name: str
    tool_input: Mapping[str, Any] = field(default_factory=dict)
    requires_confirmation: bool | None = None
    result: ToolExecutionResult | None = None

    def to_block(self) -> ToolUseBlock:
        return ToolUseBlock(id=self.tool_use_id, name=self.tool_name, input=dict(self.tool_input))

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "tool_use_id": self.tool_use_id,
            "tool_name": self.tool_name,
            "tool_input": dict(self.tool_input),
        }
        if self.requires_confirmation is not None:
            payload["requires_confirmation"] = self.requires_confirmation
        if self.result is not None:
            payload["result"] = self.result.to_dict()
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ToolUseEntry":
        raw_input = payload.get("tool_input")
        raw_result = payload.get("result")
        flag = payload.get("requires_confirmation")
        return cls(
            tool_use_id=str(payload.get("tool_use_id") or ""),
            tool_name=str(payload.get("tool_name") or ""),
            tool_input=dict(raw_input) if isinstance(raw_input, Mapping) else {},
            requires_confirmation=None if flag is None else bool(flag),
            result=ToolExecutionResult.from_dict(raw_result)
            if isinstance(raw_result, Mapping)
            else None,
        )


@dataclass(slots=True, frozen=True)
class AssistantResponse:
    """Parsed Model Backend reply."""

    text: str = ""
    tool_uses: tuple[ToolUseEntry, ...] = ()
    needs_confirmation: bool = False
    stop_reason: str = "end_turn"
    model: str | None = None
    usage: Mapping[str, Any] | None = None

    @property
    def is_terminal(self) -> bool:
        return not self.tool_uses

    def content_blocks(self) -> tuple[ContentBlock, ...]:
        """Return the blocks of the assistant message recorded for this reply."""

        blocks: list[ContentBlock] = []
        if self.text:
            blocks.append(TextBlock(text=self.text))
        blocks.extend(entry.to_block() for entry in self.tool_uses)
        return tuple(blocks)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": True,
            "text": self.text,
            "tool_uses": [entry.to_dict() for entry in self.tool_uses],
            "needs_confirmation": self.needs_confirmation,
            "stop_reason": self.stop_reason,
        }
        if self.model is not None:
            payload["model"] = self.model
        if self.usage is not None:
            payload["usage"] = dict(self.usage)
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AssistantResponse":
        raw_uses = payload.get("tool_uses") or []
        usage = payload.get("usage")
        return cls(
            text=str(payload.get("text") or ""),
            tool_uses=tuple(
                ToolUseEntry.from_dict(item) for item in raw_uses if isinstance(item, Mapping)
            ),
            needs_confirmation=bool(payload.get("needs_confirmation", False)),
            stop_reason=str(payload.get("stop_reason") or "end_turn"),
            model=payload.get("model"),
            usage=dict(usage) if isinstance(usage, Mapping) else None,
        )


@runtime_checkable
class ModelBackend(Protocol):
    """Anything able to answer an :class:`AssistantRequest`."""

    async def send(self, request: AssistantRequest) -> AssistantResponse: ...


class HttpModelBackend:
    """Posts requests to a remote assistant endpoint."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 120.0,
        headers: Mapping[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=dict(headers or {}),
        )

    async def send(self, request: AssistantRequest) -> AssistantResponse:
        LOGGER.debug(
            "Posting %d message(s) for session %s", len(request.messages), request.session_id
        )
        try:
            response = await self._client.post(ASSISTANT_ROUTE, json=request.to_dict())
        except httpx.HTTPError as exc:
            raise ModelBackendError(message=str(exc) or exc.__class__.__name__) from exc

        payload = _json_or_none(response)
        if response.is_error or (isinstance(payload, Mapping) and payload.get("success") is False):
            message = _error_message(payload, response)
            LOGGER.warning("Assistant endpoint returned %s: %s", response.status_code, message)
            if response.status_code == 429:
                raise TurnLimitExceededError(message=message)
            raise ModelBackendError(message=message, status_code=response.status_code)
        if not isinstance(payload, Mapping):
            raise ModelBackendError(
                message="Assistant endpoint returned a non-JSON body",
                status_code=response.status_code,
            )
        return AssistantResponse.from_dict(payload)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _error_message(payload: Any, response: httpx.Response) -> str:
    if isinstance(payload, Mapping):
        error = payload.get("error")
        if isinstance(error, Mapping):
            error = error.get("message")
        if error:
            return str(error)
        if payload.get("message"):
            return str(payload["message"])
    return f"API request failed (HTTP {response.status_code})"
