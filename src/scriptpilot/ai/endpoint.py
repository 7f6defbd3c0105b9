"""Assistant endpoint: the server side of the Model Backend contract.

The endpoint owns the model call. It guards the turn budget, builds the
system prompt from the editing context, forwards the conversation and the
tool catalog to the model, and classifies every returned tool use as either
confirmation-required or handled in place.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx
from openai import OpenAIError

from ..services.backing_store import BackingStore
from . import prompts
from .backend import AssistantRequest, AssistantResponse, ToolExecutionResult, ToolUseEntry
from .client import AIClient
from .message_builder import build_chat_messages, parse_completion
from .tools.catalog import CONFIRMATION_REQUIRED_TOOLS, to_function_tools
from .tools.errors import (
    BackendNotConfiguredError,
    BackingStoreError,
    ModelBackendError,
    TurnLimitExceededError,
)

LOGGER = logging.getLogger(__name__)

__all__ = ["AssistantEndpoint", "execute_server_tool"]


def execute_server_tool(tool_name: str, tool_input: Mapping[str, Any]) -> ToolExecutionResult:
    """Handle a tool that the endpoint does not flag for confirmation.

    Content-producing tools are only acknowledged here; the client previews
    and commits them.
    """

    if tool_name == "explain_only":
        return ToolExecutionResult(message=str(tool_input.get("explanation") or ""))
    if tool_name == "create_script":
        return ToolExecutionResult(
            message=f"Script '{tool_input.get('script_name')}' ready to create",
            requires_client_action=True,
        )
    if tool_name == "create_asset":
        return ToolExecutionResult(
            message=f"Asset '{tool_input.get('asset_path')}' ready to create",
            requires_client_action=True,
        )
    return ToolExecutionResult(message=f"Unknown tool: {tool_name}", success=False)


class AssistantEndpoint:
    """In-process :class:`~scriptpilot.ai.backend.ModelBackend` backed by :class:`AIClient`."""

    def __init__(
        self,
        client: AIClient,
        *,
        store: BackingStore | None = None,
        max_turns: int = 10,
        temperature: float | None = 0.2,
    ) -> None:
        self._client = client
        self._store = store
        self._max_turns = max(1, int(max_turns))
        self._temperature = temperature

    async def send(self, request: AssistantRequest) -> AssistantResponse:
        prompt_count = request.operator_prompt_count
        LOGGER.info(
            "Assistant request: session %s, %d message(s), %d prompt(s)",
            request.session_id,
            len(request.messages),
            prompt_count,
        )
        # The request already carries the prompt being answered.
        if prompt_count > self._max_turns:
            raise TurnLimitExceededError(
                message=f"Turn limit reached ({self._max_turns} turns per session)"
            )
        if not self._client.is_configured:
            raise BackendNotConfiguredError()

        system_prompt = prompts.system_prompt(
            current_script=request.current_script,
            current_asset=request.current_asset,
            scripts=await self._list("scripts"),
            assets=await self._list("assets"),
        )
        chat_messages = build_chat_messages(system_prompt, request.messages)
        try:
            completion = await self._client.complete_chat(
                chat_messages,
                tools=to_function_tools(),
                temperature=self._temperature,
            )
        except (OpenAIError, httpx.HTTPError) as exc:
            status = getattr(exc, "status_code", None)
            LOGGER.warning("Model call failed (status=%s): %s", status, exc)
            raise ModelBackendError(message=_error_text(exc), status_code=status) from exc

        reply = parse_completion(completion)
        LOGGER.info(
            "Assistant reply: stop reason %s, %d tool use(s)",
            reply.stop_reason,
            len(reply.tool_uses),
        )

        entries: list[ToolUseEntry] = []
        needs_confirmation = False
        for block in reply.tool_uses:
            LOGGER.debug("Tool requested: %s", block.name)
            if block.name in CONFIRMATION_REQUIRED_TOOLS:
                needs_confirmation = True
                entries.append(
                    ToolUseEntry(
                        tool_use_id=block.id,
                        tool_name=block.name,
                        tool_input=dict(block.input),
                        requires_confirmation=True,
                    )
                )
            else:
                entries.append(
                    ToolUseEntry(
                        tool_use_id=block.id,
                        tool_name=block.name,
                        tool_input=dict(block.input),
                        result=execute_server_tool(block.name, block.input),
                    )
                )
        return AssistantResponse(
            text=reply.text,
            tool_uses=tuple(entries),
            needs_confirmation=needs_confirmation,
            stop_reason=reply.stop_reason,
            model=reply.model,
            usage=reply.usage,
        )

    async def _list(self, kind: str) -> list[str]:
        if self._store is None:
            return []
        try:
            if kind == "scripts":
                return await self._store.list_scripts()
            return await self._store.list_assets()
        except BackingStoreError as exc:
            LOGGER.info("Could not list %s: %s", kind, exc)
            return []


def _error_text(exc: Exception) -> str:
    body = getattr(exc, "body", None)
    if isinstance(body, Mapping):
        error = body.get("error")
        if isinstance(error, Mapping) and error.get("message"):
            return str(error["message"])
        if body.get("message"):
            return str(body["message"])
    message = getattr(exc, "message", None)
    return str(message or exc) or "API request failed"
