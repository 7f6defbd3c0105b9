"""Async chat-completions client used by the assistant endpoint.

The model is reached through any OpenAI-compatible endpoint. Transient
failures (rate limits, connection problems, timeouts and 5xx answers) are
retried with exponential backoff; everything else surfaces on the first
attempt.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Mapping

import httpx
from openai import (
    APIConnectionError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    RateLimitError,
)
from openai.types.chat import ChatCompletion, ChatCompletionMessageParam, ChatCompletionToolParam
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import Settings

LOGGER = logging.getLogger(__name__)

__all__ = ["AIClient", "ClientSettings", "is_transient"]

_TRANSIENT_ERRORS = (
    RateLimitError,
    APIConnectionError,
    APITimeoutError,
    InternalServerError,
    httpx.TimeoutException,
)


@dataclass(slots=True)
class ClientSettings:
    """Connection and retry settings for :class:`AIClient`."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    max_tokens: int | None = 8192
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ClientSettings":
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key,
            model=settings.model,
            organization=settings.organization,
            request_timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
            max_tokens=settings.max_tokens,
            default_headers=dict(settings.model_headers) or None,
            debug_logging=settings.debug_logging,
        )


def is_transient(exc: BaseException) -> bool:
    """True for failures worth another attempt; 4xx answers never are."""

    return isinstance(exc, _TRANSIENT_ERRORS)


class AIClient:
    """Issues one chat completion per assistant request."""

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def is_configured(self) -> bool:
        return bool((self._settings.api_key or "").strip())

    async def complete_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        tools: Iterable[ChatCompletionToolParam] | None = None,
        temperature: float | None = 0.2,
        max_tokens: int | None = None,
    ) -> ChatCompletion:
        """Run a non-streaming chat completion, retrying transient failures.

        Raises:
            ValueError: If ``messages`` is empty.
            openai.OpenAIError: When the last attempt fails or the failure is
                not transient.
        """
        payload: dict[str, Any] = {
            "model": self._settings.model,
            "messages": [dict(message) for message in messages],
        }
        if not payload["messages"]:
            raise ValueError("At least one message is required to start a chat")
        if tools:
            payload["tools"] = list(tools)
        if temperature is not None:
            payload["temperature"] = temperature
        limit = max_tokens if max_tokens is not None else self._settings.max_tokens
        if limit is not None:
            payload["max_tokens"] = limit

        LOGGER.debug(
            "Chat completion via %s: %d message(s), %d tool(s)",
            self._settings.model,
            len(payload["messages"]),
            len(payload.get("tools", ())),
        )
        if self._settings.debug_logging:
            self._log_request(payload)

        async for attempt in self._retrying():
            with attempt:
                return await self._client.chat.completions.create(**payload)
        raise RuntimeError("Retry loop exited without a result")  # pragma: no cover

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=settings.api_key or "unset",
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=dict(settings.default_headers) if settings.default_headers else None,
            max_retries=0,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception(is_transient),
            before_sleep=_log_retry,
        )

    def _log_request(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Chat request (unserializable): %s", payload)
        else:
            LOGGER.debug("Chat request:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result


def _log_retry(state: RetryCallState) -> None:
    outcome = state.outcome
    error = outcome.exception() if outcome is not None else None
    delay = state.next_action.sleep if state.next_action is not None else 0.0
    LOGGER.warning(
        "Model request attempt %d failed (%s); retrying in %.1fs",
        state.attempt_number,
        error.__class__.__name__ if error else "unknown",
        delay,
    )
