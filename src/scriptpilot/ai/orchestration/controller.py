"""Conversation controller running the continuation loop for one operator."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Deque

from ...chat.message_model import ToolResultBlock
from ...chat.session import Session, SessionManager
from ...services.backing_store import BackingStore
from ..backend import AssistantRequest, AssistantResponse, ModelBackend, ToolUseEntry
from ..tools.errors import (
    ConversationBusyError,
    EmptyPromptError,
    InvalidTransitionError,
    ModelBackendError,
    NoPendingApprovalError,
    ToolError,
    TurnLimitReachedError,
)
from .event_log import ConversationEventLogger, EventLogRun, null_run
from .executor import ChangeExecutor, ToolOutcome
from .gate import AutoApplied, ConfirmationGate, GateDecision
from .preview import DiffPreviewController, PendingChange, Preview
from .state_machine import ConversationEvent, ConversationState, can_transition, transition

LOGGER = logging.getLogger(__name__)

__all__ = ["ConversationController", "TurnOutcome", "DEFAULT_MAX_TOOL_ITERATIONS"]

DEFAULT_MAX_TOOL_ITERATIONS = 8


@dataclass(slots=True)
class TurnOutcome:
    """What a controller call produced for the operator.

    ``text`` collects assistant text from every response received during the
    call. ``preview`` is set when the loop is suspended on an approval.
    ``error`` is set when a model request failed; nothing was appended for it.
    """

    state: ConversationState
    text: str = ""
    preview: Preview | None = None
    results: tuple[ToolResultBlock, ...] = ()
    commits: tuple[ToolOutcome, ...] = ()
    error: ToolError | None = None
    notice: str | None = None

    @property
    def awaiting_approval(self) -> bool:
        return self.preview is not None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(slots=True)
class _Drive:
    """Accumulates what happened during one controller call."""

    texts: list[str] = field(default_factory=list)
    results: list[ToolResultBlock] = field(default_factory=list)
    commits: list[ToolOutcome] = field(default_factory=list)

    def outcome(self, state: ConversationState, **extra) -> TurnOutcome:
        return TurnOutcome(
            state=state,
            text="\n".join(text for text in self.texts if text),
            results=tuple(self.results),
            commits=tuple(self.commits),
            **extra,
        )


class ConversationController:
    """Owns one session and drives it through the approval-gated loop.

    The controller is single-owner: a second call while one is outstanding
    raises :class:`ConversationBusyError` instead of queueing.
    """

    def __init__(
        self,
        backend: ModelBackend,
        store: BackingStore,
        *,
        session_manager: SessionManager | None = None,
        max_tool_iterations: int = DEFAULT_MAX_TOOL_ITERATIONS,
        gate: ConfirmationGate | None = None,
        preview: DiffPreviewController | None = None,
        executor: ChangeExecutor | None = None,
        event_logger: ConversationEventLogger | None = None,
    ) -> None:
        self._backend = backend
        self._sessions = session_manager or SessionManager()
        self._session = self._sessions.create_session()
        self._gate = gate or ConfirmationGate()
        self._preview = preview or DiffPreviewController(store)
        self._executor = executor or ChangeExecutor(store, self._preview.ledger)
        self._event_logger = event_logger
        self._max_iterations = max(1, int(max_tool_iterations))
        self._state = ConversationState.IDLE
        self._lock = asyncio.Lock()
        self._queue: Deque[ToolUseEntry] = deque()
        self._collected: list[ToolResultBlock] = []
        self._decisions: dict[str, GateDecision] = {}
        self._pending_entry: ToolUseEntry | None = None
        self._iterations = 0
        self._run: EventLogRun = null_run()
        self.current_script: str | None = None
        self.current_asset: str | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def pending_preview(self) -> Preview | None:
        return self._preview.current

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    def decision_for(self, tool_use_id: str) -> GateDecision | None:
        return self._decisions.get(tool_use_id)

    def set_context(self, *, script: str | None = None, asset: str | None = None) -> None:
        """Record which script/asset the operator is looking at."""

        self.current_script = script
        self.current_asset = asset

    # ------------------------------------------------------------------
    # Operator entry points
    # ------------------------------------------------------------------

    async def submit_prompt(self, text: str) -> TurnOutcome:
        """Append an operator prompt and run the loop until it settles.

        Raises:
            EmptyPromptError: If ``text`` is blank.
            TurnLimitReachedError: If the session's turn budget is spent.
                Nothing is appended and no request is sent.
            ConversationBusyError: If a request or approval is outstanding.
        """
        async with self._exclusive():
            prompt = (text or "").strip()
            if not prompt:
                raise EmptyPromptError()
            if self._state in (ConversationState.AWAITING_APPROVAL, ConversationState.COMMITTING):
                raise ConversationBusyError(
                    message="A change is awaiting approval",
                    suggestion="Approve or reject the pending change first",
                )
            if self._sessions.is_expired(self._session):
                LOGGER.info(
                    "Session %s expired after inactivity; starting a new one", self._session.id
                )
                self._start_new_session()
                self._advance(ConversationEvent.RESET)
            if self._sessions.is_turn_limit_reached(self._session):
                self._advance(ConversationEvent.LIMIT_HIT)
                raise TurnLimitReachedError(
                    max_turns=self._session.max_turns,
                    details={"session_id": self._session.id},
                )

            self._advance(ConversationEvent.PROMPT_SUBMITTED)
            self._sessions.append_message(self._session, "user", prompt)
            self._iterations = 0
            self._start_run(prompt)
            return await self._guarded(self._drive(_Drive()))

    async def approve(
        self,
        tool_use_id: str | None = None,
        *,
        edited_content: str | None = None,
    ) -> TurnOutcome:
        """Approve the pending change, commit it and resume the loop."""

        async with self._exclusive():
            entry = self._require_pending(tool_use_id)
            change = self._preview.approve(entry.tool_use_id, edited_content=edited_content)
            self._run.log_decision(
                tool_use_id=entry.tool_use_id, decision="approved", edited=change.edited
            )
            self._advance(ConversationEvent.APPROVED)
            return await self._guarded(self._commit_and_resume(entry, change))

    async def reject(self, tool_use_id: str | None = None) -> TurnOutcome:
        """Reject the pending change; nothing is written to the backing store."""

        async with self._exclusive():
            entry = self._require_pending(tool_use_id)
            result = self._preview.reject(entry.tool_use_id)
            self._run.log_decision(tool_use_id=entry.tool_use_id, decision="rejected")
            self._pending_entry = None
            self._collected.append(result)
            self._advance(ConversationEvent.REJECTED)
            return await self._guarded(self._resume(_Drive()))

    async def retry(self) -> TurnOutcome:
        """Re-send the conversation after a failed request.

        Only valid when the last request failed, which leaves a user-role
        message at the end of the history. No turn is consumed.
        """
        async with self._exclusive():
            last = self._session.last_message
            if self._state is not ConversationState.IDLE or last is None or last.role != "user":
                raise InvalidTransitionError(
                    message="Nothing to retry",
                    state=self._state.value,
                    event=ConversationEvent.RETRY_REQUESTED.value,
                )
            self._advance(ConversationEvent.RETRY_REQUESTED)
            self._iterations = 0
            self._start_run(self._last_operator_prompt(), retry=True)
            return await self._guarded(self._drive(_Drive()))

    def reset(self) -> Session:
        """Discard the session (and any pending approval) and start a new one."""

        if self._lock.locked():
            raise ConversationBusyError()
        if self._pending_entry is not None:
            LOGGER.info("Discarding pending %s on reset", self._pending_entry.tool_name)
        self._run.log_failure(message="session reset")
        self._start_new_session()
        self._advance(ConversationEvent.RESET)
        return self._session

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _drive(self, drive: _Drive) -> TurnOutcome:
        while True:
            if self._iterations >= self._max_iterations:
                notice = (
                    f"Stopped after {self._max_iterations} model round trips for this prompt. "
                    "Send another prompt to continue."
                )
                LOGGER.warning("Session %s: %s", self._session.id, notice)
                self._advance(ConversationEvent.CONTINUATION_CAPPED)
                self._run.log_completion(
                    response_text="\n".join(drive.texts), iterations=self._iterations, notice=notice
                )
                return drive.outcome(self._state, notice=notice)
            self._iterations += 1

            request = AssistantRequest(
                session_id=self._session.id,
                messages=self._session.messages,
                current_script=self.current_script,
                current_asset=self.current_asset,
            )
            try:
                response = await self._backend.send(request)
            except ModelBackendError as exc:
                LOGGER.warning("Model request failed for session %s: %s", self._session.id, exc)
                self._advance(ConversationEvent.MODEL_FAILED)
                self._run.log_failure(message=exc.message, details=exc.to_dict())
                return drive.outcome(self._state, error=exc)

            self._record_response(response, drive)
            if response.is_terminal:
                self._advance(ConversationEvent.MODEL_RESPONDED)
                self._run.log_completion(
                    response_text="\n".join(drive.texts), iterations=self._iterations
                )
                return drive.outcome(self._state)

            self._queue = deque(response.tool_uses)
            self._collected = []
            preview = await self._process_queue()
            if preview is not None:
                return drive.outcome(self._state, preview=preview)
            self._deliver_results(drive)

    async def _resume(self, drive: _Drive) -> TurnOutcome:
        preview = await self._process_queue()
        if preview is not None:
            return drive.outcome(self._state, preview=preview)
        self._deliver_results(drive)
        return await self._drive(drive)

    async def _commit_and_resume(self, entry: ToolUseEntry, change: PendingChange) -> TurnOutcome:
        outcome = await self._executor.commit(change, dict(entry.tool_input))
        self._preview.finish(entry.tool_use_id)
        self._pending_entry = None
        self._collected.append(outcome.to_result_block())
        self._advance(ConversationEvent.COMMITTED)
        return await self._resume(_Drive(commits=[outcome]))

    async def _guarded(self, step: Awaitable[TurnOutcome]) -> TurnOutcome:
        try:
            return await step
        except Exception as exc:
            self._abort(exc)
            raise

    def _abort(self, exc: Exception) -> None:
        """Return to IDLE after an unexpected failure with the history still sendable.

        Tool uses of the last assistant message that never got a result are
        answered with error results so the conversation can be retried or
        continued with a new prompt.
        """
        LOGGER.error(
            "Conversation %s aborted while %s", self._session.id, self._state.value, exc_info=exc
        )
        reason = exc.message if isinstance(exc, ToolError) else (str(exc) or type(exc).__name__)
        last = self._session.last_message
        if last is not None and last.role == "assistant" and last.tool_uses:
            resolved = {block.tool_use_id: block for block in self._collected}
            results = tuple(
                resolved.get(use.id)
                or ToolResultBlock(tool_use_id=use.id, content=f"Error: {reason}", is_error=True)
                for use in last.tool_uses
            )
            self._sessions.append_message(self._session, "user", results)
        self._queue.clear()
        self._collected = []
        self._pending_entry = None
        self._preview.reset()
        self._run.log_failure(message=reason, details={"error_type": type(exc).__name__})
        if can_transition(self._state, ConversationEvent.ABORTED):
            self._advance(ConversationEvent.ABORTED)

    async def _process_queue(self) -> Preview | None:
        """Route queued tool uses in order, stopping at the first one needing the operator."""

        while self._queue:
            entry = self._queue.popleft()
            routed = self._gate.route(entry)
            self._decisions[entry.tool_use_id] = routed.decision
            if isinstance(routed, AutoApplied):
                self._collected.append(routed.result)
                continue
            preview = await self._preview.present(routed.pending)
            self._pending_entry = entry
            self._advance(ConversationEvent.APPROVAL_REQUESTED)
            return preview
        return None

    def _deliver_results(self, drive: _Drive) -> None:
        results = tuple(self._collected)
        self._collected = []
        self._sessions.append_message(self._session, "user", results)
        drive.results.extend(results)
        self._run.log_tool_batch(
            iteration=self._iterations,
            results=[block.to_dict() for block in results],
        )
        self._advance(ConversationEvent.TOOLS_RESOLVED)

    def _record_response(self, response: AssistantResponse, drive: _Drive) -> None:
        self._sessions.append_message(
            self._session, "assistant", response.content_blocks()
        )
        if response.text:
            drive.texts.append(response.text)
        self._run.log_assistant_message(
            iteration=self._iterations,
            response_text=response.text,
            tool_uses=[entry.to_dict() for entry in response.tool_uses],
            stop_reason=response.stop_reason,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _exclusive(self) -> asyncio.Lock:
        if self._lock.locked():
            raise ConversationBusyError()
        return self._lock

    def _require_pending(self, tool_use_id: str | None) -> ToolUseEntry:
        entry = self._pending_entry
        if self._state is not ConversationState.AWAITING_APPROVAL or entry is None:
            raise NoPendingApprovalError(tool_use_id=tool_use_id)
        if tool_use_id is not None and tool_use_id != entry.tool_use_id:
            raise NoPendingApprovalError(
                message=f"Tool use {tool_use_id} is not awaiting approval",
                tool_use_id=tool_use_id,
            )
        return entry

    def _advance(self, event: ConversationEvent) -> None:
        previous = self._state
        self._state = transition(previous, event)
        LOGGER.debug(
            "Conversation %s: %s --%s--> %s",
            self._session.id,
            previous.value,
            event.value,
            self._state.value,
        )

    def _start_run(self, prompt: str, *, retry: bool = False) -> None:
        if self._event_logger is None:
            return
        self._run = self._event_logger.start_run(
            session_id=self._session.id,
            prompt=prompt,
            turn_count=self._session.turn_count,
            current_script=self.current_script,
            current_asset=self.current_asset,
            retry=retry,
        )

    def _last_operator_prompt(self) -> str:
        for message in reversed(self._session.messages):
            if message.is_operator_prompt:
                return message.text
        return ""

    def _start_new_session(self) -> None:
        self._session = self._sessions.reset(self._session)
        self._queue.clear()
        self._collected = []
        self._decisions.clear()
        self._pending_entry = None
        self._preview.reset()
        self._run = null_run()
