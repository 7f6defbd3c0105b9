"""Debug event logging for conversation runs.

A run covers one operator prompt, including every continuation request and
approval it triggers, and is written as one JSONL file.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Mapping, Sequence

from ...utils import logging as logging_utils

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class _NullConversationEventLogRun:
    """No-op implementation used when event logging is disabled."""

    path: Path | None = None
    finalized: bool = True

    def log_assistant_message(self, *_: Any, **__: Any) -> None:
        return

    def log_tool_batch(self, *_: Any, **__: Any) -> None:
        return

    def log_decision(self, *_: Any, **__: Any) -> None:
        return

    def log_completion(self, *_: Any, **__: Any) -> None:
        return

    def log_failure(self, *_: Any, **__: Any) -> None:
        return


class ConversationEventLogRun:
    """Writes structured JSONL entries for one operator prompt."""

    def __init__(self, path: Path, *, context: Mapping[str, Any]) -> None:
        self.path = path
        self._file = path.open("w", encoding="utf-8")
        self.finalized = False
        self._write_entry("start", context)

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()

    def log_assistant_message(
        self,
        *,
        iteration: int,
        response_text: str,
        tool_uses: Sequence[Mapping[str, Any]] | None,
        stop_reason: str | None = None,
    ) -> None:
        payload = {
            "iteration": iteration,
            "response_text": response_text,
            "tool_uses": list(tool_uses or []),
            "stop_reason": stop_reason,
        }
        self._write_entry("assistant", payload)

    def log_tool_batch(self, *, iteration: int, results: Sequence[Mapping[str, Any]]) -> None:
        if not results:
            return
        self._write_entry("tools", {"iteration": iteration, "results": list(results)})

    def log_decision(self, *, tool_use_id: str, decision: str, edited: bool = False) -> None:
        self._write_entry(
            "approval",
            {"tool_use_id": tool_use_id, "decision": decision, "edited": edited},
        )

    def log_completion(self, *, response_text: str, iterations: int, notice: str | None = None) -> None:
        if self.finalized:
            return
        payload = {
            "response_text": response_text,
            "iterations": iterations,
            "notice": notice,
            "status": "success",
        }
        self._write_entry("completion", payload)
        self.finalized = True
        self.close()

    def log_failure(self, *, message: str, details: Mapping[str, Any] | None = None) -> None:
        if self.finalized:
            return
        payload: dict[str, Any] = {
            "status": "failure",
            "message": message,
        }
        if details:
            payload["details"] = dict(details)
        self._write_entry("failure", payload)
        self.finalized = True
        self.close()

    def _write_entry(self, event: str, payload: Mapping[str, Any] | None = None) -> None:
        if self._file.closed:
            LOGGER.debug("Dropping %s entry for finalized event log %s", event, self.path)
            return
        entry: dict[str, Any] = {
            "event": event,
            "timestamp": time.time(),
        }
        if payload:
            for key, value in payload.items():
                entry[key] = self._safe_json(value)
        json.dump(entry, self._file, ensure_ascii=False)
        self._file.write("\n")
        self._file.flush()

    def _safe_json(self, value: Any, *, depth: int = 0) -> Any:
        if depth > 6:
            return repr(value)
        if value is None or isinstance(value, (str, int, float, bool)):
            return value
        if isinstance(value, Mapping):
            return {str(key): self._safe_json(val, depth=depth + 1) for key, val in value.items()}
        if isinstance(value, (list, tuple, set)):
            return [self._safe_json(item, depth=depth + 1) for item in value]
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        return repr(value)


EventLogRun = ConversationEventLogRun | _NullConversationEventLogRun


class ConversationEventLogger:
    """Factory for per-prompt event logs when debug event logging is enabled."""

    def __init__(self, *, enabled: bool, base_dir: Path | str | None = None) -> None:
        self.enabled = bool(enabled)
        self._base_dir = Path(base_dir) if base_dir else logging_utils.event_log_dir()

    def start_run(
        self,
        *,
        session_id: str,
        prompt: str,
        turn_count: int,
        current_script: str | None = None,
        current_asset: str | None = None,
        retry: bool = False,
    ) -> EventLogRun:
        if not self.enabled:
            return _NullConversationEventLogRun()
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
            path = self._allocate_path(session_id)
            context = {
                "session_id": session_id,
                "prompt": prompt,
                "turn_count": turn_count,
                "current_script": current_script,
                "current_asset": current_asset,
                "retry": retry,
            }
            log_run = ConversationEventLogRun(path, context=context)
        except OSError:
            LOGGER.debug("Failed to start conversation event log", exc_info=True)
            return _NullConversationEventLogRun()
        LOGGER.debug("Conversation event log started: %s", path)
        return log_run

    def _allocate_path(self, session_id: str) -> Path:
        timestamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S-%f")
        safe_id = "".join(ch for ch in session_id if ch.isalnum())[:12] or "session"
        path = self._base_dir / f"conversation-{timestamp}-{safe_id}.jsonl"
        suffix = 1
        while path.exists():
            path = self._base_dir / f"conversation-{timestamp}-{safe_id}-{suffix}.jsonl"
            suffix += 1
        return path


def null_run() -> EventLogRun:
    return _NullConversationEventLogRun()


__all__ = [
    "ConversationEventLogger",
    "ConversationEventLogRun",
    "EventLogRun",
    "null_run",
]
