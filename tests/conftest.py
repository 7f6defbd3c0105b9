"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from scriptpilot.services.backing_store import InMemoryBackingStore


@pytest.fixture
def store() -> InMemoryBackingStore:
    return InMemoryBackingStore(
        scripts={"hello.js": "function init() {}\n"},
        assets={"main.css": "body { color: red; }\n"},
    )


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in (
        "SCRIPTPILOT_API_KEY",
        "SCRIPTPILOT_BASE_URL",
        "SCRIPTPILOT_MODEL",
        "SCRIPTPILOT_MAX_TURNS",
        "SCRIPTPILOT_MAX_TOOL_ITERATIONS",
        "SCRIPTPILOT_DEBUG",
        "SCRIPTPILOT_DEBUG_LOGGING",
        "SCRIPTPILOT_DEBUG_EVENT_LOGGING",
        "SCRIPTPILOT_SETTINGS_PATH",
        "SCRIPTPILOT_SESSION_IDLE_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SCRIPTPILOT_LOG_DIR", str(tmp_path / "logs"))
