"""Console entry point for the scriptpilot assistant."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.backend import HttpModelBackend, ModelBackend
from .ai.client import AIClient, ClientSettings
from .ai.endpoint import AssistantEndpoint
from .ai.orchestration.controller import ConversationController, TurnOutcome
from .ai.orchestration.event_log import ConversationEventLogger
from .ai.orchestration.preview import Preview
from .ai.tools.errors import ToolError, TurnLimitReachedError
from .chat.session import SessionManager
from .services.backing_store import BackingStore, HttpBackingStore, InMemoryBackingStore
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)

InputFn = Callable[[str], str]


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure structured logging for the console."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `scriptpilot` console script."""

    args = _parse_cli_args(argv)

    debug = _env_flag("SCRIPTPILOT_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("SCRIPTPILOT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    overrides_mapping: Dict[str, Any] | None = cli_overrides or None
    settings = load_settings(resolved_path, store=settings_store, overrides=overrides_mapping)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    try:
        asyncio.run(
            _run_console(
                settings,
                backend_kind=args.backend,
                memory_store=args.memory_store,
                script=args.script,
                asset=args.asset,
            )
        )
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")


# ----------------------------------------------------------------------
# Wiring
# ----------------------------------------------------------------------


def build_store(settings: Settings, *, memory: bool = False) -> BackingStore:
    if memory:
        return InMemoryBackingStore()
    return HttpBackingStore(
        settings.store_url,
        timeout=settings.store_timeout,
        headers=dict(settings.store_headers),
    )


def build_backend(settings: Settings, store: BackingStore, *, kind: str = "local") -> ModelBackend:
    """Return the model backend selected on the command line."""

    if kind == "http":
        return HttpModelBackend(
            settings.backend_url,
            timeout=settings.request_timeout,
            headers=dict(settings.backend_headers),
        )
    client = AIClient(ClientSettings.from_settings(settings))
    return AssistantEndpoint(
        client,
        store=store,
        max_turns=settings.max_turns,
        temperature=settings.temperature,
    )


def build_controller(
    settings: Settings,
    backend: ModelBackend,
    store: BackingStore,
) -> ConversationController:
    return ConversationController(
        backend,
        store,
        session_manager=SessionManager(
            max_turns=settings.max_turns,
            idle_timeout=settings.session_idle_timeout,
        ),
        max_tool_iterations=_resolve_max_tool_iterations(settings),
        event_logger=ConversationEventLogger(enabled=settings.debug_event_logging),
    )


def _resolve_max_tool_iterations(settings: Settings | None) -> int:
    """Clamp the configured iteration limit into a safe operating range."""

    raw_value = getattr(settings, "max_tool_iterations", 8) if settings else 8
    try:
        value = int(raw_value)
    except (TypeError, ValueError):
        value = 8
    return max(1, min(value, 50))


async def _run_console(
    settings: Settings,
    *,
    backend_kind: str,
    memory_store: bool,
    script: str | None,
    asset: str | None,
) -> None:
    store = build_store(settings, memory=memory_store)
    backend = build_backend(settings, store, kind=backend_kind)
    controller = build_controller(settings, backend, store)
    controller.set_context(script=script, asset=asset)
    operator = ConsoleOperator(controller)
    try:
        await operator.run()
    finally:
        for resource in (backend, store):
            close = getattr(resource, "aclose", None)
            if close is not None:
                await close()


# ----------------------------------------------------------------------
# Interactive operator
# ----------------------------------------------------------------------


class ConsoleOperator:
    """Line-based operator loop: prompts, previews and approval questions.

    Lines starting with ``:`` are commands (``:reset``, ``:retry``,
    ``:script NAME``, ``:asset NAME``, ``:quit``); anything else is sent as a
    prompt.
    """

    def __init__(
        self,
        controller: ConversationController,
        *,
        input_fn: InputFn = input,
        stream: TextIO | None = None,
    ) -> None:
        self._controller = controller
        self._input = input_fn
        self._out = stream or sys.stdout

    async def run(self) -> None:
        self._write("scriptpilot ready. Type :quit to exit.")
        while True:
            try:
                line = await asyncio.to_thread(self._input, "you> ")
            except EOFError:
                return
            if not await self.handle_line(line):
                return

    async def handle_line(self, line: str) -> bool:
        """Process one input line; return ``False`` when the operator quits."""

        text = line.strip()
        if not text:
            return True
        if text.startswith(":"):
            return await self._command(text[1:])
        try:
            outcome = await self._controller.submit_prompt(text)
        except TurnLimitReachedError as exc:
            self._write(f"{exc.message}. {exc.suggestion} with :reset.")
            return True
        except ToolError as exc:
            self._write(f"! {exc.message}")
            return True
        await self._settle(outcome)
        return True

    async def _command(self, command: str) -> bool:
        name, _, argument = command.partition(" ")
        name = name.lower()
        argument = argument.strip() or None
        if name in {"q", "quit", "exit"}:
            return False
        if name == "reset":
            session = self._controller.reset()
            self._write(f"Started new session {session.id[:8]}.")
        elif name == "retry":
            try:
                outcome = await self._controller.retry()
            except ToolError as exc:
                self._write(f"! {exc.message}")
                return True
            await self._settle(outcome)
        elif name == "script":
            self._controller.set_context(script=argument, asset=self._controller.current_asset)
        elif name == "asset":
            self._controller.set_context(script=self._controller.current_script, asset=argument)
        else:
            self._write(f"Unknown command :{name}")
        return True

    async def _settle(self, outcome: TurnOutcome) -> None:
        while True:
            self._show(outcome)
            if outcome.preview is None:
                return
            outcome = await self._decide(outcome.preview)

    async def _decide(self, preview: Preview) -> TurnOutcome:
        choices = "[a]pprove / [r]eject" if preview.is_destructive else "[a]pprove / [e]dit / [r]eject"
        while True:
            answer = (await asyncio.to_thread(self._input, f"{choices}> ")).strip().lower()
            if answer in {"a", "approve", "y", "yes"}:
                return await self._controller.approve(preview.tool_use_id)
            if answer in {"r", "reject", "n", "no", "cancel"}:
                return await self._controller.reject(preview.tool_use_id)
            if answer in {"e", "edit"} and not preview.is_destructive:
                path = (await asyncio.to_thread(self._input, "file with edited content> ")).strip()
                try:
                    edited = Path(path).expanduser().read_text(encoding="utf-8")
                except OSError as exc:
                    self._write(f"! Could not read {path}: {exc}")
                    continue
                return await self._controller.approve(preview.tool_use_id, edited_content=edited)
            self._write("Please answer a, e or r.")

    def _show(self, outcome: TurnOutcome) -> None:
        if outcome.text:
            self._write(f"assistant> {outcome.text}")
        for commit in outcome.commits:
            self._write(f"* {commit.content}")
        if outcome.error is not None:
            self._write(f"! {outcome.error.message} (type :retry to resend)")
        if outcome.notice:
            self._write(f"! {outcome.notice}")
        preview = outcome.preview
        if preview is None:
            return
        self._write(f"== {preview.title} ==")
        if preview.is_destructive:
            self._write(preview.confirmation_prompt or "")
            return
        if preview.explanation:
            self._write(preview.explanation)
        self._write(preview.diff or "(no changes)")

    def _write(self, text: str) -> None:
        self._out.write(f"{text}\n")
        self._out.flush()


# ----------------------------------------------------------------------
# CLI helpers
# ----------------------------------------------------------------------


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="scriptpilot",
        add_help=True,
        description="Drive the script assistant from the console or inspect its configuration.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.scriptpilot/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings before launch (repeatable).",
    )
    parser.add_argument(
        "--backend",
        choices=("local", "http"),
        default="local",
        help="Call the model in-process (local) or through a remote assistant endpoint (http).",
    )
    parser.add_argument(
        "--memory-store",
        action="store_true",
        help="Keep scripts and assets in memory instead of the platform's REST API.",
    )
    parser.add_argument("--script", metavar="NAME", help="Script currently open in the editor.")
    parser.add_argument("--asset", metavar="NAME", help="Asset currently open in the editor.")
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if normalized.lower() in {"none", "null"} and _is_optional(annotation):
        return None
    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is list:
        try:
            return json.loads(normalized or "[]")
        except json.JSONDecodeError as exc:
            raise ValueError("List overrides must be valid JSON arrays") from exc
    if target is dict:
        try:
            return json.loads(normalized or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return _resolve_annotation(args[0])


def _is_optional(annotation: Any) -> bool:
    return type(None) in get_args(annotation)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(payload.get("api_key") or "")
    for name in ("model_headers", "backend_headers", "store_headers"):
        payload[name] = {key: redact_secret(str(value)) for key, value in payload[name].items()}
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.strategy,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    output = {"settings": payload, "meta": metadata}
    json.dump(output, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("SCRIPTPILOT_"))


if __name__ == "__main__":  # pragma: no cover
    main()
