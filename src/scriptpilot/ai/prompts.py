"""Prompt templates for the script assistant."""

from __future__ import annotations

from typing import Sequence

from .tools.catalog import CONFIRMATION_REQUIRED_TOOLS, TOOL_CATALOG

__all__ = ["base_system_prompt", "format_context", "system_prompt"]

_CONCEPTS = (
    "Scripts are SERVER-SIDE JavaScript that handle HTTP requests",
    "Use routeRegistry.registerRoute() to map URLs to handler functions",
    "Always include init() function that registers at least one route",
    "Use Response builders: ResponseBuilder.json(), ResponseBuilder.html(), etc.",
    'Assets are stored by NAME (e.g., "logo.svg", "main.css") not by HTTP path',
    "Assets must be registered to HTTP paths using "
    "routeRegistry.registerAssetRoute(path, assetName)",
    "Same asset can be served at multiple HTTP paths via multiple registrations",
    "Asset names should NOT include path separators (no / in names)",
)

_TOOL_SUMMARIES = {
    "explain_only": "Provide explanations without performing operations",
    "create_script": "Create new JavaScript script files",
    "edit_script": "Modify existing scripts",
    "delete_script": "Delete scripts",
    "create_asset": "Create new asset files (CSS, SVG, HTML, etc.)",
    "edit_asset": "Modify existing assets",
    "delete_asset": "Delete assets",
}


def base_system_prompt() -> str:
    """Return the static part of the system prompt."""

    tool_lines = []
    for spec in TOOL_CATALOG:
        summary = _TOOL_SUMMARIES.get(spec.name, spec.description)
        if spec.name in CONFIRMATION_REQUIRED_TOOLS:
            summary = f"{summary} (requires user confirmation)"
        tool_lines.append(f"- {spec.name}: {summary}")
    concept_lines = [f"{index}. {text}" for index, text in enumerate(_CONCEPTS, start=1)]
    return "\n".join(
        [
            "You are an AI assistant helping users create and modify server-side JavaScript "
            "scripts and assets for the hosting platform.",
            "",
            "AVAILABLE TOOLS:",
            *tool_lines,
            "",
            "IMPORTANT CONCEPTS:",
            *concept_lines,
            "",
            "CURRENT CONTEXT:",
        ]
    )


def format_context(
    *,
    current_script: str | None = None,
    current_asset: str | None = None,
    scripts: Sequence[str] = (),
    assets: Sequence[str] = (),
) -> str:
    lines: list[str] = []
    if current_script:
        lines.append(f"Current Script: {current_script}")
    if current_asset:
        lines.append(f"Current Asset: {current_asset}")
    if scripts:
        lines.append(f"Available Scripts: {', '.join(scripts)}")
    if assets:
        lines.append(f"Available Assets: {', '.join(assets)}")
    return "\n".join(lines)


def system_prompt(
    *,
    current_script: str | None = None,
    current_asset: str | None = None,
    scripts: Sequence[str] = (),
    assets: Sequence[str] = (),
) -> str:
    """Combine the static prompt with the editing context of this request."""

    context = format_context(
        current_script=current_script,
        current_asset=current_asset,
        scripts=scripts,
        assets=assets,
    )
    base = base_system_prompt()
    return f"{base}\n{context}" if context else base
