"""Static catalog of the tools offered to the model.

The catalog is read-only: it is built once at import time and sent with
every model request so the model can emit structured tool-use blocks
instead of free text when it intends a mutating action.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Literal, Mapping

from .errors import UnknownToolError

__all__ = [
    "ToolSpec",
    "ToolCategory",
    "TargetType",
    "ToolAction",
    "TOOL_CATALOG",
    "CONFIRMATION_REQUIRED_TOOLS",
    "get_tool_spec",
    "tool_names",
    "required_fields",
    "to_function_tools",
]

TargetType = Literal["script", "asset"]
ToolAction = Literal["create", "edit", "delete"]


class ToolCategory:
    """Standard tool categories for organization."""

    EXPLAIN = "explain"
    WRITE = "write"
    DELETE = "delete"


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Specification for a tool's interface.

    Attributes:
        name: Unique identifier for the tool.
        description: Human-readable description sent to the model.
        input_schema: JSON Schema for the tool's input.
        category: Tool category for organization.
        action: Change kind the tool proposes, or None for non-mutating tools.
        target_type: Artifact kind the tool touches, or None.
        target_field: Input field naming the artifact.
    """

    name: str
    description: str
    input_schema: Mapping[str, Any] = field(default_factory=dict)
    category: str = ToolCategory.EXPLAIN
    action: ToolAction | None = None
    target_type: TargetType | None = None
    target_field: str | None = None

    @property
    def required(self) -> tuple[str, ...]:
        return tuple(self.input_schema.get("required", ()))

    @property
    def is_mutating(self) -> bool:
        return self.action is not None

    def to_function_tool(self) -> dict[str, Any]:
        """Convert to the OpenAI function tool definition format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": _thaw(self.input_schema),
            },
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the ``input_schema`` key of the tool-use wire format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": _thaw(self.input_schema),
        }


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(item) for item in value)
    return value


def _string(description: str) -> dict[str, str]:
    return {"type": "string", "description": description}


def _schema(properties: Mapping[str, Any], required: list[str]) -> Mapping[str, Any]:
    return _freeze({"type": "object", "properties": dict(properties), "required": required})


_ASSET_NAME_NOTE = (
    "Note: Assets are stored by name (e.g., 'logo.svg', 'main.css') not by HTTP path."
)

TOOL_CATALOG: tuple[ToolSpec, ...] = (
    ToolSpec(
        name="explain_only",
        description=(
            "Provide an explanation or answer without performing any operations. Use this when the "
            "user is asking questions or needs information rather than code changes."
        ),
        input_schema=_schema(
            {"explanation": _string("The detailed explanation or answer to provide to the user")},
            ["explanation"],
        ),
    ),
    ToolSpec(
        name="create_script",
        description=(
            "Create a new JavaScript script file. Scripts are server-side code that handle HTTP "
            "requests using the routeRegistry API."
        ),
        input_schema=_schema(
            {
                "script_name": _string("The name of the script file (e.g., 'hello-world.js')"),
                "code": _string("The complete JavaScript code for the script, including init() function"),
                "message": _string("A brief explanation of what this script does"),
            },
            ["script_name", "code", "message"],
        ),
        category=ToolCategory.WRITE,
        action="create",
        target_type="script",
        target_field="script_name",
    ),
    ToolSpec(
        name="edit_script",
        description=(
            "Modify an existing JavaScript script file. REQUIRES USER CONFIRMATION before execution."
        ),
        input_schema=_schema(
            {
                "script_name": _string("The name of the script file to edit"),
                "original_code": _string("The original code section being replaced"),
                "code": _string("The new complete JavaScript code for the script"),
                "message": _string("A brief explanation of what changes were made"),
            },
            ["script_name", "original_code", "code", "message"],
        ),
        category=ToolCategory.WRITE,
        action="edit",
        target_type="script",
        target_field="script_name",
    ),
    ToolSpec(
        name="delete_script",
        description=(
            "Delete an existing JavaScript script file. REQUIRES USER CONFIRMATION before execution."
        ),
        input_schema=_schema(
            {
                "script_name": _string("The name of the script file to delete"),
                "message": _string("A brief explanation of why this script should be deleted"),
            },
            ["script_name", "message"],
        ),
        category=ToolCategory.DELETE,
        action="delete",
        target_type="script",
        target_field="script_name",
    ),
    ToolSpec(
        name="create_asset",
        description=(
            "Create a new asset file (CSS, SVG, HTML, JSON, etc.). Assets are static files served to "
            "clients. Note: Assets are stored by name (e.g., 'logo.svg', 'main.css') and must be "
            "registered to HTTP paths using routeRegistry.registerAssetRoute()."
        ),
        input_schema=_schema(
            {
                "script_name": _string(
                    "The name of the script that will own this asset (e.g., 'hello-world.js')"
                ),
                "asset_path": _string(
                    "The asset name (e.g., 'main.css', 'logo.svg'). Do not include path separators. "
                    "The asset will be registered to an HTTP path in the script's init() function."
                ),
                "code": _string("The complete content for the asset file"),
                "message": _string("A brief explanation of what this asset is for"),
            },
            ["script_name", "asset_path", "code", "message"],
        ),
        category=ToolCategory.WRITE,
        action="create",
        target_type="asset",
        target_field="asset_path",
    ),
    ToolSpec(
        name="edit_asset",
        description=(
            "Modify an existing asset file. REQUIRES USER CONFIRMATION before execution. "
            + _ASSET_NAME_NOTE
        ),
        input_schema=_schema(
            {
                "script_name": _string(
                    "The name of the script that owns this asset (e.g., 'hello-world.js')"
                ),
                "asset_path": _string(
                    "The asset name (e.g., 'main.css', 'logo.svg'). This is the name used to store "
                    "the asset, not the HTTP path."
                ),
                "original_code": _string("The original content section being replaced"),
                "code": _string("The new complete content for the asset file"),
                "message": _string("A brief explanation of what changes were made"),
            },
            ["script_name", "asset_path", "original_code", "code", "message"],
        ),
        category=ToolCategory.WRITE,
        action="edit",
        target_type="asset",
        target_field="asset_path",
    ),
    ToolSpec(
        name="delete_asset",
        description=(
            "Delete an existing asset file. REQUIRES USER CONFIRMATION before execution. "
            + _ASSET_NAME_NOTE
        ),
        input_schema=_schema(
            {
                "asset_path": _string(
                    "The asset name (e.g., 'main.css', 'logo.svg'). This is the name used to store "
                    "the asset, not the HTTP path."
                ),
                "message": _string("A brief explanation of why this asset should be deleted"),
            },
            ["asset_path", "message"],
        ),
        category=ToolCategory.DELETE,
        action="delete",
        target_type="asset",
        target_field="asset_path",
    ),
)

# Tools the assistant endpoint flags with ``requires_confirmation``.
CONFIRMATION_REQUIRED_TOOLS: frozenset[str] = frozenset(
    {"edit_script", "delete_script", "edit_asset", "delete_asset"}
)

_BY_NAME: Mapping[str, ToolSpec] = MappingProxyType({spec.name: spec for spec in TOOL_CATALOG})


def get_tool_spec(name: str) -> ToolSpec:
    """Return the catalog entry for ``name``.

    Raises:
        UnknownToolError: If the name is not in the catalog.
    """
    spec = _BY_NAME.get(name)
    if spec is None:
        raise UnknownToolError(tool_name=name)
    return spec


def tool_names() -> tuple[str, ...]:
    return tuple(_BY_NAME)


def required_fields(name: str) -> tuple[str, ...]:
    return get_tool_spec(name).required


def to_function_tools() -> list[dict[str, Any]]:
    """Return the whole catalog in the function tool format sent to the model."""
    return [spec.to_function_tool() for spec in TOOL_CATALOG]
