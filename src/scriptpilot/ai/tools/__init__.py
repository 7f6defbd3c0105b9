"""Tool catalog, input validation and error types.

Example:
    from scriptpilot.ai.tools import get_tool_spec, validate_tool_input

    spec = validate_tool_input("create_script", {
        "script_name": "hello.js",
        "code": "function init() {}",
        "message": "Adds a hello route",
    })
"""

from .catalog import (
    CONFIRMATION_REQUIRED_TOOLS,
    TOOL_CATALOG,
    ToolCategory,
    ToolSpec,
    get_tool_spec,
    required_fields,
    to_function_tools,
    tool_names,
)
from .errors import ErrorCode, ToolError
from .validation import validate_tool_input

__all__ = [
    "CONFIRMATION_REQUIRED_TOOLS",
    "TOOL_CATALOG",
    "ToolCategory",
    "ToolSpec",
    "get_tool_spec",
    "required_fields",
    "to_function_tools",
    "tool_names",
    "ErrorCode",
    "ToolError",
    "validate_tool_input",
]
