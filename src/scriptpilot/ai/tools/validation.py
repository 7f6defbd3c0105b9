"""Tool input validation against the catalog's JSON schemas."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Mapping, Sequence

import jsonschema

from .catalog import ToolSpec, get_tool_spec
from .errors import InvalidParameterError, MissingParameterError, ToolError

__all__ = ["validate_tool_input", "MAX_SCHEMA_ERRORS"]

MAX_SCHEMA_ERRORS = 10


@lru_cache(maxsize=None)
def _validator_for(name: str) -> jsonschema.Draft202012Validator:
    spec = get_tool_spec(name)
    schema = spec.to_dict()["input_schema"]
    return jsonschema.Draft202012Validator(schema)


def validate_tool_input(name: str, tool_input: Mapping[str, Any] | None) -> ToolSpec:
    """Check ``tool_input`` against the schema of tool ``name``.

    Missing required fields are reported together. A field is missing when
    it is absent or null; empty strings are valid content.

    Returns:
        The catalog entry for the tool.

    Raises:
        UnknownToolError: If the tool is not in the catalog.
        MissingParameterError: If required fields are absent or null.
        InvalidParameterError: If a field has the wrong type.
    """
    spec = get_tool_spec(name)
    payload = dict(tool_input or {})

    missing = tuple(field_name for field_name in spec.required if payload.get(field_name) is None)
    if missing:
        raise MissingParameterError(parameters=missing, details={"tool_name": name})

    issues: list[ToolError] = []
    for issue in _validator_for(name).iter_errors(payload):
        path = _format_schema_path(issue.absolute_path)
        issues.append(
            InvalidParameterError(
                message=f"{path}: {issue.message}" if path else issue.message,
                parameter=path or None,
                expected=str(issue.validator_value) if issue.validator == "type" else None,
                details={"tool_name": name},
            )
        )
        if len(issues) >= MAX_SCHEMA_ERRORS:
            break
    if issues:
        first = issues[0]
        if len(issues) > 1:
            first.details["additional_errors"] = [str(item.message) for item in issues[1:]]
        raise first
    return spec


def _format_schema_path(path: Sequence[Any]) -> str:
    if not path:
        return ""
    return ".".join(str(part) for part in path)
