"""Standardized error types for the assistant tool pipeline.

This module provides a hierarchy of error classes with consistent
JSON serialization. Tool failures are converted into tool-result content
for the model; orchestration failures are surfaced to the operator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------

class ErrorCode:
    """Constants for error codes used in tool responses."""

    # Tool contract errors
    UNKNOWN_TOOL = "unknown_tool"
    INVALID_PARAMETER = "invalid_parameter"
    MISSING_PARAMETER = "missing_parameter"

    # Approval/preview errors
    UNAPPROVED_CHANGE = "unapproved_change"
    PREVIEW_BUSY = "preview_busy"
    NO_PENDING_APPROVAL = "no_pending_approval"

    # Collaborator errors
    STORAGE_ERROR = "storage_error"
    BACKEND_ERROR = "backend_error"
    BACKEND_NOT_CONFIGURED = "backend_not_configured"

    # Session/loop errors
    TURN_LIMIT_REACHED = "turn_limit_reached"
    CONVERSATION_BUSY = "conversation_busy"
    INVALID_TRANSITION = "invalid_transition"
    EMPTY_PROMPT = "empty_prompt"

    # General errors
    INTERNAL_ERROR = "internal_error"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------

@dataclass
class ToolError(Exception):
    """Base exception class for all pipeline errors.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
        suggestion: Actionable guidance for recovery.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for JSON responses."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def as_tool_content(self) -> str:
        """Render the error as tool-result content the model can act on."""
        text = f"Error: {self.message}"
        if self.suggestion:
            text = f"{text}. {self.suggestion}"
        return text

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


# -----------------------------------------------------------------------------
# Tool Contract Errors
# -----------------------------------------------------------------------------

@dataclass
class UnknownToolError(ToolError):
    """Error raised when the model requests a tool that is not in the catalog."""

    error_code: str = field(default=ErrorCode.UNKNOWN_TOOL)
    message: str = field(default="Unknown tool")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    tool_name: str | None = field(default=None)

    def __post_init__(self) -> None:
        if self.tool_name and self.message == "Unknown tool":
            self.message = f"Unknown tool: {self.tool_name}"
        ToolError.__post_init__(self)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.tool_name is not None:
            result["tool_name"] = self.tool_name
        return result


@dataclass
class InvalidParameterError(ToolError):
    """Error raised when a parameter has an invalid value."""

    error_code: str = field(default=ErrorCode.INVALID_PARAMETER)
    message: str = field(default="Invalid parameter value")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Check the tool's input schema and retry")

    parameter: str | None = field(default=None)
    expected: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.parameter is not None:
            result["parameter"] = self.parameter
        if self.expected is not None:
            result["expected"] = self.expected
        return result


@dataclass
class MissingParameterError(ToolError):
    """Error raised when one or more required parameters are missing."""

    error_code: str = field(default=ErrorCode.MISSING_PARAMETER)
    message: str = field(default="Required parameter is missing")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Provide every required field and call the tool again")

    parameters: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        if self.parameters and self.message == "Required parameter is missing":
            joined = ", ".join(self.parameters)
            self.message = f"Missing required field(s): {joined}"
        ToolError.__post_init__(self)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.parameters:
            result["parameters"] = list(self.parameters)
        return result


# -----------------------------------------------------------------------------
# Approval/Preview Errors
# -----------------------------------------------------------------------------

@dataclass
class UnapprovedChangeError(ToolError):
    """Error raised when a commit is attempted without a recorded operator approval."""

    error_code: str = field(default=ErrorCode.UNAPPROVED_CHANGE)
    message: str = field(default="Change has not been approved by the operator")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    tool_use_id: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.tool_use_id is not None:
            result["tool_use_id"] = self.tool_use_id
        return result


@dataclass
class PreviewBusyError(ToolError):
    """Error raised when a second tool use is presented while one awaits approval."""

    error_code: str = field(default=ErrorCode.PREVIEW_BUSY)
    message: str = field(default="Another change is already awaiting approval")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Approve or reject the pending change first")

    pending_tool_use_id: str | None = field(default=None)


@dataclass
class NoPendingApprovalError(ToolError):
    """Error raised when approve/reject names a tool use that is not pending."""

    error_code: str = field(default=ErrorCode.NO_PENDING_APPROVAL)
    message: str = field(default="No pending action")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    tool_use_id: str | None = field(default=None)


# -----------------------------------------------------------------------------
# Collaborator Errors
# -----------------------------------------------------------------------------

@dataclass
class BackingStoreError(ToolError):
    """Error raised when a Backing Store call fails (network or storage)."""

    error_code: str = field(default=ErrorCode.STORAGE_ERROR)
    message: str = field(default="Backing store request failed")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    operation: str | None = field(default=None)
    target: str | None = field(default=None)
    status_code: int | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.operation is not None:
            result["operation"] = self.operation
        if self.target is not None:
            result["target"] = self.target
        if self.status_code is not None:
            result["status_code"] = self.status_code
        return result


@dataclass
class ModelBackendError(ToolError):
    """Error raised when the Model Backend is unreachable or answers with a failure status."""

    error_code: str = field(default=ErrorCode.BACKEND_ERROR)
    message: str = field(default="API request failed")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    status_code: int | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.status_code is not None:
            result["status_code"] = self.status_code
        return result


@dataclass
class BackendNotConfiguredError(ModelBackendError):
    """Error raised when the model endpoint has no API key."""

    error_code: str = field(default=ErrorCode.BACKEND_NOT_CONFIGURED)
    message: str = field(default="Model API key not configured")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(
        default="Set SCRIPTPILOT_API_KEY or store api_key in the settings file"
    )
    status_code: int | None = field(default=400)


# -----------------------------------------------------------------------------
# Session/Loop Errors
# -----------------------------------------------------------------------------

@dataclass
class TurnLimitReachedError(ToolError):
    """Error raised when an operator prompt is submitted to an exhausted session."""

    error_code: str = field(default=ErrorCode.TURN_LIMIT_REACHED)
    message: str = field(default="Turn limit reached")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Start a new session to continue")

    max_turns: int | None = field(default=None)

    def __post_init__(self) -> None:
        if self.max_turns is not None and self.message == "Turn limit reached":
            self.message = f"Turn limit reached ({self.max_turns} turns per session)"
        ToolError.__post_init__(self)


@dataclass
class TurnLimitExceededError(ModelBackendError):
    """Server-side rejection of a request whose history already spent the turn budget."""

    error_code: str = field(default=ErrorCode.TURN_LIMIT_REACHED)
    message: str = field(default="Turn limit reached")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Start a new session to continue")
    status_code: int | None = field(default=429)


@dataclass
class EmptyPromptError(ToolError):
    """Error raised for blank operator prompts."""

    error_code: str = field(default=ErrorCode.EMPTY_PROMPT)
    message: str = field(default="Please enter a prompt")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")


@dataclass
class ConversationBusyError(ToolError):
    """Error raised when a second request is issued while one is outstanding."""

    error_code: str = field(default=ErrorCode.CONVERSATION_BUSY)
    message: str = field(default="A request is already in progress")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Wait for the current response or approval to resolve")


@dataclass
class InvalidTransitionError(ToolError):
    """Error raised when the conversation state machine receives an illegal event."""

    error_code: str = field(default=ErrorCode.INVALID_TRANSITION)
    message: str = field(default="Invalid conversation state transition")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    state: str | None = field(default=None)
    event: str | None = field(default=None)

    def __post_init__(self) -> None:
        if self.state and self.event and self.message == "Invalid conversation state transition":
            self.message = f"Cannot handle {self.event} while {self.state}"
        ToolError.__post_init__(self)


# -----------------------------------------------------------------------------
# Utility Functions
# -----------------------------------------------------------------------------

def error_from_dict(data: Mapping[str, Any]) -> ToolError:
    """Reconstruct a ToolError from its dictionary representation.

    Args:
        data: Dictionary with 'error' (code) and 'message' keys.

    Returns:
        ToolError instance (base class, not specific subclass).
    """
    return ToolError(
        error_code=data.get("error", ErrorCode.INTERNAL_ERROR),
        message=data.get("message", "Unknown error"),
        details=dict(data.get("details", {})),
        suggestion=data.get("suggestion", ""),
    )


__all__ = [
    "ErrorCode",
    "ToolError",
    "UnknownToolError",
    "InvalidParameterError",
    "MissingParameterError",
    "UnapprovedChangeError",
    "PreviewBusyError",
    "NoPendingApprovalError",
    "BackingStoreError",
    "ModelBackendError",
    "BackendNotConfiguredError",
    "TurnLimitReachedError",
    "TurnLimitExceededError",
    "EmptyPromptError",
    "ConversationBusyError",
    "InvalidTransitionError",
    "error_from_dict",
]
