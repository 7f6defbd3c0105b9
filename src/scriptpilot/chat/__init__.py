"""Conversation history and session bookkeeping."""

from .message_model import Message, TextBlock, ToolResultBlock, ToolUseBlock
from .session import Session, SessionManager

__all__ = ["Message", "Session", "SessionManager", "TextBlock", "ToolResultBlock", "ToolUseBlock"]
