"""AI client, model endpoint, and tool wiring."""

from .client import AIClient, ClientSettings

__all__ = ["AIClient", "ClientSettings"]
