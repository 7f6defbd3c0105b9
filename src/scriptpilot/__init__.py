"""Approval-gated assistant for editing scripts and assets on a hosting platform."""

__version__ = "0.1.0"
