"""Data access layer."""

from .chat_repo import ChatStore

__all__ = ["ChatStore"]
