"""Chatline: real-time direct messaging service."""

__version__ = "0.1.0"
