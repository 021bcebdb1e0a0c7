# tests/helpers.py
"""Test doubles shared across the suite."""

from __future__ import annotations

from typing import Any


class FakeSocket:
    """Records every frame sent to it."""

    def __init__(self) -> None:
        self.frames: list[dict[str, Any]] = []

    async def send_json(self, data: Any, mode: str = "text") -> None:
        self.frames.append(data)

    @property
    def events(self) -> list[str]:
        return [frame["event"] for frame in self.frames]

    def of(self, event: str) -> list[Any]:
        return [frame["data"] for frame in self.frames if frame["event"] == event]

    def clear(self) -> None:
        self.frames.clear()


class ClosedSocket(FakeSocket):
    """Behaves like a socket whose peer already went away."""

    async def send_json(self, data: Any, mode: str = "text") -> None:
        raise RuntimeError("Cannot call send once a close message has been sent.")
