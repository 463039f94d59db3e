"""Display targets that receive preview frames."""

from __future__ import annotations

from typing import Optional, Protocol

from .capture.frame import PreviewFrame


class DisplayTarget(Protocol):
    def push(self, frame: PreviewFrame) -> None:
        ...


class LatestFrameDisplay:
    """Keeps only the newest preview frame, like a single-buffer view."""

    def __init__(self) -> None:
        self.latest: Optional[PreviewFrame] = None
        self.frames_received = 0

    def push(self, frame: PreviewFrame) -> None:
        self.latest = frame
        self.frames_received += 1

    def clear(self) -> None:
        self.latest = None


__all__ = ["DisplayTarget", "LatestFrameDisplay"]
