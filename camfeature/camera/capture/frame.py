"""Frame and pixel data structures."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import numpy as np

from ..defaults import CHANNEL_MAX
from ..errors import FrameReleasedError


@dataclass(frozen=True, slots=True)
class PreviewFrame:
    """Immutable preview frame pushed to a display target."""

    data: np.ndarray  # BGR image data
    frame_number: int  # Sequential frame number within the preview stream
    monotonic_time: float  # time.perf_counter() when the frame arrived
    wall_time: float  # Wall clock time (time.time())
    size: tuple[int, int]  # (width, height)


class FrameHandle:
    """Hardware-owned compressed still buffer.

    The buffer is valid until :meth:`release` is called, which must happen
    exactly once. The owning reader is told through ``on_release`` so it can
    accept the next frame.
    """

    __slots__ = ("_data", "_released", "_lock", "_on_release", "frame_number", "timestamp_ns", "size")

    def __init__(
        self,
        data: bytes,
        *,
        frame_number: int,
        timestamp_ns: int,
        size: tuple[int, int],
        on_release: Optional[Callable[["FrameHandle"], None]] = None,
    ) -> None:
        self._data: Optional[bytes] = bytes(data)
        self._released = False
        self._lock = threading.Lock()
        self._on_release = on_release
        self.frame_number = frame_number
        self.timestamp_ns = timestamp_ns
        self.size = size

    def __repr__(self) -> str:
        state = "released" if self._released else f"{len(self._data or b'')} bytes"
        return f"FrameHandle(#{self.frame_number}, {self.size[0]}x{self.size[1]}, {state})"

    def __enter__(self) -> "FrameHandle":
        return self

    def __exit__(self, *exc_info) -> None:
        if not self._released:
            self.release()

    @property
    def released(self) -> bool:
        return self._released

    def read_bytes(self) -> bytes:
        """Return the compressed bytes. Raises once the handle is released."""
        with self._lock:
            if self._released or self._data is None:
                raise FrameReleasedError(f"frame #{self.frame_number} already released")
            return self._data

    def release(self) -> None:
        with self._lock:
            if self._released:
                raise FrameReleasedError(f"frame #{self.frame_number} released twice")
            self._released = True
            self._data = None
            callback, self._on_release = self._on_release, None
        if callback is not None:
            callback(self)


@dataclass(eq=False)
class PixelSurface:
    """Owned RGBA ``uint8`` pixel buffer with shape ``(height, width, 4)``."""

    pixels: np.ndarray
    captured_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        pixels = self.pixels
        if not isinstance(pixels, np.ndarray):
            raise TypeError(f"pixels must be a numpy array, got {type(pixels).__name__}")
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise ValueError(f"expected (height, width, 4) RGBA array, got shape {pixels.shape}")
        if pixels.dtype != np.uint8:
            raise ValueError(f"expected uint8 samples, got {pixels.dtype}")
        if pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise ValueError("surface must have non-zero width and height")

    @classmethod
    def filled(
        cls,
        width: int,
        height: int,
        rgba: tuple[int, int, int, int] = (0, 0, 0, CHANNEL_MAX),
    ) -> "PixelSurface":
        pixels = np.empty((height, width, 4), dtype=np.uint8)
        pixels[...] = np.asarray(rgba, dtype=np.uint8)
        return cls(pixels)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def pixel(self, x: int, y: int) -> tuple[int, int, int, int]:
        r, g, b, a = (int(v) for v in self.pixels[y, x])
        return r, g, b, a

    def copy(self) -> "PixelSurface":
        return PixelSurface(self.pixels.copy(), captured_at=self.captured_at)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PixelSurface):
            return NotImplemented
        return self.pixels.shape == other.pixels.shape and bool(np.array_equal(self.pixels, other.pixels))

    __hash__ = None  # mutable buffer


__all__ = ["FrameHandle", "PixelSurface", "PreviewFrame"]
