"""Consumer-owned output targets a capture session binds to the device."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Optional

import numpy as np

from camfeature.core.logging_utils import LoggerLike, ensure_structured_logger

from ..hardware.base import PreviewOutput, Resolution, StillOutput
from .frame import FrameHandle, PreviewFrame


class PreviewSurface(PreviewOutput):
    """Receives preview frames from the backend thread and forwards them.

    ``on_frame`` is called on the backend thread; the owner is responsible
    for marshaling the frame to its own context.
    """

    def __init__(self, size: Resolution, on_frame: Callable[[PreviewFrame], None]) -> None:
        self._size = size
        self._on_frame: Optional[Callable[[PreviewFrame], None]] = on_frame
        self._frame_number = 0

    @property
    def size(self) -> Resolution:
        return self._size

    @property
    def frame_count(self) -> int:
        return self._frame_number

    def write_frame(self, data: np.ndarray) -> None:
        callback = self._on_frame
        if callback is None:
            return
        self._frame_number += 1
        frame = PreviewFrame(
            data=data,
            frame_number=self._frame_number,
            monotonic_time=time.perf_counter(),
            wall_time=time.time(),
            size=(int(data.shape[1]), int(data.shape[0])),
        )
        callback(frame)

    def detach(self) -> None:
        """Stop forwarding; frames written afterwards are dropped."""
        self._on_frame = None


class ImageReader(StillOutput):
    """Bounded queue of compressed stills, like the platform image reader.

    At most ``max_images`` handles may be unreleased at any time; further
    stills are refused until one is released.
    """

    def __init__(self, size: Resolution, *, max_images: int = 1, logger: LoggerLike = None) -> None:
        if max_images < 1:
            raise ValueError("max_images must be at least 1")
        self._size = size
        self._max_images = max_images
        self._lock = threading.Lock()
        self._queued: deque[FrameHandle] = deque()
        self._outstanding = 0
        self._closed = False
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)

    @property
    def size(self) -> Resolution:
        return self._size

    @property
    def max_images(self) -> int:
        return self._max_images

    @property
    def outstanding(self) -> int:
        """Handles produced by this reader and not yet released."""
        with self._lock:
            return self._outstanding

    @property
    def closed(self) -> bool:
        return self._closed

    def write_still(self, data: bytes, *, frame_number: int, timestamp_ns: int) -> bool:
        with self._lock:
            if self._closed:
                return False
            if self._outstanding >= self._max_images:
                self._logger.warning(
                    "Dropping still #%d: %d unreleased image(s), max_images=%d",
                    frame_number,
                    self._outstanding,
                    self._max_images,
                )
                return False
            handle = FrameHandle(
                data,
                frame_number=frame_number,
                timestamp_ns=timestamp_ns,
                size=self._size,
                on_release=self._on_release,
            )
            self._queued.append(handle)
            self._outstanding += 1
            return True

    def acquire_latest(self) -> Optional[FrameHandle]:
        """Take the newest queued still, releasing any older ones."""
        with self._lock:
            if not self._queued:
                return None
            latest = self._queued.pop()
            stale = list(self._queued)
            self._queued.clear()
        for handle in stale:
            handle.release()
        return latest

    def close(self) -> None:
        """Refuse further stills and release everything still queued."""
        with self._lock:
            self._closed = True
            queued = list(self._queued)
            self._queued.clear()
        for handle in queued:
            handle.release()

    def _on_release(self, _handle: FrameHandle) -> None:
        with self._lock:
            self._outstanding -= 1


__all__ = ["ImageReader", "PreviewSurface"]
