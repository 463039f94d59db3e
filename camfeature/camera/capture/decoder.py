"""Still-buffer decoding into RGBA pixel surfaces."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import cv2
import numpy as np

from camfeature.core.logging_utils import LoggerLike, ensure_structured_logger

from ..defaults import DEFAULT_INTERPOLATION
from ..errors import DecodeError
from .frame import FrameHandle, PixelSurface

INTERPOLATIONS = {
    "nearest": cv2.INTER_NEAREST,
    "linear": cv2.INTER_LINEAR,
}


class FrameDecoder:
    """Decode compressed stills and resize them to a target size.

    The same interpolation is used for every frame so output is
    deterministic for a given input and target size.
    """

    def __init__(self, interpolation: str = DEFAULT_INTERPOLATION, *, logger: LoggerLike = None) -> None:
        key = interpolation.strip().lower()
        if key not in INTERPOLATIONS:
            raise ValueError(f"Unknown interpolation '{interpolation}', expected one of {sorted(INTERPOLATIONS)}")
        self._interpolation_name = key
        self._interpolation = INTERPOLATIONS[key]
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)

    @property
    def interpolation(self) -> str:
        return self._interpolation_name

    def decode(
        self,
        raw: bytes,
        target_width: int,
        target_height: int,
        *,
        captured_at: Optional[datetime] = None,
    ) -> PixelSurface:
        """Decode ``raw`` and return a ``target_width`` x ``target_height`` surface.

        Raises:
            DecodeError: ``raw`` is empty or not a decodable image.
            ValueError: the target size is not positive.
        """
        if target_width <= 0 or target_height <= 0:
            raise ValueError(f"target size must be positive, got {target_width}x{target_height}")
        if not raw:
            raise DecodeError("empty still buffer")

        buffer = np.frombuffer(raw, dtype=np.uint8)
        try:
            bgr = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        except cv2.error as exc:
            raise DecodeError(f"still buffer could not be decoded: {exc}") from exc
        if bgr is None or bgr.size == 0:
            raise DecodeError(f"still buffer of {len(raw)} bytes is not a decodable image")

        rgba = cv2.cvtColor(bgr, cv2.COLOR_BGR2RGBA)
        source_height, source_width = rgba.shape[:2]
        if (source_width, source_height) != (target_width, target_height):
            rgba = cv2.resize(rgba, (target_width, target_height), interpolation=self._interpolation)
            self._logger.debug(
                "Resized still %dx%d -> %dx%d (%s)",
                source_width,
                source_height,
                target_width,
                target_height,
                self._interpolation_name,
            )
        return PixelSurface(np.ascontiguousarray(rgba, dtype=np.uint8), captured_at=captured_at)

    def decode_frame(
        self,
        handle: FrameHandle,
        target_width: int,
        target_height: int,
        *,
        captured_at: Optional[datetime] = None,
    ) -> PixelSurface:
        """Extract the bytes of ``handle``, release it, then decode."""
        try:
            raw = handle.read_bytes()
        finally:
            handle.release()
        return self.decode(raw, target_width, target_height, captured_at=captured_at)


__all__ = ["FrameDecoder", "INTERPOLATIONS"]
