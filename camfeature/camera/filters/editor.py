"""Caller-side filter selection for one captured still."""

from __future__ import annotations

from pathlib import Path

from ..capture.frame import PixelSurface
from ..storage.gallery import StorageSink, suggested_filename
from .color_transform import TransformKind, apply


class StillEditor:
    """Holds the original capture and the currently selected filter.

    Every selection is applied to the original, so switching from sepia to
    grayscale never yields grayscale-of-sepia.
    """

    def __init__(self, original: PixelSurface) -> None:
        self._original = original
        self._kind = TransformKind.NONE
        self._current = original

    @property
    def original(self) -> PixelSurface:
        return self._original

    @property
    def current(self) -> PixelSurface:
        return self._current

    @property
    def kind(self) -> TransformKind:
        return self._kind

    def select(self, kind: TransformKind) -> PixelSurface:
        if kind is not self._kind:
            self._current = apply(self._original, kind)
            self._kind = kind
        return self._current

    def suggested_filename(self) -> str:
        return suggested_filename(self._original.captured_at)

    async def save(self, sink: StorageSink) -> Path:
        return await sink.persist(self._current, self.suggested_filename())


__all__ = ["StillEditor"]
