"""File-system gallery that stores filtered stills as JPEG."""

from __future__ import annotations

import asyncio
import contextlib
import os
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

import aiofiles
import cv2

from camfeature.core.logging_utils import LoggerLike, ensure_structured_logger

from ..capture.frame import PixelSurface
from ..defaults import (
    DEFAULT_JPEG_QUALITY,
    DEFAULT_STORAGE_BASE_PATH,
    FILENAME_PREFIX,
    FILENAME_SUFFIX,
    FILENAME_TIME_FORMAT,
)
from ..errors import StorageIOError


class StorageSink(Protocol):
    async def persist(self, surface: PixelSurface, filename: str) -> Path:
        ...


def suggested_filename(captured_at: Optional[datetime] = None) -> str:
    """``IMG_<yyyyMMdd_HHmmss>.jpg`` for ``captured_at`` (default: now)."""
    stamp = (captured_at or datetime.now()).strftime(FILENAME_TIME_FORMAT)
    return f"{FILENAME_PREFIX}{stamp}{FILENAME_SUFFIX}"


def encode_jpeg(surface: PixelSurface, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    bgr = cv2.cvtColor(surface.pixels, cv2.COLOR_RGBA2BGR)
    ok, buffer = cv2.imencode(".jpg", bgr, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise StorageIOError(f"JPEG encoding failed for {surface.width}x{surface.height} surface")
    return buffer.tobytes()


class GalleryWriter:
    """Writes surfaces under ``base_path``, never overwriting an existing file."""

    def __init__(
        self,
        base_path: Path = DEFAULT_STORAGE_BASE_PATH,
        *,
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
        logger: LoggerLike = None,
    ) -> None:
        if not 1 <= jpeg_quality <= 100:
            raise ValueError(f"jpeg_quality must be in 1..100, got {jpeg_quality}")
        self.base_path = Path(base_path)
        self.jpeg_quality = jpeg_quality
        self._logger = ensure_structured_logger(logger, fallback_name="camera.storage")
        self._lock = asyncio.Lock()

    async def persist(self, surface: PixelSurface, filename: str) -> Path:
        """Encode and store ``surface``; returns the final path.

        Raises:
            StorageIOError: encoding failed or the file could not be written.
        """
        name = Path(filename).name
        if not name or name in (".", ".."):
            raise StorageIOError(f"invalid filename {filename!r}")

        try:
            data = await asyncio.to_thread(encode_jpeg, surface, self.jpeg_quality)
        except cv2.error as exc:
            raise StorageIOError(f"JPEG encoding failed: {exc}") from exc

        # Name selection and rename happen under one lock so two saves never
        # pick the same free name.
        async with self._lock:
            tmp_path: Optional[Path] = None
            try:
                await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)
                target = await asyncio.to_thread(self._unique_path, name)
                tmp_path = target.with_name(f".{target.name}.tmp")
                async with aiofiles.open(tmp_path, "wb") as f:
                    await f.write(data)
                await asyncio.to_thread(os.replace, tmp_path, target)
            except OSError as exc:
                self._logger.error("Failed to store %s in %s: %s", name, self.base_path, exc)
                if tmp_path is not None:
                    await asyncio.to_thread(_discard, tmp_path)
                raise StorageIOError(f"could not write {name} to {self.base_path}: {exc}") from exc

        self._logger.info("Saved %s (%d bytes)", target, len(data))
        return target

    def _unique_path(self, name: str) -> Path:
        candidate = self.base_path / name
        stem, suffix = candidate.stem, candidate.suffix
        index = 1
        while candidate.exists():
            candidate = self.base_path / f"{stem}_{index}{suffix}"
            index += 1
        return candidate


def _discard(path: Path) -> None:
    with contextlib.suppress(OSError):
        path.unlink()


__all__ = ["GalleryWriter", "StorageSink", "encode_jpeg", "suggested_filename"]
