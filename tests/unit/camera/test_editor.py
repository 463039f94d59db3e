"""Unit tests for StillEditor."""

from datetime import datetime
from pathlib import Path

import pytest

from camfeature.camera.capture.frame import PixelSurface
from camfeature.camera.filters.color_transform import TransformKind, apply
from camfeature.camera.filters.editor import StillEditor


class RecordingSink:
    def __init__(self):
        self.saved = []

    async def persist(self, surface, filename):
        self.saved.append((surface, filename))
        return Path("/gallery") / filename


@pytest.fixture
def original():
    surface = PixelSurface.filled(4, 4, (200, 100, 50, 255))
    surface.captured_at = datetime(2023, 12, 31, 23, 59, 58)
    return surface


def test_starts_unfiltered(original):
    editor = StillEditor(original)
    assert editor.kind is TransformKind.NONE
    assert editor.current is original


def test_selection_applies_to_original(original):
    editor = StillEditor(original)
    editor.select(TransformKind.SEPIA_TINT)
    gray = editor.select(TransformKind.GRAYSCALE)
    assert gray == apply(original, TransformKind.GRAYSCALE)
    assert gray != apply(apply(original, TransformKind.SEPIA_TINT), TransformKind.GRAYSCALE)
    assert editor.kind is TransformKind.GRAYSCALE


def test_reselecting_sepia_does_not_compound(original):
    editor = StillEditor(original)
    once = editor.select(TransformKind.SEPIA_TINT)
    editor.select(TransformKind.NONE)
    assert editor.select(TransformKind.SEPIA_TINT) == once
    assert editor.original.pixel(0, 0) == (200, 100, 50, 255)


def test_suggested_filename_uses_capture_time(original):
    assert StillEditor(original).suggested_filename() == "IMG_20231231_235958.jpg"


@pytest.mark.asyncio
async def test_save_persists_current(original):
    sink = RecordingSink()
    editor = StillEditor(original)
    editor.select(TransformKind.INVERT)
    path = await editor.save(sink)
    assert path == Path("/gallery/IMG_20231231_235958.jpg")
    surface, filename = sink.saved[0]
    assert surface == apply(original, TransformKind.INVERT)
    assert filename == "IMG_20231231_235958.jpg"
