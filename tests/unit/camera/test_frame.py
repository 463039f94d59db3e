"""Unit tests for frame handles, pixel surfaces and the still image reader."""

import numpy as np
import pytest

from camfeature.camera.capture.frame import FrameHandle, PixelSurface
from camfeature.camera.capture.surfaces import ImageReader, PreviewSurface
from camfeature.camera.errors import FrameReleasedError


class TestFrameHandle:

    def test_read_then_release(self):
        released = []
        handle = FrameHandle(b"abc", frame_number=1, timestamp_ns=0, size=(2, 2), on_release=released.append)
        assert handle.read_bytes() == b"abc"
        handle.release()
        assert handle.released
        assert released == [handle]

    def test_read_after_release_raises(self):
        handle = FrameHandle(b"abc", frame_number=1, timestamp_ns=0, size=(2, 2))
        handle.release()
        with pytest.raises(FrameReleasedError):
            handle.read_bytes()

    def test_double_release_raises_and_notifies_once(self):
        released = []
        handle = FrameHandle(b"abc", frame_number=3, timestamp_ns=0, size=(2, 2), on_release=released.append)
        handle.release()
        with pytest.raises(FrameReleasedError):
            handle.release()
        assert len(released) == 1

    def test_context_manager_releases(self):
        with FrameHandle(b"x", frame_number=1, timestamp_ns=0, size=(1, 1)) as handle:
            assert not handle.released
        assert handle.released

    def test_context_manager_tolerates_manual_release(self):
        with FrameHandle(b"x", frame_number=1, timestamp_ns=0, size=(1, 1)) as handle:
            handle.release()
        assert handle.released


class TestPixelSurface:

    def test_filled_dimensions(self):
        surface = PixelSurface.filled(4, 3, (1, 2, 3, 4))
        assert surface.size == (4, 3)
        assert surface.pixel(3, 2) == (1, 2, 3, 4)

    @pytest.mark.parametrize(
        "pixels",
        [
            np.zeros((2, 2, 3), dtype=np.uint8),
            np.zeros((2, 2, 4), dtype=np.float32),
            np.zeros((0, 2, 4), dtype=np.uint8),
        ],
    )
    def test_rejects_invalid_buffers(self, pixels):
        with pytest.raises(ValueError):
            PixelSurface(pixels)

    def test_equality_compares_dimensions_and_samples(self):
        a = PixelSurface.filled(2, 3, (9, 9, 9, 255))
        assert a == a.copy()
        assert a != PixelSurface.filled(3, 2, (9, 9, 9, 255))
        b = a.copy()
        b.pixels[0, 0, 0] = 10
        assert a != b


class TestImageReader:

    def test_refuses_second_unreleased_frame(self):
        reader = ImageReader((4, 4), max_images=1)
        assert reader.write_still(b"one", frame_number=1, timestamp_ns=1)
        assert not reader.write_still(b"two", frame_number=2, timestamp_ns=2)
        handle = reader.acquire_latest()
        assert handle.read_bytes() == b"one"
        assert reader.outstanding == 1
        handle.release()
        assert reader.outstanding == 0
        assert reader.write_still(b"three", frame_number=3, timestamp_ns=3)

    def test_acquire_latest_releases_older(self):
        reader = ImageReader((4, 4), max_images=3)
        for n in range(3):
            reader.write_still(bytes([n]), frame_number=n, timestamp_ns=n)
        latest = reader.acquire_latest()
        assert latest.frame_number == 2
        assert reader.outstanding == 1
        assert reader.acquire_latest() is None

    def test_close_releases_queued_and_refuses(self):
        reader = ImageReader((4, 4))
        reader.write_still(b"one", frame_number=1, timestamp_ns=1)
        reader.close()
        assert reader.outstanding == 0
        assert reader.closed
        assert not reader.write_still(b"two", frame_number=2, timestamp_ns=2)

    def test_invalid_depth(self):
        with pytest.raises(ValueError):
            ImageReader((4, 4), max_images=0)


class TestPreviewSurface:

    def test_forwards_until_detached(self):
        received = []
        surface = PreviewSurface((4, 2), received.append)
        frame = np.zeros((2, 4, 3), dtype=np.uint8)
        surface.write_frame(frame)
        surface.write_frame(frame)
        surface.detach()
        surface.write_frame(frame)
        assert [f.frame_number for f in received] == [1, 2]
        assert received[0].size == (4, 2)
