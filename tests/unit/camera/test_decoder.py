"""Unit tests for FrameDecoder."""

from datetime import datetime

import cv2
import numpy as np
import pytest

from camfeature.camera.capture.decoder import FrameDecoder
from camfeature.camera.capture.frame import FrameHandle
from camfeature.camera.errors import DecodeError


def png_bytes(width, height, bgr=(0, 0, 255)):
    image = np.empty((height, width, 3), dtype=np.uint8)
    image[...] = bgr
    ok, buffer = cv2.imencode(".png", image)
    assert ok
    return buffer.tobytes()


@pytest.fixture
def decoder():
    return FrameDecoder("nearest")


class TestDecode:

    def test_converts_to_rgba(self, decoder):
        surface = decoder.decode(png_bytes(4, 2, bgr=(30, 20, 10)), 4, 2)
        assert surface.size == (4, 2)
        assert surface.pixel(0, 0) == (10, 20, 30, 255)

    def test_resizes_to_target(self, decoder):
        surface = decoder.decode(png_bytes(4, 2), 16, 9)
        assert surface.size == (16, 9)
        assert surface.pixel(15, 8) == (255, 0, 0, 255)

    def test_full_hd_target(self, decoder):
        assert decoder.decode(png_bytes(640, 480), 1920, 1080).size == (1920, 1080)

    def test_output_is_deterministic(self):
        raw = png_bytes(7, 5)
        linear = FrameDecoder("linear")
        assert linear.decode(raw, 13, 11) == linear.decode(raw, 13, 11)

    def test_sets_captured_at(self, decoder):
        stamp = datetime(2024, 1, 2, 3, 4, 5)
        assert decoder.decode(png_bytes(2, 2), 2, 2, captured_at=stamp).captured_at == stamp

    def test_empty_input(self, decoder):
        with pytest.raises(DecodeError):
            decoder.decode(b"", 4, 4)

    def test_malformed_input(self, decoder):
        with pytest.raises(DecodeError):
            decoder.decode(b"\x00\x01 definitely not an image", 4, 4)

    @pytest.mark.parametrize("size", [(0, 4), (4, 0), (-1, 3)])
    def test_non_positive_target(self, decoder, size):
        with pytest.raises(ValueError):
            decoder.decode(png_bytes(2, 2), *size)

    def test_unknown_interpolation(self):
        with pytest.raises(ValueError):
            FrameDecoder("bicubic-ish")


class TestDecodeFrame:

    def test_releases_handle_on_success(self, decoder):
        handle = FrameHandle(png_bytes(3, 3), frame_number=1, timestamp_ns=0, size=(3, 3))
        surface = decoder.decode_frame(handle, 3, 3)
        assert handle.released
        assert surface.size == (3, 3)

    def test_releases_handle_on_decode_error(self, decoder):
        released = []
        handle = FrameHandle(b"garbage", frame_number=1, timestamp_ns=0, size=(3, 3), on_release=released.append)
        with pytest.raises(DecodeError):
            decoder.decode_frame(handle, 3, 3)
        assert released == [handle]
