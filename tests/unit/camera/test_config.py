"""Unit tests for camera configuration parsing and coercion."""

from pathlib import Path

import pytest

from camfeature.camera.config import (
    TEMPLATE_CONFIG_PATH,
    load_config,
    parse_config_lines,
    read_config_async,
    read_config_file,
)


class TestParseConfigLines:

    def test_parses_keys_comments_and_quotes(self):
        lines = [
            "# comment",
            "",
            "preview.resolution = 1280x720",
            "storage.base_path = \"/tmp/my gallery\"",
            "capture.timeout_ms = 2500  # inline",
            "garbage line without equals",
        ]
        assert parse_config_lines(lines) == {
            "preview.resolution": "1280x720",
            "storage.base_path": "/tmp/my gallery",
            "capture.timeout_ms": "2500",
        }

    def test_later_keys_win(self):
        assert parse_config_lines(["a = 1", "a = 2"]) == {"a": "2"}


class TestLoadConfig:

    def test_defaults(self):
        config = load_config()
        assert config.device.camera_id is None
        assert config.device.open_timeout_ms == 5000
        assert config.preview.resolution == (1920, 1080)
        assert config.preview.fps == 30.0
        assert config.capture.timeout_ms == 5000
        assert config.capture.still_resolution is None
        assert config.decoder.interpolation == "nearest"
        assert config.storage.base_path == Path("./gallery")
        assert config.storage.jpeg_quality == 100
        assert config.logging.level == "info"
        assert config.logging.file is None
        assert config.open_timeout == 5.0
        assert config.capture_timeout == 5.0

    def test_values_and_overrides(self):
        data = {
            "device.camera_id": "1",
            "preview.resolution": "1280, 720",
            "capture.timeout_ms": "750",
            "capture.still_resolution": "640x480",
            "decoder.interpolation": "LINEAR",
            "storage.jpeg_quality": "85",
        }
        config = load_config(data, {"storage.base_path": "/data/out", "logging.level": None})
        assert config.device.camera_id == "1"
        assert config.preview.resolution == (1280, 720)
        assert config.capture_timeout == 0.75
        assert config.capture.still_resolution == (640, 480)
        assert config.decoder.interpolation == "linear"
        assert config.storage.jpeg_quality == 85
        assert config.storage.base_path == Path("/data/out")
        assert config.logging.level == "info"

    @pytest.mark.parametrize(
        "key, value",
        [
            ("preview.resolution", "wide"),
            ("preview.resolution", "0x720"),
            ("capture.timeout_ms", "soon"),
            ("capture.timeout_ms", "-5"),
            ("decoder.interpolation", "lanczos"),
            ("preview.fps", "fast"),
        ],
    )
    def test_invalid_values_fall_back(self, key, value):
        default = load_config()
        config = load_config({key: value})
        assert config == default

    def test_quality_is_capped(self):
        assert load_config({"storage.jpeg_quality": "250"}).storage.jpeg_quality == 100


class TestReadConfig:

    def test_missing_file(self, tmp_path):
        assert read_config_file(tmp_path / "missing.txt") == {}

    def test_template_matches_defaults(self):
        assert load_config(read_config_file(TEMPLATE_CONFIG_PATH)) == load_config()

    @pytest.mark.asyncio
    async def test_async_read(self, tmp_path):
        path = tmp_path / "config.txt"
        path.write_text("preview.fps = 15\nlogging.level = debug\n", encoding="utf-8")
        data = await read_config_async(path)
        assert data == {"preview.fps": "15", "logging.level": "debug"}
        assert load_config(data).preview.fps == 15.0

    @pytest.mark.asyncio
    async def test_async_missing(self, tmp_path):
        assert await read_config_async(tmp_path / "nope.txt") == {}
