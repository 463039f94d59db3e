"""Typed configuration helpers for the camera stack."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import aiofiles

from camfeature.core.logging_utils import LoggerLike, ensure_structured_logger, get_module_logger

from .defaults import (
    DEFAULT_CAPTURE_TIMEOUT_MS,
    DEFAULT_INTERPOLATION,
    DEFAULT_JPEG_QUALITY,
    DEFAULT_LOG_LEVEL,
    DEFAULT_OPEN_TIMEOUT_MS,
    DEFAULT_PREVIEW_FPS,
    DEFAULT_PREVIEW_RESOLUTION,
    DEFAULT_STORAGE_BASE_PATH,
)

Resolution = Tuple[int, int]

TEMPLATE_CONFIG_PATH = Path(__file__).with_name("config.txt")

logger = get_module_logger("camera.config")


@dataclass(slots=True)
class DeviceSettings:
    camera_id: Optional[str]
    open_timeout_ms: int


@dataclass(slots=True)
class PreviewSettings:
    resolution: Resolution
    fps: float


@dataclass(slots=True)
class CaptureSettings:
    timeout_ms: int
    still_resolution: Optional[Resolution]


@dataclass(slots=True)
class DecoderSettings:
    interpolation: str


@dataclass(slots=True)
class StorageSettings:
    base_path: Path
    jpeg_quality: int


@dataclass(slots=True)
class LoggingSettings:
    level: str
    file: Optional[Path]


@dataclass(slots=True)
class CameraConfig:
    device: DeviceSettings
    preview: PreviewSettings
    capture: CaptureSettings
    decoder: DecoderSettings
    storage: StorageSettings
    logging: LoggingSettings

    @property
    def open_timeout(self) -> float:
        return self.device.open_timeout_ms / 1000.0

    @property
    def capture_timeout(self) -> float:
        return self.capture.timeout_ms / 1000.0


# ---------------------------------------------------------------------------
# Reading


def parse_config_lines(lines: Iterable[str]) -> Dict[str, str]:
    """Parse ``key = value`` lines. ``#`` starts a comment; quotes are stripped."""
    config: Dict[str, str] = {}

    for raw_line in lines:
        line = raw_line.strip()
        if not line or line.startswith('#'):
            continue
        if '=' not in line:
            continue

        key, value = line.split('=', 1)
        key = key.strip()
        value = value.strip()

        if '#' in value:
            value = value.split('#')[0].strip()

        if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
            value = value[1:-1]

        config[key] = value

    return config


def read_config_file(config_path: Path) -> Dict[str, str]:
    """Read a config file; a missing or unreadable file yields an empty dict."""
    if not config_path.exists():
        return {}
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            return parse_config_lines(f)
    except OSError as e:
        logger.error("Failed to read config %s: %s", config_path, e)
        return {}


async def read_config_async(config_path: Path) -> Dict[str, str]:
    """Async version of :func:`read_config_file`."""
    if not await asyncio.to_thread(config_path.exists):
        return {}
    try:
        lines: list[str] = []
        async with aiofiles.open(config_path, 'r', encoding='utf-8') as f:
            async for line in f:
                lines.append(line)
    except OSError as e:
        logger.error("Failed to read config %s: %s", config_path, e)
        return {}
    return parse_config_lines(lines)


# ---------------------------------------------------------------------------
# Public API


def load_config(
    data: Optional[Mapping[str, Any]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    logger: LoggerLike = None,
) -> CameraConfig:
    """Build a typed config from parsed key/value data + optional overrides."""

    log = ensure_structured_logger(logger, fallback_name=__name__)
    merged: Dict[str, Any] = dict(data or {})
    if overrides:
        for key, value in overrides.items():
            if value is not None:
                merged[key] = value

    device = DeviceSettings(
        camera_id=_coerce_optional_str(merged, ("device.camera_id", "camera_id"), default=None),
        open_timeout_ms=_coerce_positive_int(
            merged, ("device.open_timeout_ms",), DEFAULT_OPEN_TIMEOUT_MS, logger=log
        ),
    )

    preview = PreviewSettings(
        resolution=_coerce_resolution(
            merged,
            ("preview.resolution", "preview_resolution"),
            default=DEFAULT_PREVIEW_RESOLUTION,
            logger=log,
        ),
        fps=_coerce_float(merged, ("preview.fps", "preview_fps"), DEFAULT_PREVIEW_FPS, logger=log),
    )

    capture = CaptureSettings(
        timeout_ms=_coerce_positive_int(merged, ("capture.timeout_ms",), DEFAULT_CAPTURE_TIMEOUT_MS, logger=log),
        still_resolution=_coerce_optional_resolution(merged, ("capture.still_resolution",), logger=log),
    )

    interpolation = _coerce_str(merged, ("decoder.interpolation",), DEFAULT_INTERPOLATION).lower()
    if interpolation not in ("nearest", "linear"):
        log.debug("Unknown interpolation %r, using default %s", interpolation, DEFAULT_INTERPOLATION)
        interpolation = DEFAULT_INTERPOLATION
    decoder = DecoderSettings(interpolation=interpolation)

    quality = _coerce_positive_int(merged, ("storage.jpeg_quality",), DEFAULT_JPEG_QUALITY, logger=log)
    storage = StorageSettings(
        base_path=_coerce_path(merged, ("storage.base_path", "output_dir"), DEFAULT_STORAGE_BASE_PATH),
        jpeg_quality=min(quality, 100),
    )

    logging_settings = LoggingSettings(
        level=_coerce_str(merged, ("logging.level", "log_level"), DEFAULT_LOG_LEVEL),
        file=_coerce_optional_path(merged, ("logging.file", "log_file")),
    )

    return CameraConfig(
        device=device,
        preview=preview,
        capture=capture,
        decoder=decoder,
        storage=storage,
        logging=logging_settings,
    )


# ---------------------------------------------------------------------------
# Internal helpers


def _first_present(data: Mapping[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _coerce_optional_str(data: Mapping[str, Any], keys: Tuple[str, ...], default: Optional[str]) -> Optional[str]:
    raw = _first_present(data, keys)
    if raw is None:
        return default
    text = str(raw).strip()
    return text if text else default


def _coerce_str(data: Mapping[str, Any], keys: Tuple[str, ...], default: str) -> str:
    raw = _first_present(data, keys)
    if raw is None:
        return default
    text = str(raw).strip()
    return text or default


def _coerce_positive_int(data: Mapping[str, Any], keys: Tuple[str, ...], default: int, *, logger) -> int:
    raw = _first_present(data, keys)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.debug("Failed to parse int from %r, using default %s", raw, default)
        return default
    if value <= 0:
        logger.debug("Non-positive value %r, using default %s", raw, default)
        return default
    return value


def _coerce_float(data: Mapping[str, Any], keys: Tuple[str, ...], default: float, *, logger) -> float:
    raw = _first_present(data, keys)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.debug("Failed to parse float from %r, using default %s", raw, default)
        return default
    return value if value > 0 else default


def _coerce_resolution(
    data: Mapping[str, Any],
    keys: Tuple[str, ...],
    *,
    default: Resolution,
    logger,
) -> Resolution:
    raw = _first_present(data, keys)
    if raw is None or raw == "":
        return default
    try:
        return _parse_resolution(raw)
    except (TypeError, ValueError):
        logger.debug("Failed to parse resolution from %r, using default %s", raw, default)
        return default


def _coerce_optional_resolution(data: Mapping[str, Any], keys: Tuple[str, ...], *, logger) -> Optional[Resolution]:
    raw = _first_present(data, keys)
    if raw is None or raw == "":
        return None
    try:
        return _parse_resolution(raw)
    except (TypeError, ValueError):
        logger.debug("Failed to parse resolution from %r, ignoring", raw)
        return None


def _parse_resolution(raw: Any) -> Resolution:
    if isinstance(raw, (list, tuple)) and len(raw) == 2:
        width, height = int(raw[0]), int(raw[1])
    elif isinstance(raw, str) and "x" in raw.lower():
        w_text, h_text = raw.lower().split("x", 1)
        width, height = int(w_text.strip()), int(h_text.strip())
    # Allow comma separated
    elif isinstance(raw, str) and "," in raw:
        w_text, h_text = raw.split(",", 1)
        width, height = int(w_text.strip()), int(h_text.strip())
    else:
        raise ValueError(f"Unsupported resolution value: {raw!r}")
    if width <= 0 or height <= 0:
        raise ValueError(f"Resolution must be positive: {raw!r}")
    return width, height


def _coerce_path(data: Mapping[str, Any], keys: Tuple[str, ...], default: Path) -> Path:
    raw = _first_present(data, keys)
    if raw is None or str(raw).strip() == "":
        return default
    return Path(str(raw).strip()).expanduser()


def _coerce_optional_path(data: Mapping[str, Any], keys: Tuple[str, ...]) -> Optional[Path]:
    raw = _first_present(data, keys)
    if raw is None or str(raw).strip() == "":
        return None
    return Path(str(raw).strip()).expanduser()


__all__ = [
    "CameraConfig",
    "CaptureSettings",
    "DecoderSettings",
    "DeviceSettings",
    "LoggingSettings",
    "PreviewSettings",
    "StorageSettings",
    "TEMPLATE_CONFIG_PATH",
    "load_config",
    "parse_config_lines",
    "read_config_async",
    "read_config_file",
]
