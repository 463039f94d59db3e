"""Run one preview -> capture -> filter -> save cycle from the command line."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from camfeature.camera.config import TEMPLATE_CONFIG_PATH, load_config, read_config_async
from camfeature.camera.core.controller import CameraController
from camfeature.camera.display import LatestFrameDisplay
from camfeature.camera.errors import CameraError
from camfeature.camera.filters import StillEditor, TransformKind, parse_transform_kind
from camfeature.camera.hardware import BACKENDS
from camfeature.camera.permissions import StaticPermissionGate
from camfeature.camera.storage import GalleryWriter
from camfeature.core.logging_config import configure_logging
from camfeature.core.logging_utils import get_module_logger

LOG_LEVELS: dict[str, int] = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

logger = get_module_logger("cli")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="camfeature",
        description="Capture one still, apply a color filter and save it",
    )
    parser.add_argument(
        "--backend",
        choices=sorted(BACKENDS),
        default="simulated",
        help="Camera driver to use",
    )
    parser.add_argument(
        "--filter",
        dest="filter_name",
        default="none",
        help="Color filter: none, grayscale/gray, sepia, invert",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Directory where the still is saved (overrides storage.base_path)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=TEMPLATE_CONFIG_PATH,
        help="key = value configuration file",
    )
    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS.keys()),
        default=None,
        help="Logging verbosity (overrides logging.level)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Optional path for a rotating log file",
    )
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> Path:
    kind = parse_transform_kind(args.filter_name)
    data = await read_config_async(args.config)
    config = load_config(
        data,
        {
            "storage.base_path": args.output_dir,
            "logging.level": args.log_level,
            "logging.file": args.log_file,
        },
    )
    configure_logging(config.logging.level, log_file=config.logging.file)

    backend = BACKENDS[args.backend]()
    controller = CameraController(backend, StaticPermissionGate(True), config=config)
    display = LatestFrameDisplay()
    gallery = GalleryWriter(config.storage.base_path, jpeg_quality=config.storage.jpeg_quality)

    try:
        descriptor = await controller.request_start(display)
        logger.info("Preview running on camera %s at %dx%d", descriptor.camera_id, descriptor.width, descriptor.height)
        surface = await controller.capture_still()
    finally:
        await controller.stop()
    logger.info("Preview relayed %d frame(s)", display.frames_received)

    editor = StillEditor(surface)
    if kind is not TransformKind.NONE:
        editor.select(kind)
    path = await editor.save(gallery)
    logger.info("Saved %s still with filter %s", path, editor.kind.name)
    return path


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    try:
        path = asyncio.run(run(args))
    except ValueError as exc:
        print(f"camfeature: {exc}", file=sys.stderr)
        return 1
    except CameraError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        print(f"camfeature: {type(exc).__name__}: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 1
    print(path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
