"""
Shared default values for the camera stack.

Keep this module import-free; config, backends and the CLI all read it.
"""

from pathlib import Path

DEFAULT_PREVIEW_RESOLUTION = (1920, 1080)
DEFAULT_PREVIEW_FPS = 30.0
DEFAULT_OPEN_TIMEOUT_MS = 5000
DEFAULT_CAPTURE_TIMEOUT_MS = 5000
DEFAULT_RELEASE_TIMEOUT_S = 3.0
DEFAULT_INTERPOLATION = "nearest"
DEFAULT_STORAGE_BASE_PATH = Path("./gallery")
DEFAULT_JPEG_QUALITY = 100
DEFAULT_LOG_LEVEL = "info"

# Sample range of every PixelSurface channel.
CHANNEL_MAX = 255

FILENAME_PREFIX = "IMG_"
FILENAME_TIME_FORMAT = "%Y%m%d_%H%M%S"
FILENAME_SUFFIX = ".jpg"
