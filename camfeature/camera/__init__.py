"""Camera preview, still capture and color filters."""

from .capture import FrameDecoder, FrameHandle, PixelSurface, PreviewFrame
from .config import CameraConfig, load_config
from .core import CameraDescriptor, CameraState, SessionState
from .core.controller import CameraController
from .display import DisplayTarget, LatestFrameDisplay
from .errors import *  # noqa: F401,F403
from .errors import __all__ as _error_names
from .filters import StillEditor, TransformKind, apply, parse_transform_kind
from .permissions import PermissionGate, StaticPermissionGate
from .storage import GalleryWriter, suggested_filename

__all__ = [
    "CameraConfig",
    "CameraController",
    "CameraDescriptor",
    "CameraState",
    "DisplayTarget",
    "FrameDecoder",
    "FrameHandle",
    "GalleryWriter",
    "LatestFrameDisplay",
    "PermissionGate",
    "PixelSurface",
    "PreviewFrame",
    "SessionState",
    "StaticPermissionGate",
    "StillEditor",
    "TransformKind",
    "apply",
    "load_config",
    "parse_transform_kind",
    "suggested_filename",
    *_error_names,
]
