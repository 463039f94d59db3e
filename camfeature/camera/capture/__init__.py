from .decoder import FrameDecoder
from .frame import FrameHandle, PixelSurface, PreviewFrame
from .session import DEVICE_CLAIMS, CaptureSession, DeviceClaims, negotiate_size
from .surfaces import ImageReader, PreviewSurface

__all__ = [
    "CaptureSession",
    "DEVICE_CLAIMS",
    "DeviceClaims",
    "FrameDecoder",
    "FrameHandle",
    "ImageReader",
    "PixelSurface",
    "PreviewFrame",
    "PreviewSurface",
    "negotiate_size",
]
