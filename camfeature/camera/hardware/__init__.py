"""Camera backends."""

from .base import CameraBackend, CameraDevice, HardwareSession
from .opencv_backend import OpenCVCameraBackend
from .simulated import SimulatedCameraBackend

BACKENDS = {
    SimulatedCameraBackend.name: SimulatedCameraBackend,
    OpenCVCameraBackend.name: OpenCVCameraBackend,
}

__all__ = [
    "BACKENDS",
    "CameraBackend",
    "CameraDevice",
    "HardwareSession",
    "OpenCVCameraBackend",
    "SimulatedCameraBackend",
]
