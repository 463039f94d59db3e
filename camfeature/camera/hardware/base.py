"""
Hardware contract for camera backends.

Backends are callback driven: ``open``, ``create_session`` and ``capture``
return immediately and report their outcome later, usually from a backend
thread, by calling the supplied callback with an event value. Consumers
must not assume which thread a callback runs on.

Output targets are owned by the consumer. A backend writes preview frames
into a :class:`PreviewOutput` and compressed stills into a
:class:`StillOutput`; it never keeps references to them after the session
is closed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Optional, Sequence

import numpy as np

Resolution = tuple[int, int]

# Device error codes, numbered like the platform camera API.
ERROR_CAMERA_IN_USE = 1
ERROR_MAX_CAMERAS_IN_USE = 2
ERROR_CAMERA_DISABLED = 3
ERROR_CAMERA_DEVICE = 4
ERROR_CAMERA_SERVICE = 5

BUSY_ERROR_CODES = frozenset({ERROR_CAMERA_IN_USE, ERROR_MAX_CAMERAS_IN_USE})


class DeviceEventKind(Enum):
    OPENED = auto()
    DISCONNECTED = auto()
    ERROR = auto()


class SessionEventKind(Enum):
    CONFIGURED = auto()
    CONFIGURE_FAILED = auto()


class CaptureEventKind(Enum):
    COMPLETED = auto()
    FAILED = auto()


class RequestTemplate(Enum):
    PREVIEW = auto()
    STILL_CAPTURE = auto()


@dataclass(frozen=True)
class DeviceEvent:
    kind: DeviceEventKind
    device: Optional["CameraDevice"] = None
    error_code: int = 0
    message: str = ""


@dataclass(frozen=True)
class SessionEvent:
    kind: SessionEventKind
    session: Optional["HardwareSession"] = None
    message: str = ""


@dataclass(frozen=True)
class CaptureEvent:
    kind: CaptureEventKind
    request: "CaptureRequest"
    frame_number: int = 0
    message: str = ""


@dataclass(frozen=True, eq=False)
class CaptureRequest:
    """One preview or still request bound to its output targets."""

    template: RequestTemplate
    targets: tuple["OutputTarget", ...]
    controls: dict[str, Any] = field(default_factory=dict)
    tag: int = 0


DeviceCallback = Callable[[DeviceEvent], None]
SessionCallback = Callable[[SessionEvent], None]
CaptureCallback = Callable[[CaptureEvent], None]


class OutputTarget(ABC):
    """A consumer-owned surface a backend can stream into."""

    @property
    @abstractmethod
    def size(self) -> Resolution:
        """(width, height) the backend should produce."""


class PreviewOutput(OutputTarget):
    @abstractmethod
    def write_frame(self, data: np.ndarray) -> None:
        """Accept one BGR preview frame. May be called from any thread."""


class StillOutput(OutputTarget):
    @abstractmethod
    def write_still(self, data: bytes, *, frame_number: int, timestamp_ns: int) -> bool:
        """Accept one compressed still. Returns False when the queue is full."""


class HardwareSession(ABC):
    """A configured binding between an open device and its output targets."""

    @abstractmethod
    def set_repeating_request(self, request: CaptureRequest) -> None:
        """Start (or replace) the continuous request."""

    @abstractmethod
    def stop_repeating(self) -> None:
        """Stop the continuous request. No-op when none is active."""

    @abstractmethod
    def capture(self, request: CaptureRequest, callback: CaptureCallback) -> None:
        """Submit one request; ``callback`` fires once with its outcome."""

    @abstractmethod
    def close(self) -> None:
        """Tear the session down. Safe to call more than once."""


class CameraDevice(ABC):
    """An open handle to one physical camera."""

    camera_id: str

    @abstractmethod
    def create_session(self, outputs: Sequence[OutputTarget], callback: SessionCallback) -> None:
        """Configure ``outputs``; ``callback`` reports CONFIGURED or CONFIGURE_FAILED."""

    @abstractmethod
    def close(self) -> None:
        """Release the device. Safe to call more than once."""


class CameraBackend(ABC):
    """Entry point of a camera driver."""

    name = "backend"

    @abstractmethod
    def camera_ids(self) -> list[str]:
        """Enumerate the cameras currently present."""

    @abstractmethod
    def output_sizes(self, camera_id: str) -> list[Resolution]:
        """Supported stream sizes for ``camera_id``, highest priority first."""

    @abstractmethod
    def open(self, camera_id: str, callback: DeviceCallback) -> None:
        """Open ``camera_id``; ``callback`` reports OPENED, ERROR or DISCONNECTED."""


__all__ = [
    "BUSY_ERROR_CODES",
    "CameraBackend",
    "CameraDevice",
    "CaptureCallback",
    "CaptureEvent",
    "CaptureEventKind",
    "CaptureRequest",
    "DeviceCallback",
    "DeviceEvent",
    "DeviceEventKind",
    "ERROR_CAMERA_DEVICE",
    "ERROR_CAMERA_DISABLED",
    "ERROR_CAMERA_IN_USE",
    "ERROR_CAMERA_SERVICE",
    "ERROR_MAX_CAMERAS_IN_USE",
    "HardwareSession",
    "OutputTarget",
    "PreviewOutput",
    "RequestTemplate",
    "Resolution",
    "SessionCallback",
    "SessionEvent",
    "SessionEventKind",
    "StillOutput",
]
