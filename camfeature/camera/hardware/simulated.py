"""
Deterministic in-process camera backend.

Every callback is delivered from a worker thread, like a real driver, so
consumers exercise their thread marshaling. Faults can be injected through
the public attributes before or during a session.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Iterable, Optional, Sequence

import cv2
import numpy as np

from camfeature.core.logging_utils import LoggerLike, ensure_structured_logger

from ..defaults import DEFAULT_PREVIEW_FPS
from .base import (
    ERROR_CAMERA_DEVICE,
    ERROR_CAMERA_IN_USE,
    CameraBackend,
    CameraDevice,
    CaptureCallback,
    CaptureEvent,
    CaptureEventKind,
    CaptureRequest,
    DeviceCallback,
    DeviceEvent,
    DeviceEventKind,
    HardwareSession,
    OutputTarget,
    PreviewOutput,
    Resolution,
    SessionCallback,
    SessionEvent,
    SessionEventKind,
    StillOutput,
)

DEFAULT_OUTPUT_SIZES: tuple[Resolution, ...] = (
    (4032, 3024),
    (1920, 1080),
    (1280, 720),
    (640, 480),
)
DEFAULT_STILL_RGB = (255, 0, 0)
STILL_JPEG_QUALITY = 95


def _spawn(target: Callable[[], None], name: str) -> threading.Thread:
    thread = threading.Thread(target=target, name=name, daemon=True)
    thread.start()
    return thread


def synthetic_preview_frame(size: Resolution) -> np.ndarray:
    """Horizontal BGR gradient used as the preview image."""
    width, height = size
    ramp = np.linspace(0, 255, width, dtype=np.uint8)
    frame = np.empty((height, width, 3), dtype=np.uint8)
    frame[:, :, 0] = ramp
    frame[:, :, 1] = ramp[::-1]
    frame[:, :, 2] = 128
    frame.setflags(write=False)
    return frame


def encode_solid_still(size: Resolution, rgb: tuple[int, int, int]) -> bytes:
    width, height = size
    bgr = np.empty((height, width, 3), dtype=np.uint8)
    bgr[...] = (rgb[2], rgb[1], rgb[0])
    ok, buffer = cv2.imencode(".jpg", bgr, [int(cv2.IMWRITE_JPEG_QUALITY), STILL_JPEG_QUALITY])
    if not ok:
        raise RuntimeError("JPEG encoding failed")
    return buffer.tobytes()


class SimulatedCameraBackend(CameraBackend):
    """Fake driver with fault injection knobs.

    Attributes:
        claimed_elsewhere: camera ids another process holds; opening them
            reports ``ERROR_CAMERA_IN_USE``.
        open_error_code: when non-zero, every open reports this error.
        hang_open: open never reports anything.
        configure_fails: session configuration reports CONFIGURE_FAILED.
        fail_next_capture / hang_next_capture / corrupt_next_capture:
            one-shot still faults; cleared once consumed.
    """

    name = "simulated"

    def __init__(
        self,
        camera_ids: Iterable[str] = ("0",),
        *,
        output_sizes: Optional[Sequence[Resolution]] = None,
        preview_fps: float = DEFAULT_PREVIEW_FPS,
        open_delay: float = 0.0,
        capture_delay: float = 0.0,
        still_rgb: tuple[int, int, int] = DEFAULT_STILL_RGB,
        logger: LoggerLike = None,
    ) -> None:
        self._camera_ids = [str(camera_id) for camera_id in camera_ids]
        self._output_sizes = list(output_sizes or DEFAULT_OUTPUT_SIZES)
        self.preview_fps = preview_fps
        self.open_delay = open_delay
        self.capture_delay = capture_delay
        self.still_rgb = still_rgb
        self.logger = ensure_structured_logger(logger, fallback_name="camera.hardware.simulated")

        self.claimed_elsewhere: set[str] = set()
        self.open_error_code = 0
        self.hang_open = False
        self.configure_fails = False
        self.fail_next_capture = False
        self.hang_next_capture = False
        self.corrupt_next_capture = False

        self._lock = threading.Lock()
        self.devices: list[SimulatedDevice] = []
        self.sessions: list[SimulatedSession] = []
        self.open_calls = 0
        self.capture_calls = 0
        self._hung_captures: list[tuple[SimulatedSession, CaptureRequest, CaptureCallback]] = []

    # ------------------------------------------------------------------
    # CameraBackend

    def camera_ids(self) -> list[str]:
        return list(self._camera_ids)

    def output_sizes(self, camera_id: str) -> list[Resolution]:
        return list(self._output_sizes)

    def open(self, camera_id: str, callback: DeviceCallback) -> None:
        with self._lock:
            self.open_calls += 1

        def _worker() -> None:
            if self.open_delay > 0:
                time.sleep(self.open_delay)
            if self.hang_open:
                self.logger.debug("Open of camera %s hanging", camera_id)
                return
            if camera_id not in self._camera_ids:
                callback(DeviceEvent(DeviceEventKind.ERROR, error_code=ERROR_CAMERA_DEVICE, message=f"no camera {camera_id}"))
                return
            if camera_id in self.claimed_elsewhere:
                callback(DeviceEvent(DeviceEventKind.ERROR, error_code=ERROR_CAMERA_IN_USE, message=f"camera {camera_id} in use"))
                return
            if self.open_error_code:
                callback(DeviceEvent(DeviceEventKind.ERROR, error_code=self.open_error_code, message="injected device error"))
                return
            device = SimulatedDevice(self, camera_id, callback)
            with self._lock:
                self.devices.append(device)
            callback(DeviceEvent(DeviceEventKind.OPENED, device=device))

        _spawn(_worker, f"sim-open-{camera_id}")

    # ------------------------------------------------------------------
    # Inspection and fault injection

    @property
    def open_devices(self) -> list["SimulatedDevice"]:
        with self._lock:
            return [device for device in self.devices if not device.closed]

    @property
    def active_sessions(self) -> list["SimulatedSession"]:
        with self._lock:
            return [session for session in self.sessions if not session.closed]

    def inject_disconnect(self, camera_id: Optional[str] = None) -> None:
        """Report DISCONNECTED for every open device (or just ``camera_id``)."""
        for device in self.open_devices:
            if camera_id is None or device.camera_id == camera_id:
                _spawn(device.disconnect, f"sim-disconnect-{device.camera_id}")

    def complete_hung_captures(self) -> int:
        """Deliver the captures held by ``hang_next_capture``; returns how many."""
        with self._lock:
            hung, self._hung_captures = self._hung_captures, []
        for session, request, callback in hung:
            _spawn(lambda s=session, r=request, c=callback: s._deliver_still(r, c), "sim-late-still")
        return len(hung)

    def _take_capture_fault(self) -> Optional[str]:
        with self._lock:
            self.capture_calls += 1
            if self.hang_next_capture:
                self.hang_next_capture = False
                return "hang"
            if self.fail_next_capture:
                self.fail_next_capture = False
                return "fail"
            if self.corrupt_next_capture:
                self.corrupt_next_capture = False
                return "corrupt"
        return None

    def _hold_capture(self, session: "SimulatedSession", request: CaptureRequest, callback: CaptureCallback) -> None:
        with self._lock:
            self._hung_captures.append((session, request, callback))

    def _register_session(self, session: "SimulatedSession") -> None:
        with self._lock:
            self.sessions.append(session)


class SimulatedDevice(CameraDevice):
    def __init__(self, backend: SimulatedCameraBackend, camera_id: str, callback: DeviceCallback) -> None:
        self.camera_id = camera_id
        self._backend = backend
        self._callback = callback
        self._sessions: list[SimulatedSession] = []
        self.closed = False

    def create_session(self, outputs: Sequence[OutputTarget], callback: SessionCallback) -> None:
        backend = self._backend

        def _worker() -> None:
            if self.closed:
                callback(SessionEvent(SessionEventKind.CONFIGURE_FAILED, message="device closed"))
                return
            if backend.configure_fails:
                callback(SessionEvent(SessionEventKind.CONFIGURE_FAILED, message="injected configure failure"))
                return
            if not outputs:
                callback(SessionEvent(SessionEventKind.CONFIGURE_FAILED, message="no output targets"))
                return
            session = SimulatedSession(backend, self, outputs)
            self._sessions.append(session)
            backend._register_session(session)
            callback(SessionEvent(SessionEventKind.CONFIGURED, session=session))

        _spawn(_worker, f"sim-configure-{self.camera_id}")

    def disconnect(self) -> None:
        for session in self._sessions:
            session.stop_repeating()
        self._callback(DeviceEvent(DeviceEventKind.DISCONNECTED, device=self, message=f"camera {self.camera_id} disconnected"))

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for session in self._sessions:
            session.close()


class SimulatedSession(HardwareSession):
    def __init__(self, backend: SimulatedCameraBackend, device: SimulatedDevice, outputs: Sequence[OutputTarget]) -> None:
        self._backend = backend
        self.device = device
        self.outputs = list(outputs)
        self.closed = False
        self.repeating_request: Optional[CaptureRequest] = None
        self._preview_stop = threading.Event()
        self._preview_thread: Optional[threading.Thread] = None
        self._frame_number = 0
        self._delivered = 0

    @property
    def stills_delivered(self) -> int:
        return self._delivered

    def set_repeating_request(self, request: CaptureRequest) -> None:
        if self.closed:
            raise RuntimeError("session closed")
        self.stop_repeating()
        self.repeating_request = request
        self._preview_stop = threading.Event()
        self._preview_thread = _spawn(
            lambda stop=self._preview_stop: self._preview_loop(request, stop),
            f"sim-preview-{self.device.camera_id}",
        )

    def stop_repeating(self) -> None:
        self._preview_stop.set()
        thread, self._preview_thread = self._preview_thread, None
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        self.repeating_request = None

    def _preview_loop(self, request: CaptureRequest, stop: threading.Event) -> None:
        targets = [target for target in request.targets if isinstance(target, PreviewOutput)]
        frames = {id(target): synthetic_preview_frame(target.size) for target in targets}
        interval = 1.0 / self._backend.preview_fps if self._backend.preview_fps > 0 else 0.0
        while not stop.is_set():
            for target in targets:
                target.write_frame(frames[id(target)])
            if stop.wait(interval):
                break

    def capture(self, request: CaptureRequest, callback: CaptureCallback) -> None:
        if self.closed:
            raise RuntimeError("session closed")
        fault = self._backend._take_capture_fault()
        if fault == "hang":
            self._backend._hold_capture(self, request, callback)
            return

        def _worker() -> None:
            if self._backend.capture_delay > 0:
                time.sleep(self._backend.capture_delay)
            if fault == "fail":
                callback(CaptureEvent(CaptureEventKind.FAILED, request=request, message="injected capture failure"))
                return
            self._deliver_still(request, callback, corrupt=fault == "corrupt")

        _spawn(_worker, f"sim-still-{self.device.camera_id}")

    def _deliver_still(self, request: CaptureRequest, callback: CaptureCallback, *, corrupt: bool = False) -> None:
        self._frame_number += 1
        frame_number = self._frame_number
        accepted = False
        for target in request.targets:
            if not isinstance(target, StillOutput):
                continue
            data = b"\x00corrupt still" if corrupt else encode_solid_still(target.size, self._backend.still_rgb)
            accepted = target.write_still(data, frame_number=frame_number, timestamp_ns=time.monotonic_ns()) or accepted
        if accepted:
            callback(CaptureEvent(CaptureEventKind.COMPLETED, request=request, frame_number=frame_number))
        else:
            callback(CaptureEvent(CaptureEventKind.FAILED, request=request, frame_number=frame_number, message="image reader refused the still"))
        self._delivered += 1

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.stop_repeating()


__all__ = [
    "DEFAULT_OUTPUT_SIZES",
    "SimulatedCameraBackend",
    "SimulatedDevice",
    "SimulatedSession",
    "encode_solid_still",
    "synthetic_preview_frame",
]
