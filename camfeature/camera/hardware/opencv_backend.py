"""Camera backend on top of ``cv2.VideoCapture`` for USB/UVC webcams."""

from __future__ import annotations

import threading
import time
from typing import Optional, Sequence

import cv2
import numpy as np

from camfeature.core.logging_utils import LoggerLike, ensure_structured_logger

from .base import (
    ERROR_CAMERA_DEVICE,
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

# VideoCapture cannot enumerate modes; advertise the usual UVC sizes.
COMMON_SIZES: tuple[Resolution, ...] = (
    (1920, 1080),
    (1280, 720),
    (640, 480),
)
DEFAULT_PROBE_COUNT = 4
STILL_JPEG_QUALITY = 95
STILL_FRAME_TIMEOUT_S = 2.0
# Consecutive failed reads before the device is reported as gone.
MAX_READ_FAILURES = 30


def _source_for(camera_id: str):
    return int(camera_id) if camera_id.isdigit() else camera_id


class OpenCVCameraBackend(CameraBackend):
    name = "opencv"

    def __init__(
        self,
        device_ids: Optional[Sequence[str]] = None,
        *,
        probe_count: int = DEFAULT_PROBE_COUNT,
        fps: float = 30.0,
        logger: LoggerLike = None,
    ) -> None:
        self._device_ids = [str(device_id) for device_id in device_ids] if device_ids is not None else None
        self._probe_count = probe_count
        self._fps = fps
        self._logger = ensure_structured_logger(logger, fallback_name="camera.hardware.opencv")

    def camera_ids(self) -> list[str]:
        if self._device_ids is not None:
            return list(self._device_ids)
        found = []
        for index in range(self._probe_count):
            cap = cv2.VideoCapture(index)
            try:
                if cap.isOpened():
                    found.append(str(index))
            finally:
                cap.release()
        self._logger.debug("Probed %d indices, found cameras: %s", self._probe_count, found or "none")
        return found

    def output_sizes(self, camera_id: str) -> list[Resolution]:
        return list(COMMON_SIZES)

    def open(self, camera_id: str, callback: DeviceCallback) -> None:
        def _worker() -> None:
            cap = cv2.VideoCapture(_source_for(camera_id))
            if not cap.isOpened():
                cap.release()
                callback(DeviceEvent(DeviceEventKind.ERROR, error_code=ERROR_CAMERA_DEVICE, message=f"Failed to open {camera_id}"))
                return
            callback(DeviceEvent(DeviceEventKind.OPENED, device=OpenCVDevice(camera_id, cap, callback, self._fps, self._logger)))

        threading.Thread(target=_worker, name=f"cv-open-{camera_id}", daemon=True).start()


class OpenCVDevice(CameraDevice):
    def __init__(self, camera_id: str, cap, callback: DeviceCallback, fps: float, logger) -> None:
        self.camera_id = camera_id
        self._cap = cap
        self._callback = callback
        self._fps = fps
        self._logger = logger
        self._session: Optional[OpenCVSession] = None
        self._lock = threading.Lock()
        self.closed = False

    def create_session(self, outputs: Sequence[OutputTarget], callback: SessionCallback) -> None:
        def _worker() -> None:
            preview = next((o for o in outputs if isinstance(o, PreviewOutput)), None)
            if self.closed or preview is None:
                callback(SessionEvent(SessionEventKind.CONFIGURE_FAILED, message="no preview output or device closed"))
                return
            width, height = preview.size
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
            self._cap.set(cv2.CAP_PROP_FPS, self._fps)
            actual = (int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)), int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)))
            if actual != (width, height):
                self._logger.info("Camera %s delivers %dx%d instead of %dx%d", self.camera_id, *actual, width, height)
            session = OpenCVSession(self, self._cap, self._logger)
            self._session = session
            session.start_reading()
            callback(SessionEvent(SessionEventKind.CONFIGURED, session=session))

        threading.Thread(target=_worker, name=f"cv-configure-{self.camera_id}", daemon=True).start()

    def report_lost(self) -> None:
        self._callback(DeviceEvent(DeviceEventKind.DISCONNECTED, device=self, message=f"camera {self.camera_id} stopped delivering frames"))

    def close(self) -> None:
        with self._lock:
            if self.closed:
                return
            self.closed = True
        if self._session is not None:
            self._session.close()
        self._cap.release()


class OpenCVSession(HardwareSession):
    """One read thread; preview and stills are served from its frames."""

    def __init__(self, device: OpenCVDevice, cap, logger) -> None:
        self._device = device
        self._cap = cap
        self._logger = logger
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._condition = threading.Condition()
        self._latest: Optional[np.ndarray] = None
        self._frame_number = 0
        self._repeating: Optional[CaptureRequest] = None
        self.closed = False

    @property
    def frame_count(self) -> int:
        return self._frame_number

    def start_reading(self) -> None:
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._capture_loop, name=f"cv-read-{self._device.camera_id}", daemon=True)
        self._thread.start()

    def _capture_loop(self) -> None:
        failures = 0
        while self._running and self._cap.isOpened():
            ret, frame_data = self._cap.read()
            if not ret or frame_data is None:
                failures += 1
                if failures >= MAX_READ_FAILURES:
                    self._running = False
                    self._device.report_lost()
                    return
                time.sleep(0.001)
                continue
            failures = 0

            with self._condition:
                self._frame_number += 1
                self._latest = frame_data
                self._condition.notify_all()

            request = self._repeating
            if request is not None:
                for target in request.targets:
                    if isinstance(target, PreviewOutput):
                        target.write_frame(frame_data)

    def set_repeating_request(self, request: CaptureRequest) -> None:
        if self.closed:
            raise RuntimeError("session closed")
        self._repeating = request

    def stop_repeating(self) -> None:
        self._repeating = None

    def next_frame(self, timeout: float) -> Optional[tuple[int, np.ndarray]]:
        """Wait for a frame newer than the one current at call time."""
        with self._condition:
            start = self._frame_number
            if not self._condition.wait_for(lambda: self._frame_number > start or not self._running, timeout):
                return None
            if self._latest is None or self._frame_number == start:
                return None
            return self._frame_number, self._latest

    def capture(self, request: CaptureRequest, callback: CaptureCallback) -> None:
        if self.closed:
            raise RuntimeError("session closed")

        def _worker() -> None:
            got = self.next_frame(STILL_FRAME_TIMEOUT_S)
            if got is None:
                callback(CaptureEvent(CaptureEventKind.FAILED, request=request, message="no frame from camera"))
                return
            frame_number, frame = got
            accepted = False
            for target in request.targets:
                if not isinstance(target, StillOutput):
                    continue
                width, height = target.size
                still = frame
                if (frame.shape[1], frame.shape[0]) != (width, height):
                    still = cv2.resize(frame, (width, height), interpolation=cv2.INTER_AREA)
                ok, buffer = cv2.imencode(".jpg", still, [int(cv2.IMWRITE_JPEG_QUALITY), STILL_JPEG_QUALITY])
                if not ok:
                    callback(CaptureEvent(CaptureEventKind.FAILED, request=request, message="JPEG encoding failed"))
                    return
                accepted = target.write_still(buffer.tobytes(), frame_number=frame_number, timestamp_ns=time.monotonic_ns()) or accepted
            kind = CaptureEventKind.COMPLETED if accepted else CaptureEventKind.FAILED
            callback(CaptureEvent(kind, request=request, frame_number=frame_number, message="" if accepted else "still refused"))

        threading.Thread(target=_worker, name=f"cv-still-{self._device.camera_id}", daemon=True).start()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._repeating = None
        self._running = False
        with self._condition:
            self._condition.notify_all()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)


__all__ = ["COMMON_SIZES", "OpenCVCameraBackend", "OpenCVDevice", "OpenCVSession"]
