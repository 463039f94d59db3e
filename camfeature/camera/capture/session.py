"""Capture session: device handle, hardware session, reader and preview request."""

from __future__ import annotations

import asyncio
import contextlib
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from camfeature.core.logging_utils import LoggerLike, ensure_structured_logger

from ..core.state import CameraDescriptor
from ..defaults import DEFAULT_OPEN_TIMEOUT_MS, DEFAULT_RELEASE_TIMEOUT_S
from ..errors import (
    AlreadyInProgressError,
    CameraError,
    CaptureFailedError,
    CaptureTimeoutError,
    ConfigurationFailedError,
    DeviceBusyError,
    DeviceUnavailableError,
    InvalidStateError,
    OperationCancelledError,
)
from ..hardware.base import (
    BUSY_ERROR_CODES,
    CameraBackend,
    CameraDevice,
    CaptureEvent,
    CaptureEventKind,
    CaptureRequest,
    DeviceEvent,
    DeviceEventKind,
    HardwareSession,
    RequestTemplate,
    Resolution,
    SessionEvent,
    SessionEventKind,
)
from .frame import FrameHandle, PreviewFrame
from .surfaces import ImageReader, PreviewSurface

PREVIEW_CONTROLS = {
    "control_mode": "auto",
    "ae_mode": "on",
    "af_mode": "continuous_picture",
}
STILL_CONTROLS = {
    "control_mode": "auto",
}

FaultCallback = Callable[[CameraError], None]


class DeviceClaims:
    """Process-wide record of which cameras are held by a session."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._claimed: set[tuple[int, str]] = set()

    def claim(self, backend: CameraBackend, camera_id: str) -> Callable[[], None]:
        """Claim ``camera_id`` or raise DeviceBusyError. Returns the release function."""
        key = (id(backend), camera_id)
        with self._lock:
            if key in self._claimed:
                raise DeviceBusyError(f"camera {camera_id} is already claimed by another session")
            self._claimed.add(key)

        def _release() -> None:
            with self._lock:
                self._claimed.discard(key)

        return _release

    def is_claimed(self, backend: CameraBackend, camera_id: str) -> bool:
        with self._lock:
            return (id(backend), camera_id) in self._claimed


DEVICE_CLAIMS = DeviceClaims()


def negotiate_size(supported: Sequence[Resolution], requested: Resolution) -> Resolution:
    """First supported size that fits inside ``requested``, else ``requested``."""
    max_width, max_height = requested
    for width, height in supported:
        if width <= max_width and height <= max_height:
            return int(width), int(height)
    return int(max_width), int(max_height)


@dataclass
class _PendingCapture:
    tag: int
    future: asyncio.Future


class CaptureSession:
    """Owns one open camera and its two output targets.

    Every hardware callback is marshaled onto the event loop that called
    :meth:`start` before it touches session state. Resources acquired by
    :meth:`start` are held in a single exit stack, so a failed or cancelled
    start and :meth:`close` release them the same way.
    """

    def __init__(
        self,
        backend: CameraBackend,
        *,
        camera_id: Optional[str] = None,
        open_timeout: float = DEFAULT_OPEN_TIMEOUT_MS / 1000.0,
        release_timeout: float = DEFAULT_RELEASE_TIMEOUT_S,
        still_queue_depth: int = 1,
        claims: DeviceClaims = DEVICE_CLAIMS,
        logger: LoggerLike = None,
    ) -> None:
        self._backend = backend
        self._camera_id = camera_id
        self._open_timeout = open_timeout
        self._release_timeout = release_timeout
        self._still_queue_depth = still_queue_depth
        self._claims = claims
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._resources: Optional[contextlib.ExitStack] = None
        self._device: Optional[CameraDevice] = None
        self._hw_session: Optional[HardwareSession] = None
        self._reader: Optional[ImageReader] = None
        self._preview: Optional[PreviewSurface] = None
        self._descriptor: Optional[CameraDescriptor] = None

        self._pending: Optional[_PendingCapture] = None
        self._capture_tag = 0
        self._starting = False
        self._closing = False
        self._fault_callback: Optional[FaultCallback] = None

    # ------------------------------------------------------------------
    # Properties

    @property
    def descriptor(self) -> Optional[CameraDescriptor]:
        return self._descriptor

    @property
    def is_open(self) -> bool:
        return self._resources is not None and not self._closing

    @property
    def capture_in_flight(self) -> bool:
        return self._pending is not None

    @property
    def reader(self) -> Optional[ImageReader]:
        return self._reader

    def set_fault_callback(self, callback: Optional[FaultCallback]) -> None:
        """Called on the loop when the device fails after a successful start."""
        self._fault_callback = callback

    # ------------------------------------------------------------------
    # Lifecycle

    async def start(
        self,
        preview_sink: Callable[[PreviewFrame], None],
        requested_size: Resolution,
    ) -> CameraDescriptor:
        """Open the camera, bind preview + still targets and start preview.

        Raises:
            DeviceUnavailableError: no camera, device error, or open timeout.
            DeviceBusyError: the camera is claimed elsewhere.
            ConfigurationFailedError: the outputs could not be bound.
        """
        if self._starting:
            raise AlreadyInProgressError("capture session start already in progress")
        if self._resources is not None:
            self._logger.info("Tearing down active session before restarting preview")
            await self.close()

        self._starting = True
        self._loop = asyncio.get_running_loop()
        try:
            return await self._start(preview_sink, requested_size)
        except BaseException:
            self._forget()
            raise
        finally:
            self._starting = False

    async def _start(
        self,
        preview_sink: Callable[[PreviewFrame], None],
        requested_size: Resolution,
    ) -> CameraDescriptor:
        loop = self._loop
        camera_ids = await loop.run_in_executor(None, self._backend.camera_ids)
        if not camera_ids:
            raise DeviceUnavailableError(f"no camera hardware enumerable on {self._backend.name}")
        camera_id = self._camera_id if self._camera_id is not None else camera_ids[0]
        if camera_id not in camera_ids:
            raise DeviceUnavailableError(f"camera {camera_id} not found (available: {', '.join(camera_ids)})")

        supported = await loop.run_in_executor(None, self._backend.output_sizes, camera_id)
        size = negotiate_size(supported, requested_size)
        self._logger.debug(
            "Negotiated %dx%d for camera %s (requested %dx%d, %d advertised sizes)",
            size[0],
            size[1],
            camera_id,
            requested_size[0],
            requested_size[1],
            len(supported),
        )

        with contextlib.ExitStack() as stack:
            stack.callback(self._claims.claim(self._backend, camera_id))

            reader = ImageReader(size, max_images=self._still_queue_depth, logger=self._logger)
            stack.callback(reader.close)
            preview = PreviewSurface(size, lambda frame: self._post(self._deliver_preview, preview_sink, frame))
            stack.callback(preview.detach)

            device = await self._open_device(camera_id)
            stack.callback(device.close)
            self._device = device

            hw_session = await self._configure(device, (preview, reader))
            stack.callback(hw_session.close)
            stack.callback(hw_session.stop_repeating)

            self._reader = reader
            self._preview = preview
            self._hw_session = hw_session
            self._descriptor = CameraDescriptor(camera_id=camera_id, width=size[0], height=size[1])
            self.set_repeating_preview()
            self._resources = stack.pop_all()

        self._logger.info("Capture session started: camera=%s, size=%dx%d", camera_id, *size)
        return self._descriptor

    async def close(self) -> None:
        """Release repeating request, session, device, reader and claim.

        No-op when nothing is open. A capture still in flight fails with
        OperationCancelledError.
        """
        if self._resources is None or self._closing:
            return
        self._closing = True
        pending, self._pending = self._pending, None
        if pending is not None and not pending.future.done():
            pending.future.set_exception(
                OperationCancelledError("capture session closed while a still capture was in flight")
            )
        if self._preview is not None:
            self._preview.detach()

        stack, self._resources = self._resources, None
        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(loop.run_in_executor(None, stack.close), timeout=self._release_timeout)
        except asyncio.TimeoutError:
            self._logger.warning(
                "Hardware release timed out after %.1fs - dropping references",
                self._release_timeout,
            )
        except Exception:
            self._logger.exception("Error while releasing camera resources")
        finally:
            self._forget()
            self._closing = False
        self._logger.info("Capture session closed")

    def _forget(self) -> None:
        self._device = None
        self._hw_session = None
        self._reader = None
        self._preview = None
        self._descriptor = None

    # ------------------------------------------------------------------
    # Requests

    def set_repeating_preview(self) -> None:
        """Issue the continuous auto-exposure / auto-focus preview request."""
        if self._hw_session is None or self._preview is None:
            raise InvalidStateError("no configured capture session")
        request = CaptureRequest(
            template=RequestTemplate.PREVIEW,
            targets=(self._preview,),
            controls=dict(PREVIEW_CONTROLS),
        )
        self._hw_session.set_repeating_request(request)
        self._logger.debug("Repeating preview request issued")

    async def capture_once(self, timeout: Optional[float] = None) -> FrameHandle:
        """Issue one still request and wait for its frame.

        The returned handle must be released by the caller.

        Raises:
            InvalidStateError: the session is not open.
            AlreadyInProgressError: a capture is already in flight.
            CaptureTimeoutError: no frame before ``timeout`` seconds.
            CaptureFailedError: the hardware reported a failure.
            OperationCancelledError: the session was closed meanwhile.
        """
        if not self.is_open or self._hw_session is None or self._reader is None:
            raise InvalidStateError("capture session is not open")
        if self._pending is not None:
            raise AlreadyInProgressError("a still capture is already in flight (queue depth 1)")

        self._capture_tag += 1
        tag = self._capture_tag
        future = self._loop.create_future()
        pending = _PendingCapture(tag=tag, future=future)
        request = CaptureRequest(
            template=RequestTemplate.STILL_CAPTURE,
            targets=(self._reader,),
            controls=dict(STILL_CONTROLS),
            tag=tag,
        )
        self._pending = pending
        try:
            self._hw_session.capture(request, lambda event: self._post(self._on_capture_event, event))
        except Exception as exc:
            self._pending = None
            raise CaptureFailedError(f"still request #{tag} was rejected: {exc}") from exc
        self._logger.debug("Still request #%d submitted", tag)

        try:
            if timeout is None:
                return await future
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise CaptureTimeoutError(f"still capture #{tag} timed out after {timeout:.2f}s") from None
        except asyncio.CancelledError:
            # Result may have landed in the same iteration the caller was cancelled.
            if future.done() and not future.cancelled() and future.exception() is None:
                future.result().release()
            raise
        finally:
            if self._pending is pending:
                self._pending = None

    # ------------------------------------------------------------------
    # Hardware callbacks (always run on the loop)

    def _post(self, callback: Callable[..., None], *args) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            self._logger.debug("Event loop closed; dropping hardware callback %s", getattr(callback, "__name__", callback))

    def _deliver_preview(self, sink: Callable[[PreviewFrame], None], frame: PreviewFrame) -> None:
        if self._closing or self._resources is None:
            return
        try:
            sink(frame)
        except Exception:
            self._logger.exception("Preview sink failed on frame %d", frame.frame_number)

    async def _open_device(self, camera_id: str) -> CameraDevice:
        future = self._loop.create_future()
        self._backend.open(camera_id, lambda event: self._post(self._on_device_event, event, future))
        try:
            return await asyncio.wait_for(future, self._open_timeout)
        except asyncio.TimeoutError:
            raise DeviceUnavailableError(
                f"camera {camera_id} did not open within {self._open_timeout:.1f}s"
            ) from None

    async def _configure(self, device: CameraDevice, outputs: Sequence) -> HardwareSession:
        future = self._loop.create_future()
        device.create_session(list(outputs), lambda event: self._post(self._on_session_event, event, future))
        try:
            return await asyncio.wait_for(future, self._open_timeout)
        except asyncio.TimeoutError:
            raise ConfigurationFailedError(
                f"session for camera {device.camera_id} was not configured within {self._open_timeout:.1f}s"
            ) from None

    def _on_device_event(self, event: DeviceEvent, future: asyncio.Future) -> None:
        self._logger.debug("Device event: %s (code=%d) %s", event.kind.name, event.error_code, event.message)
        if event.kind is DeviceEventKind.OPENED:
            if future.done():
                # Open was abandoned (timeout or stop); nobody owns this handle.
                if event.device is not None:
                    event.device.close()
                return
            future.set_result(event.device)
            return

        error = self._device_error(event)
        if not future.done():
            if event.device is not None:
                event.device.close()
            future.set_exception(error)
            return
        if event.device is not None and event.device is self._device and self._resources is not None:
            self._handle_fault(error)

    def _on_session_event(self, event: SessionEvent, future: asyncio.Future) -> None:
        self._logger.debug("Session event: %s %s", event.kind.name, event.message)
        if event.kind is SessionEventKind.CONFIGURED:
            if future.done():
                if event.session is not None:
                    event.session.close()
                return
            future.set_result(event.session)
            return
        if not future.done():
            future.set_exception(
                ConfigurationFailedError(event.message or "capture session could not bind the requested surfaces")
            )

    def _on_capture_event(self, event: CaptureEvent) -> None:
        handle = None
        if event.kind is CaptureEventKind.COMPLETED and self._reader is not None:
            handle = self._reader.acquire_latest()

        pending = self._pending
        if pending is None or pending.tag != event.request.tag or pending.future.done():
            if handle is not None:
                self._logger.debug("Draining still #%d for abandoned request #%d", handle.frame_number, event.request.tag)
                handle.release()
            return

        if event.kind is CaptureEventKind.FAILED:
            pending.future.set_exception(CaptureFailedError(event.message or "hardware reported a failed still capture"))
        elif handle is None:
            pending.future.set_exception(CaptureFailedError("still capture completed without an image"))
        else:
            pending.future.set_result(handle)

    def _device_error(self, event: DeviceEvent) -> CameraError:
        if event.kind is DeviceEventKind.DISCONNECTED:
            return DeviceUnavailableError(event.message or "camera disconnected")
        if event.error_code in BUSY_ERROR_CODES:
            return DeviceBusyError(event.message or f"camera in use (error {event.error_code})")
        return DeviceUnavailableError(event.message or f"camera device error {event.error_code}")

    def _handle_fault(self, error: CameraError) -> None:
        self._logger.error("Camera fault: %s", error)
        pending = self._pending
        if pending is not None and not pending.future.done():
            pending.future.set_exception(error)
        if self._fault_callback is not None:
            self._fault_callback(error)


__all__ = [
    "CaptureSession",
    "DEVICE_CLAIMS",
    "DeviceClaims",
    "PREVIEW_CONTROLS",
    "negotiate_size",
]
