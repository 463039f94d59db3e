"""Camera acquisition state machine."""

from __future__ import annotations

import asyncio
import functools
from datetime import datetime
from typing import Callable, Optional

from camfeature.core.asyncio_utils import create_logged_task
from camfeature.core.logging_utils import LoggerLike, ensure_structured_logger

from ..capture.decoder import FrameDecoder
from ..capture.frame import PixelSurface, PreviewFrame
from ..capture.session import CaptureSession
from ..config import CameraConfig, load_config
from ..display import DisplayTarget
from ..errors import (
    AlreadyInProgressError,
    CameraError,
    CaptureFailedError,
    CaptureTimeoutError,
    DecodeError,
    DeviceUnavailableError,
    InvalidStateError,
    OperationCancelledError,
    PermissionDeniedError,
)
from ..hardware.base import CameraBackend, Resolution
from ..permissions import PermissionGate
from .state import CameraDescriptor, CameraState, SessionState, is_allowed

SessionFactory = Callable[[], CaptureSession]

_BUSY_PHASES = (
    SessionState.PERMISSION_PENDING,
    SessionState.OPENING,
    SessionState.CAPTURING,
)
_PREVIEW_PHASES = (SessionState.PREVIEW_ACTIVE, SessionState.CAPTURING)
_RECOVERABLE_CAPTURE_ERRORS = (CaptureTimeoutError, DecodeError, CaptureFailedError)


class CameraController:
    """Owns one camera for one event loop.

    All public coroutines must be awaited on the same loop. Entry checks
    run before the first ``await`` so concurrent callers see a consistent
    phase: a second ``request_start`` while the first is in flight raises
    :class:`AlreadyInProgressError` without disturbing it.
    """

    def __init__(
        self,
        backend: CameraBackend,
        permission_gate: PermissionGate,
        *,
        config: Optional[CameraConfig] = None,
        decoder: Optional[FrameDecoder] = None,
        session_factory: Optional[SessionFactory] = None,
        logger: LoggerLike = None,
    ) -> None:
        self._backend = backend
        self._permission_gate = permission_gate
        self._config = config or load_config()
        self._logger = ensure_structured_logger(logger, fallback_name="camera.controller")
        self._decoder = decoder or FrameDecoder(self._config.decoder.interpolation)
        self._session_factory = session_factory or self._create_session

        self._state = CameraState()
        self._subscribers: list[Callable[[CameraState], None]] = []

        self._session: Optional[CaptureSession] = None
        self._display: Optional[DisplayTarget] = None
        self._permission_future: Optional[asyncio.Future] = None
        self._opening_task: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()
        self._stop_lock = asyncio.Lock()
        # Bumped by stop(); work started under an older generation is abandoned.
        self._generation = 0
        # Set between a session fault and the ERROR transition that follows its release.
        self._pending_fault: Optional[CameraError] = None

    @property
    def state(self) -> CameraState:
        return self._state

    @property
    def phase(self) -> SessionState:
        return self._state.phase

    @property
    def descriptor(self) -> Optional[CameraDescriptor]:
        return self._state.descriptor

    @property
    def config(self) -> CameraConfig:
        return self._config

    def subscribe(self, callback: Callable[[CameraState], None]) -> Callable[[], None]:
        self._subscribers.append(callback)
        self._deliver(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Callable[[CameraState], None]) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    def _notify(self) -> None:
        for sub in list(self._subscribers):
            self._deliver(sub)

    def _deliver(self, sub: Callable[[CameraState], None]) -> None:
        try:
            sub(self._state)
        except Exception as e:
            self._logger.warning("Subscriber error: %s", e)

    def _transition(self, target: SessionState) -> None:
        current = self._state.phase
        if current is target:
            return
        if not is_allowed(current, target):
            raise InvalidStateError(f"illegal transition {current.name} -> {target.name}")
        self._state.phase = target
        self._logger.info("State %s -> %s", current.name, target.name)
        self._notify()

    def _raise_if_faulted(self) -> None:
        if self._pending_fault is not None:
            raise DeviceUnavailableError(f"camera faulted and is being released: {self._pending_fault}")

    def _create_session(self) -> CaptureSession:
        return CaptureSession(
            self._backend,
            camera_id=self._config.device.camera_id,
            open_timeout=self._config.open_timeout,
        )

    # ================================================================
    # START
    # ================================================================

    async def request_start(
        self,
        display_target: DisplayTarget,
        requested_size: Optional[Resolution] = None,
    ) -> CameraDescriptor:
        """Acquire the camera and start relaying preview to ``display_target``.

        Returns the current descriptor when preview is already active.
        """
        self._raise_if_faulted()
        phase = self._state.phase
        if phase is SessionState.PREVIEW_ACTIVE and self._session is not None and self._state.descriptor is not None:
            return self._state.descriptor
        if phase in _BUSY_PHASES:
            raise AlreadyInProgressError(f"camera start not allowed while {phase.name}")
        if phase is SessionState.ERROR:
            raise InvalidStateError("camera is in ERROR; call stop() before starting again")

        generation = self._generation
        size = requested_size or self._config.preview.resolution
        self._display = display_target
        self._transition(SessionState.PERMISSION_PENDING)

        try:
            granted = await self._await_permission()
        except asyncio.CancelledError:
            if generation == self._generation:
                self._display = None
                self._transition(SessionState.UNINITIALIZED)
            raise
        if generation != self._generation:
            raise OperationCancelledError("camera stopped while waiting for permission")
        if not granted:
            self._display = None
            self._transition(SessionState.UNINITIALIZED)
            raise PermissionDeniedError("camera permission denied")

        self._transition(SessionState.OPENING)
        session = self._session_factory()
        self._session = session
        session.set_fault_callback(functools.partial(self._on_session_fault, session))
        sink = functools.partial(self._relay_preview, session)
        self._opening_task = asyncio.get_running_loop().create_task(
            session.start(sink, size), name="camera-open"
        )

        try:
            descriptor = await self._opening_task
        except asyncio.CancelledError:
            if generation != self._generation:
                raise OperationCancelledError("camera stopped while opening") from None
            # Caller cancelled us; unwind to a clean state before propagating.
            self._abandon_start(session)
            self._transition(SessionState.UNINITIALIZED)
            raise
        except CameraError as exc:
            if generation != self._generation:
                raise OperationCancelledError("camera stopped while opening") from exc
            self._abandon_start(session)
            self._state.error = str(exc)
            self._logger.error("Camera start failed: %s", exc)
            self._transition(SessionState.ERROR)
            raise
        finally:
            if generation == self._generation:
                self._opening_task = None

        if generation != self._generation:
            await session.close()
            raise OperationCancelledError("camera stopped while opening")

        self._state.descriptor = descriptor
        self._state.error = ""
        self._state.preview_frames = 0
        self._transition(SessionState.PREVIEW_ACTIVE)
        return descriptor

    def _abandon_start(self, session: CaptureSession) -> None:
        session.set_fault_callback(None)
        if self._session is session:
            self._session = None
        self._display = None

    async def _await_permission(self) -> bool:
        gate = self._permission_gate
        if gate.is_granted():
            return True

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._permission_future = future

        def _on_result(granted: bool) -> None:
            try:
                loop.call_soon_threadsafe(self._resolve_permission, future, bool(granted))
            except RuntimeError:
                self._logger.debug("Event loop closed; dropping permission result")

        gate.request_grant(_on_result)
        try:
            return await future
        finally:
            if self._permission_future is future:
                self._permission_future = None

    @staticmethod
    def _resolve_permission(future: asyncio.Future, granted: bool) -> None:
        if not future.done():
            future.set_result(granted)

    # ================================================================
    # PREVIEW
    # ================================================================

    def _relay_preview(self, session: CaptureSession, frame: PreviewFrame) -> None:
        if session is not self._session or self._state.phase not in _PREVIEW_PHASES:
            return
        display = self._display
        if display is None:
            return
        display.push(frame)
        self._state.preview_frames += 1

    # ================================================================
    # STILL CAPTURE
    # ================================================================

    async def capture_still(self) -> PixelSurface:
        """Capture, decode and return one still at the configured size."""
        self._raise_if_faulted()
        phase = self._state.phase
        if phase is SessionState.CAPTURING:
            raise AlreadyInProgressError("a still capture is already in progress")
        if phase is not SessionState.PREVIEW_ACTIVE:
            raise InvalidStateError(f"capture_still() requires PREVIEW_ACTIVE, camera is {phase.name}")
        session = self._session
        descriptor = self._state.descriptor
        if session is None or descriptor is None:
            raise InvalidStateError("no active capture session")

        generation = self._generation
        width, height = self._config.capture.still_resolution or descriptor.resolution
        self._transition(SessionState.CAPTURING)
        captured_at = datetime.now()
        try:
            handle = await session.capture_once(self._config.capture_timeout)
            loop = asyncio.get_running_loop()
            surface = await loop.run_in_executor(
                None,
                functools.partial(self._decoder.decode_frame, handle, width, height, captured_at=captured_at),
            )
            if generation != self._generation:
                raise OperationCancelledError("camera stopped during still capture")
            self._state.stills_captured += 1
            self._state.last_capture_at = captured_at
            self._logger.info("Captured still %dx%d (#%d)", surface.width, surface.height, self._state.stills_captured)
            return surface
        except _RECOVERABLE_CAPTURE_ERRORS as exc:
            self._logger.warning("Still capture failed, preview continues: %s", exc)
            raise
        finally:
            if (
                self._state.phase is SessionState.CAPTURING
                and self._session is session
                and generation == self._generation
            ):
                self._transition(SessionState.PREVIEW_ACTIVE)

    # ================================================================
    # FAULTS
    # ================================================================

    def _on_session_fault(self, session: CaptureSession, error: CameraError) -> None:
        if session is not self._session:
            return
        self._session = None
        self._pending_fault = error
        self._state.error = str(error)
        self._logger.error("Camera fault, releasing session: %s", error)
        create_logged_task(
            self._release_after_fault(session, self._generation),
            logger=self._logger,
            context="camera-fault-release",
            pending=self._background,
        )

    async def _release_after_fault(self, session: CaptureSession, generation: int) -> None:
        session.set_fault_callback(None)
        await session.close()
        if generation != self._generation:
            return
        self._pending_fault = None
        self._display = None
        self._state.descriptor = None
        self._transition(SessionState.ERROR)

    # ================================================================
    # STOP
    # ================================================================

    async def stop(self) -> None:
        """Release everything and return to UNINITIALIZED. Safe from any state."""
        async with self._stop_lock:
            self._generation += 1

            future, self._permission_future = self._permission_future, None
            if future is not None and not future.done():
                future.set_exception(OperationCancelledError("camera stopped while waiting for permission"))

            task, self._opening_task = self._opening_task, None
            if task is not None and not task.done():
                task.cancel()
                await asyncio.wait({task})

            session, self._session = self._session, None
            if session is not None:
                session.set_fault_callback(None)
                await session.close()

            if self._background:
                await asyncio.wait(set(self._background))

            self._pending_fault = None
            self._display = None
            self._state.descriptor = None
            self._state.error = ""
            if self._state.phase is SessionState.UNINITIALIZED:
                self._logger.debug("stop(): already UNINITIALIZED")
                return
            self._transition(SessionState.UNINITIALIZED)


__all__ = ["CameraController"]
