"""Unit tests for CaptureSession against the simulated backend."""

import asyncio

import pytest

from camfeature.camera.capture.session import PREVIEW_CONTROLS, CaptureSession, negotiate_size
from camfeature.camera.errors import (
    AlreadyInProgressError,
    CaptureFailedError,
    CaptureTimeoutError,
    ConfigurationFailedError,
    DeviceBusyError,
    DeviceUnavailableError,
    InvalidStateError,
    OperationCancelledError,
)
from camfeature.camera.hardware.base import ERROR_CAMERA_DISABLED
from camfeature.camera.hardware.simulated import SimulatedCameraBackend


def make_session(backend, claims, **kwargs):
    kwargs.setdefault("open_timeout", 1.0)
    return CaptureSession(backend, claims=claims, **kwargs)


class TestNegotiateSize:

    def test_first_fitting_size(self):
        sizes = [(4032, 3024), (1920, 1080), (1280, 720)]
        assert negotiate_size(sizes, (1920, 1080)) == (1920, 1080)
        assert negotiate_size(sizes, (1600, 900)) == (1280, 720)

    def test_falls_back_to_requested(self):
        assert negotiate_size([(4032, 3024)], (800, 600)) == (800, 600)
        assert negotiate_size([], (320, 240)) == (320, 240)


class TestStart:

    @pytest.mark.asyncio
    async def test_start_negotiates_and_streams_preview(self, backend, claims, wait_until):
        frames = []
        session = make_session(backend, claims)
        descriptor = await session.start(frames.append, (1920, 1080))
        try:
            assert descriptor.camera_id == "0"
            assert descriptor.resolution == (1920, 1080)
            assert session.is_open
            await wait_until(lambda: len(frames) >= 2)
            assert frames[0].size == (1920, 1080)
            hw = backend.active_sessions[0]
            assert hw.repeating_request.controls == PREVIEW_CONTROLS
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_no_camera(self, claims):
        session = make_session(SimulatedCameraBackend(()), claims)
        with pytest.raises(DeviceUnavailableError):
            await session.start(lambda frame: None, (640, 480))

    @pytest.mark.asyncio
    async def test_unknown_camera_id(self, backend, claims):
        session = make_session(backend, claims, camera_id="7")
        with pytest.raises(DeviceUnavailableError, match="not found"):
            await session.start(lambda frame: None, (640, 480))

    @pytest.mark.asyncio
    async def test_device_in_use_reports_busy_and_releases_claim(self, backend, claims):
        backend.claimed_elsewhere.add("0")
        session = make_session(backend, claims)
        with pytest.raises(DeviceBusyError):
            await session.start(lambda frame: None, (640, 480))
        assert not claims.is_claimed(backend, "0")

        backend.claimed_elsewhere.clear()
        await session.start(lambda frame: None, (640, 480))
        await session.close()

    @pytest.mark.asyncio
    async def test_device_error_is_unavailable(self, backend, claims):
        backend.open_error_code = ERROR_CAMERA_DISABLED
        with pytest.raises(DeviceUnavailableError):
            await make_session(backend, claims).start(lambda frame: None, (640, 480))

    @pytest.mark.asyncio
    async def test_second_session_is_busy(self, backend, claims):
        first = make_session(backend, claims)
        await first.start(lambda frame: None, (640, 480))
        try:
            with pytest.raises(DeviceBusyError):
                await make_session(backend, claims).start(lambda frame: None, (640, 480))
            assert backend.open_calls == 1
        finally:
            await first.close()

    @pytest.mark.asyncio
    async def test_configure_failure_releases_device(self, backend, claims):
        backend.configure_fails = True
        session = make_session(backend, claims)
        with pytest.raises(ConfigurationFailedError):
            await session.start(lambda frame: None, (640, 480))
        assert backend.open_devices == []
        assert not claims.is_claimed(backend, "0")
        assert not session.is_open

    @pytest.mark.asyncio
    async def test_open_timeout(self, backend, claims):
        backend.hang_open = True
        session = make_session(backend, claims, open_timeout=0.1)
        with pytest.raises(DeviceUnavailableError, match="did not open"):
            await session.start(lambda frame: None, (640, 480))
        assert not claims.is_claimed(backend, "0")

    @pytest.mark.asyncio
    async def test_restart_tears_down_previous(self, backend, claims):
        session = make_session(backend, claims)
        await session.start(lambda frame: None, (640, 480))
        first_device = backend.open_devices[0]
        await session.start(lambda frame: None, (1280, 720))
        try:
            assert first_device.closed
            assert len(backend.open_devices) == 1
            assert session.descriptor.resolution == (1280, 720)
        finally:
            await session.close()


class TestCaptureOnce:

    @pytest.mark.asyncio
    async def test_capture_returns_handle(self, backend, claims):
        session = make_session(backend, claims)
        await session.start(lambda frame: None, (640, 480))
        try:
            handle = await session.capture_once(timeout=2.0)
            assert handle.size == (640, 480)
            assert session.reader.outstanding == 1
            handle.release()
            assert session.reader.outstanding == 0
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_capture_requires_open_session(self, backend, claims):
        with pytest.raises(InvalidStateError):
            await make_session(backend, claims).capture_once()
        assert backend.capture_calls == 0

    @pytest.mark.asyncio
    async def test_second_capture_rejected(self, backend, claims):
        backend.capture_delay = 0.2
        session = make_session(backend, claims)
        await session.start(lambda frame: None, (640, 480))
        try:
            first = asyncio.create_task(session.capture_once(timeout=2.0))
            await asyncio.sleep(0)
            with pytest.raises(AlreadyInProgressError):
                await session.capture_once(timeout=2.0)
            handle = await first
            handle.release()
            assert backend.capture_calls == 1
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_timeout_then_late_completion_is_drained(self, backend, claims, wait_until):
        backend.hang_next_capture = True
        session = make_session(backend, claims)
        await session.start(lambda frame: None, (640, 480))
        try:
            with pytest.raises(CaptureTimeoutError):
                await session.capture_once(timeout=0.1)
            assert not session.capture_in_flight

            hw = backend.active_sessions[0]
            assert backend.complete_hung_captures() == 1
            await wait_until(lambda: hw.stills_delivered == 1)
            await wait_until(lambda: session.reader.outstanding == 0)

            handle = await session.capture_once(timeout=2.0)
            handle.release()
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_hardware_failure(self, backend, claims):
        backend.fail_next_capture = True
        session = make_session(backend, claims)
        await session.start(lambda frame: None, (640, 480))
        try:
            with pytest.raises(CaptureFailedError):
                await session.capture_once(timeout=2.0)
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_close_cancels_pending_capture(self, backend, claims):
        backend.hang_next_capture = True
        session = make_session(backend, claims)
        await session.start(lambda frame: None, (640, 480))
        pending = asyncio.create_task(session.capture_once(timeout=5.0))
        await asyncio.sleep(0.05)
        await session.close()
        with pytest.raises(OperationCancelledError):
            await pending


class TestClose:

    @pytest.mark.asyncio
    async def test_close_releases_everything(self, backend, claims):
        session = make_session(backend, claims)
        await session.start(lambda frame: None, (640, 480))
        hw = backend.active_sessions[0]
        reader = session.reader
        await session.close()
        assert backend.open_devices == []
        assert backend.active_sessions == []
        assert hw.repeating_request is None
        assert reader.closed
        assert not claims.is_claimed(backend, "0")
        assert session.descriptor is None

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, backend, claims):
        session = make_session(backend, claims)
        await session.close()
        await session.start(lambda frame: None, (640, 480))
        await session.close()
        await session.close()
        assert not session.is_open


class TestFaults:

    @pytest.mark.asyncio
    async def test_disconnect_notifies_owner_and_fails_capture(self, backend, claims, wait_until):
        faults = []
        backend.hang_next_capture = True
        session = make_session(backend, claims)
        session.set_fault_callback(faults.append)
        await session.start(lambda frame: None, (640, 480))
        try:
            pending = asyncio.create_task(session.capture_once(timeout=5.0))
            await asyncio.sleep(0.05)
            backend.inject_disconnect()
            with pytest.raises(DeviceUnavailableError):
                await pending
            await wait_until(lambda: len(faults) == 1)
            assert isinstance(faults[0], DeviceUnavailableError)
        finally:
            await session.close()
