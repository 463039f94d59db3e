"""Exception hierarchy for the camera stack."""


class CameraError(Exception):
    """Base class for all camera-related errors."""


class PermissionDeniedError(CameraError):
    """The permission gate denied camera access."""


class DeviceUnavailableError(CameraError):
    """No camera is enumerable, or the device reported an error or vanished."""


class DeviceBusyError(CameraError):
    """The camera is already claimed by another session."""


class ConfigurationFailedError(CameraError):
    """The capture session could not bind the requested output targets."""


class CaptureTimeoutError(CameraError):
    """A still capture did not complete before its deadline."""


class CaptureFailedError(CameraError):
    """The hardware reported a failed still capture."""


class InvalidStateError(CameraError):
    """Operation not valid for the current camera state."""


class AlreadyInProgressError(InvalidStateError):
    """A transition or capture of the same kind is already in flight."""


class DecodeError(CameraError):
    """A still buffer could not be decoded into pixels."""


class OperationCancelledError(CameraError):
    """``stop()`` interrupted the operation before it finished."""


class StorageIOError(CameraError):
    """The storage sink failed to persist a surface."""


class FrameReleasedError(CameraError):
    """A frame handle was read or released after it had been released."""


__all__ = [
    "AlreadyInProgressError",
    "CameraError",
    "CaptureFailedError",
    "CaptureTimeoutError",
    "ConfigurationFailedError",
    "DecodeError",
    "DeviceBusyError",
    "DeviceUnavailableError",
    "FrameReleasedError",
    "InvalidStateError",
    "OperationCancelledError",
    "PermissionDeniedError",
    "StorageIOError",
]
