# The controller lives in .controller; importing it here would cycle through
# capture.session, which needs CameraDescriptor from .state.
from .state import ALLOWED_TRANSITIONS, CameraDescriptor, CameraState, SessionState, is_allowed

__all__ = [
    "ALLOWED_TRANSITIONS",
    "CameraDescriptor",
    "CameraState",
    "SessionState",
    "is_allowed",
]
