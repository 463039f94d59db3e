"""State definitions for the camera controller."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto
from typing import Optional


class SessionState(Enum):
    """Camera acquisition phase."""

    UNINITIALIZED = auto()
    PERMISSION_PENDING = auto()
    OPENING = auto()
    PREVIEW_ACTIVE = auto()
    CAPTURING = auto()
    ERROR = auto()


# Transitions reachable through request_start / capture_still. ERROR and
# UNINITIALIZED are reachable from everywhere (fault, stop) and are not listed.
ALLOWED_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.UNINITIALIZED: frozenset({SessionState.PERMISSION_PENDING}),
    SessionState.PERMISSION_PENDING: frozenset({SessionState.OPENING}),
    SessionState.OPENING: frozenset({SessionState.PREVIEW_ACTIVE}),
    SessionState.PREVIEW_ACTIVE: frozenset({SessionState.CAPTURING}),
    SessionState.CAPTURING: frozenset({SessionState.PREVIEW_ACTIVE}),
    SessionState.ERROR: frozenset(),
}


def is_allowed(current: SessionState, target: SessionState) -> bool:
    if target in (SessionState.ERROR, SessionState.UNINITIALIZED):
        return True
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True)
class CameraDescriptor:
    """Physical camera plus its negotiated preview resolution."""

    camera_id: str
    width: int
    height: int

    @property
    def resolution(self) -> tuple[int, int]:
        return self.width, self.height


@dataclass
class CameraState:
    """Mutable controller state handed to subscribers."""

    phase: SessionState = SessionState.UNINITIALIZED
    descriptor: Optional[CameraDescriptor] = None
    error: str = ""
    preview_frames: int = 0  # Frames relayed to the display target
    stills_captured: int = 0  # Stills decoded successfully
    last_capture_at: Optional[datetime] = None
