"""Camera permission gate."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Callable

GrantCallback = Callable[[bool], None]


class PermissionGate(ABC):
    """Binary gate in front of the camera.

    ``request_grant`` may answer synchronously or later from another
    thread; callers must marshal the result themselves.
    """

    @abstractmethod
    def is_granted(self) -> bool:
        ...

    @abstractmethod
    def request_grant(self, on_result: GrantCallback) -> None:
        ...


class StaticPermissionGate(PermissionGate):
    """Gate with a fixed answer, optionally delivered from a timer thread.

    Like a user prompt, nothing is granted until the first request has been
    answered; a granted answer is remembered afterwards.
    """

    def __init__(self, granted: bool = True, *, delay: float = 0.0) -> None:
        self._answer = granted
        self._delay = delay
        self._granted = False
        self.requests = 0

    def is_granted(self) -> bool:
        return self._granted

    def request_grant(self, on_result: GrantCallback) -> None:
        self.requests += 1
        if self._delay <= 0:
            self._deliver(on_result)
            return
        timer = threading.Timer(self._delay, self._deliver, args=(on_result,))
        timer.daemon = True
        timer.start()

    def _deliver(self, on_result: GrantCallback) -> None:
        self._granted = self._answer
        on_result(self._answer)


__all__ = ["GrantCallback", "PermissionGate", "StaticPermissionGate"]
