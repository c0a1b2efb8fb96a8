from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

from autocontrol.net.net_logging import log_event


class LifecycleSignal(str, Enum):
    ENTERED_BACKGROUND = "ENTERED_BACKGROUND"
    BECAME_ACTIVE = "BECAME_ACTIVE"
    WILL_RESIGN_ACTIVE = "WILL_RESIGN_ACTIVE"
    WILL_TERMINATE = "WILL_TERMINATE"


class Suspendable(Protocol):
    def suspend(self) -> None: ...
    def resume(self) -> None: ...


class LifecycleAdapter:
    """Turns host foreground/background notifications into suspend()/resume().

    Only the two edges matter; every other signal is ignored.
    """

    def __init__(self, target: Suspendable) -> None:
        self._target = target
        self._logger = logging.getLogger("autocontrol.net")

    def notify(self, signal: LifecycleSignal) -> None:
        sig = LifecycleSignal(signal)
        if sig == LifecycleSignal.ENTERED_BACKGROUND:
            log_event(self._logger, "lifecycle", signal=sig.value, action="suspend")
            self._target.suspend()
        elif sig == LifecycleSignal.BECAME_ACTIVE:
            log_event(self._logger, "lifecycle", signal=sig.value, action="resume")
            self._target.resume()

    __call__ = notify
