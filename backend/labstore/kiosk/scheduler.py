from __future__ import annotations

import threading
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, func: Callable[[], None]) -> TimerHandle: ...


class ThreadScheduler:
    """Runs each callback once on a daemon threading.Timer. cancel() is synchronous."""

    def call_later(self, delay: float, func: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, func)
        timer.daemon = True
        timer.start()
        return timer


default_scheduler = ThreadScheduler()
