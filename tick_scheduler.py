"""
muscly808 - Tick Scheduling
One-shot "run this on the next display refresh" requests with cancellation.
Callers re-request after every tick, so at most one request per caller is
outstanding.

  QtTickScheduler     - QTimer in the GUI event loop
  PacedTickScheduler  - fixed-rate loop in the calling thread (headless CLI)
  ManualTickScheduler - ticks only when told to (tests, offline analysis)
"""

import itertools
import time
from typing import Callable, Dict, Optional

TickCallback = Callable[[], None]


class TickScheduler:
    """Interface: request_tick() returns a handle accepted by cancel_tick()."""

    def request_tick(self, callback: TickCallback) -> int:
        raise NotImplementedError

    def cancel_tick(self, handle: int) -> None:
        raise NotImplementedError


class ManualTickScheduler(TickScheduler):
    def __init__(self):
        self._ids = itertools.count(1)
        self._pending: Dict[int, TickCallback] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def request_tick(self, callback: TickCallback) -> int:
        handle = next(self._ids)
        self._pending[handle] = callback
        return handle

    def cancel_tick(self, handle: int) -> None:
        self._pending.pop(handle, None)

    def tick(self) -> int:
        """Run every callback pending right now. Returns how many ran."""
        due = list(self._pending.items())
        self._pending.clear()
        for _, callback in due:
            callback()
        return len(due)

    def run(self, ticks: int) -> None:
        for _ in range(ticks):
            self.tick()


class PacedTickScheduler(ManualTickScheduler):
    """Runs pending ticks at a fixed rate until stopped or idle.

    Uses absolute time targets so a slow tick does not make later ones drift.
    """

    def __init__(self, fps: int = 60, sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.perf_counter):
        super().__init__()
        self.interval = 1.0 / max(1, fps)
        self._sleep = sleep
        self._clock = clock
        self._stopped = False

    def stop(self) -> None:
        self._stopped = True

    def run_for(self, seconds: Optional[float] = None,
                should_continue: Optional[Callable[[], bool]] = None) -> int:
        """Tick until *seconds* elapse, *should_continue* says no, stop() is
        called or nothing is pending. Returns the number of ticks run."""
        self._stopped = False
        start = self._clock()
        next_tick = start
        count = 0
        while not self._stopped and self._pending:
            now = self._clock()
            if seconds is not None and now - start >= seconds:
                break
            if should_continue is not None and not should_continue():
                break

            self.tick()
            count += 1

            next_tick += self.interval
            sleep_time = next_tick - self._clock()
            if sleep_time > 0:
                self._sleep(sleep_time)
            else:
                # Behind schedule - reset to prevent backlog
                next_tick = self._clock()
        return count


class QtTickScheduler(TickScheduler):
    """Single-shot QTimers on the Qt event loop (callbacks run in the GUI thread)."""

    def __init__(self, fps: int = 60, parent=None):
        from PyQt6.QtCore import QTimer

        self._timer_cls = QTimer
        self._parent = parent
        self.interval_ms = max(1, round(1000 / max(1, fps)))
        self._ids = itertools.count(1)
        self._timers: Dict[int, object] = {}

    @property
    def pending_count(self) -> int:
        return len(self._timers)

    def request_tick(self, callback: TickCallback) -> int:
        handle = next(self._ids)
        timer = self._timer_cls(self._parent)
        timer.setSingleShot(True)
        timer.setInterval(self.interval_ms)

        def fire():
            self._timers.pop(handle, None)
            timer.deleteLater()
            callback()

        timer.timeout.connect(fire)
        self._timers[handle] = timer
        timer.start()
        return handle

    def cancel_tick(self, handle: int) -> None:
        timer = self._timers.pop(handle, None)
        if timer is not None:
            timer.stop()
            timer.deleteLater()
