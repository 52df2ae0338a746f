from __future__ import annotations

import threading
from typing import Callable, Optional

from finance_backend.utils import get_logger

logger = get_logger(__name__)


class DebouncedTask:
    """Run ``action`` once, ``delay`` seconds after the last ``trigger()``.

    Each trigger cancels the pending timer and arms a new one, so a burst of
    triggers collapses into a single call.
    """

    def __init__(self, delay: float, action: Callable[[], None], name: str = "debounced-task") -> None:
        self.delay = delay
        self._action = action
        self._name = name
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def trigger(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self.delay, self._fire)
            timer.name = self._name
            timer.daemon = True
            self._timer = timer
            timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def flush(self) -> None:
        """Run the pending action now instead of waiting for the timer."""
        with self._lock:
            if self._timer is None:
                return
            self._timer.cancel()
            self._timer = None
        self._run()

    def _fire(self) -> None:
        with self._lock:
            if self._timer is None or threading.current_thread() is not self._timer:
                return
            self._timer = None
        self._run()

    def _run(self) -> None:
        try:
            self._action()
        except Exception:
            logger.exception("%s failed", self._name)


class PeriodicRunner:
    def __init__(self, interval: float, action: Callable[[], None], name: str = "periodic-runner") -> None:
        self.interval = interval
        self._action = action
        self._name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, run_immediately: bool = True) -> None:
        if self.running:
            return
        self._stop.clear()
        if run_immediately:
            self._run()
        self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self._run()

    def _run(self) -> None:
        try:
            self._action()
        except Exception:
            logger.exception("%s failed", self._name)
