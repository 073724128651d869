"""Cancellable periodic work for a recognition session."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Hashable, Optional

logger = logging.getLogger(__name__)


class RecognitionScheduler:
    """Owns one repeating detection interval and keyed one-shot timers.

    Interval callbacks run one after another on a single worker thread, so a
    slow tick delays the next one instead of overlapping it; ticks that fell
    due while a callback was still running are skipped.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic, name: str = "recognition") -> None:
        self._clock = clock
        self._name = name
        self._lock = threading.RLock()
        self._timers: Dict[Hashable, threading.Timer] = {}
        self._stop_event = threading.Event()
        self._interval_thread: Optional[threading.Thread] = None

    def now(self) -> float:
        return self._clock()

    # ------------------------------------------------------------------
    # Interval
    # ------------------------------------------------------------------
    def start_interval(self, interval_seconds: float, callback: Callable[[], None]) -> None:
        with self._lock:
            if self._interval_thread is not None and self._interval_thread.is_alive():
                raise RuntimeError("Interval already running")
            self._stop_event = threading.Event()
            stop_event = self._stop_event
            self._interval_thread = threading.Thread(
                target=self._run_interval,
                args=(interval_seconds, callback, stop_event),
                name=f"{self._name}-interval",
                daemon=True,
            )
            self._interval_thread.start()

    def _run_interval(self, interval: float, callback: Callable[[], None], stop_event: threading.Event) -> None:
        next_due = self._clock()
        while not stop_event.is_set():
            try:
                callback()
            except Exception:
                logger.exception("[Scheduler] Interval callback crashed")
            next_due += interval
            now = self._clock()
            if now > next_due:
                skipped = int((now - next_due) // interval) + 1
                logger.debug("[Scheduler] Tick overran, skipping %d tick(s)", skipped)
                next_due += skipped * interval
            stop_event.wait(max(0.0, next_due - now))

    def interval_running(self) -> bool:
        with self._lock:
            return bool(self._interval_thread and self._interval_thread.is_alive() and not self._stop_event.is_set())

    # ------------------------------------------------------------------
    # Keyed timers
    # ------------------------------------------------------------------
    def call_later(self, key: Hashable, delay_seconds: float, callback: Callable[[], None]) -> None:
        with self._lock:
            self._cancel_locked(key)
            timer = threading.Timer(max(0.0, delay_seconds), self._fire, args=(key, callback))
            timer.daemon = True
            self._timers[key] = timer
            timer.start()

    def _fire(self, key: Hashable, callback: Callable[[], None]) -> None:
        current = threading.current_thread()
        with self._lock:
            if self._timers.get(key) is not current:
                return
            del self._timers[key]
        try:
            callback()
        except Exception:
            logger.exception("[Scheduler] Timer %s crashed", key)

    def _cancel_locked(self, key: Hashable) -> bool:
        timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def cancel(self, key: Hashable) -> bool:
        with self._lock:
            return self._cancel_locked(key)

    def cancel_all(self) -> None:
        with self._lock:
            for key in list(self._timers):
                self._cancel_locked(key)

    def pending_keys(self):
        with self._lock:
            return list(self._timers)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------
    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._lock:
            self._stop_event.set()
            self.cancel_all()
            thread = self._interval_thread
            self._interval_thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
