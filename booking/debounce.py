"""Debounced execution with a stale-result guard."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Tuple

logger = logging.getLogger(__name__)

TimerFactory = Callable[..., threading.Timer]


class Debouncer:
    """Runs the most recently submitted action once input has been quiet.

    Every submission bumps a sequence number that is handed to the action.
    Actions compare it against :meth:`is_current` once their I/O completes so
    that results belonging to a superseded input are discarded.
    """

    def __init__(self, delay_seconds: float, *, timer_factory: TimerFactory = threading.Timer) -> None:
        if delay_seconds < 0:
            raise ValueError("delay_seconds must not be negative")
        self._delay_seconds = delay_seconds
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._sequence = 0
        self._in_flight = 0
        self._timer: Optional[threading.Timer] = None
        self._pending: Optional[Tuple[int, Callable[[int], None]]] = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._in_flight > 0

    def submit(self, action: Callable[[int], None]) -> int:
        with self._lock:
            self._sequence += 1
            sequence = self._sequence
            self._cancel_timer()
            self._pending = (sequence, action)
            timer = self._timer_factory(self._delay_seconds, self._fire, args=(sequence,))
            timer.daemon = True
            self._timer = timer
        timer.start()
        return sequence

    def cancel(self) -> None:
        """Drop the pending action and invalidate anything in flight."""

        with self._lock:
            self._sequence += 1
            self._cancel_timer()
            self._pending = None

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Run the pending action now, in the calling thread.

        When nothing is pending but an action is already running on the
        timer thread, wait up to ``timeout`` seconds for it to finish.
        """

        with self._lock:
            pending = self._pending
            self._pending = None
            self._cancel_timer()
            if pending is None:
                self._idle.wait_for(lambda: self._in_flight == 0, timeout)
                return False
            self._in_flight += 1
        sequence, action = pending
        self._run(sequence, action)
        return True

    def is_current(self, sequence: int) -> bool:
        with self._lock:
            return sequence == self._sequence

    def _fire(self, sequence: int) -> None:
        with self._lock:
            if self._pending is None or self._pending[0] != sequence:
                logger.debug("Skipping superseded debounced call %s", sequence)
                return
            action = self._pending[1]
            self._pending = None
            self._timer = None
            self._in_flight += 1
        self._run(sequence, action)

    def _run(self, sequence: int, action: Callable[[int], None]) -> None:
        try:
            action(sequence)
        finally:
            with self._lock:
                self._in_flight -= 1
                self._idle.notify_all()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
