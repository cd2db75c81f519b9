"""Advisory availability checks for a candidate appointment slot."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Protocol

from connector import AvailabilityConflict, BookingClientError

from .debounce import Debouncer, TimerFactory

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.5


class AvailabilityClientProtocol(Protocol):
    def check_availability(
        self,
        provider_id: str,
        start_time: datetime,
        end_time: datetime,
        *,
        chair_id: Optional[str] = None,
        room_id: Optional[str] = None,
        exclude_appointment_id: Optional[str] = None,
    ) -> List[AvailabilityConflict]:
        """Return bookings overlapping the window."""


@dataclass(frozen=True)
class AvailabilityRequest:
    """A candidate slot to check against existing bookings."""

    provider_id: Optional[str]
    start_time: Optional[datetime]
    duration: Optional[int]
    chair_id: Optional[str] = None
    room_id: Optional[str] = None
    exclude_appointment_id: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(
            self.provider_id
            and self.start_time is not None
            and isinstance(self.duration, int)
            and self.duration > 0
        )

    @property
    def end_time(self) -> Optional[datetime]:
        if self.start_time is None or not self.duration:
            return None
        return self.start_time + timedelta(minutes=self.duration)


ConflictListener = Callable[[AvailabilityRequest, List[AvailabilityConflict]], None]


class AvailabilityChecker:
    """Debounces candidate changes and keeps the latest known conflicts.

    Conflicts are advisory: failures to reach the availability endpoint are
    logged and reported as an empty conflict list.
    """

    def __init__(
        self,
        client: AvailabilityClientProtocol,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        on_change: Optional[ConflictListener] = None,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self._client = client
        self._on_change = on_change
        self._debouncer = Debouncer(debounce_seconds, timer_factory=timer_factory)
        self._lock = threading.Lock()
        self._conflicts: List[AvailabilityConflict] = []
        self._checking = False

    @property
    def conflicts(self) -> List[AvailabilityConflict]:
        with self._lock:
            return list(self._conflicts)

    @property
    def checking(self) -> bool:
        with self._lock:
            return self._checking

    @property
    def pending(self) -> bool:
        return self._debouncer.pending

    def request_check(self, request: AvailabilityRequest) -> None:
        """Schedule a check for ``request`` once input settles."""

        if not request.is_complete:
            self._debouncer.cancel()
            with self._lock:
                self._conflicts = []
                self._checking = False
            self._notify(request, [])
            return
        self._debouncer.submit(lambda sequence: self._run_check(sequence, request))

    def flush(self) -> List[AvailabilityConflict]:
        """Run any pending check immediately and return the settled conflicts."""

        self._debouncer.flush()
        return self.conflicts

    def cancel(self) -> None:
        self._debouncer.cancel()
        with self._lock:
            self._checking = False

    def _run_check(self, sequence: int, request: AvailabilityRequest) -> None:
        with self._lock:
            self._checking = True
        end_time = request.end_time
        try:
            conflicts = self._client.check_availability(
                str(request.provider_id),
                request.start_time,
                end_time,
                chair_id=request.chair_id,
                room_id=request.room_id,
                exclude_appointment_id=request.exclude_appointment_id,
            )
        except (BookingClientError, KeyError, TypeError, ValueError) as exc:
            logger.warning(
                "Availability check failed for provider %s; treating slot as free: %s",
                request.provider_id,
                exc,
            )
            conflicts = []

        if request.exclude_appointment_id:
            conflicts = [
                conflict
                for conflict in conflicts
                if conflict.appointment_id != request.exclude_appointment_id
            ]

        with self._lock:
            if not self._debouncer.is_current(sequence):
                logger.debug("Discarding stale availability result %s", sequence)
                return
            self._conflicts = list(conflicts)
            self._checking = False

        if conflicts:
            logger.info(
                "Found %d conflict(s) for provider %s at %s",
                len(conflicts),
                request.provider_id,
                request.start_time.isoformat(),
            )
        self._notify(request, list(conflicts))

    def _notify(self, request: AvailabilityRequest, conflicts: List[AvailabilityConflict]) -> None:
        if self._on_change is not None:
            self._on_change(request, conflicts)


__all__ = [
    "AvailabilityChecker",
    "AvailabilityClientProtocol",
    "AvailabilityRequest",
    "DEFAULT_DEBOUNCE_SECONDS",
]
