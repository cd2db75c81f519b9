"""Patient lookup used by the appointment form."""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional, Protocol

from connector import BookingClientError, Patient

from .debounce import Debouncer, TimerFactory

logger = logging.getLogger(__name__)

SEARCH_DEBOUNCE_SECONDS = 0.3
MIN_QUERY_LENGTH = 2


class PatientLookupProtocol(Protocol):
    def search_patients(self, search: str, *, page_size: int = 10) -> List[Patient]:
        """Return patients matching ``search``."""

    def recent_patients(self, *, page_size: int = 5) -> List[Patient]:
        """Return the most recently created patients."""


class PatientSearch:
    """Debounced search-as-you-type over the patient directory.

    Lookup failures are logged and leave the previous results in place.
    """

    def __init__(
        self,
        client: PatientLookupProtocol,
        *,
        debounce_seconds: float = SEARCH_DEBOUNCE_SECONDS,
        on_results: Optional[Callable[[List[Patient]], None]] = None,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self._client = client
        self._on_results = on_results
        self._debouncer = Debouncer(debounce_seconds, timer_factory=timer_factory)
        self._lock = threading.Lock()
        self._query = ""
        self._results: List[Patient] = []
        self._recent: List[Patient] = []
        self._loading = False

    @property
    def query(self) -> str:
        return self._query

    @property
    def results(self) -> List[Patient]:
        with self._lock:
            return list(self._results)

    @property
    def recent(self) -> List[Patient]:
        return list(self._recent)

    @property
    def loading(self) -> bool:
        with self._lock:
            return self._loading

    def suggestions(self) -> List[Patient]:
        """Patients to offer in the dropdown for the current query."""

        if len(self._query.strip()) < MIN_QUERY_LENGTH:
            return self.recent
        return self.results

    def load_recent(self) -> List[Patient]:
        try:
            self._recent = self._client.recent_patients()
        except BookingClientError as exc:
            logger.debug("Could not load recent patients: %s", exc)
        return self.recent

    def set_query(self, text: str) -> None:
        self._query = text or ""
        term = self._query.strip()
        if len(term) < MIN_QUERY_LENGTH:
            self._debouncer.cancel()
            with self._lock:
                self._results = []
                self._loading = False
            return
        self._debouncer.submit(lambda sequence: self._run_search(sequence, term))

    def clear(self) -> None:
        self.set_query("")

    def flush(self) -> List[Patient]:
        self._debouncer.flush()
        return self.results

    def cancel(self) -> None:
        self._debouncer.cancel()

    def _run_search(self, sequence: int, term: str) -> None:
        with self._lock:
            self._loading = True
        try:
            patients: Optional[List[Patient]] = self._client.search_patients(term)
        except BookingClientError as exc:
            logger.debug("Patient search for %r failed: %s", term, exc)
            patients = None

        with self._lock:
            if not self._debouncer.is_current(sequence):
                return
            self._loading = False
            if patients is None:
                return
            self._results = list(patients)

        if self._on_results is not None:
            self._on_results(list(patients))


__all__ = ["MIN_QUERY_LENGTH", "PatientLookupProtocol", "PatientSearch"]
