"""Appointment form state machine.

The form collects the fields of a new or edited appointment, keeps an
advisory conflict list fresh through :class:`AvailabilityChecker`, and
submits the record to the booking API. States advance as fields are filled:

``EMPTY -> PATIENT_SELECTED -> TYPE_SELECTED -> READY -> CONFLICT_CHECKED``

and submission moves through ``SUBMITTING`` to ``SUCCESS`` or ``ERROR``.
Conflicts never block submission on their own; they require the caller's
``confirm`` callback to approve.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

from connector import (
    Appointment,
    AppointmentSource,
    AppointmentType,
    AvailabilityConflict,
    BookingClientError,
    Chair,
    Patient,
    Provider,
)
from connector.models import MAX_DURATION_MINUTES, format_timestamp

from .availability import DEFAULT_DEBOUNCE_SECONDS, AvailabilityChecker, AvailabilityRequest
from .debounce import TimerFactory
from .patients import SEARCH_DEBOUNCE_SECONDS, PatientSearch

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 30
MAX_NOTES_LENGTH = 2000
PAST_START_GRACE = timedelta(minutes=5)
CONFLICT_PROMPT = "There are scheduling conflicts. Do you want to proceed anyway?"


class FormMode(str, Enum):
    CREATE = "create"
    EDIT = "edit"


class FormState(str, Enum):
    EMPTY = "empty"
    PATIENT_SELECTED = "patient-selected"
    TYPE_SELECTED = "type-selected"
    READY = "ready"
    CONFLICT_CHECKED = "conflict-checked"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class FormValues:
    patient_id: str = ""
    appointment_type_id: str = ""
    provider_id: str = ""
    chair_id: Optional[str] = None
    room_id: Optional[str] = None
    start_time: Optional[datetime] = None
    duration: int = DEFAULT_DURATION_MINUTES
    source: AppointmentSource = AppointmentSource.STAFF
    notes: str = ""


ConfirmCallback = Callable[[List[AvailabilityConflict]], bool]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class AppointmentForm:
    """Collects, checks, and submits a single appointment."""

    def __init__(
        self,
        client,
        *,
        mode: Union[FormMode, str] = FormMode.CREATE,
        initial: Optional[Appointment] = None,
        preselected_start: Optional[datetime] = None,
        preselected_provider_id: Optional[str] = None,
        initial_patient: Optional[Patient] = None,
        on_success: Optional[Callable[[Appointment], None]] = None,
        confirm: Optional[ConfirmCallback] = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        search_debounce_seconds: float = SEARCH_DEBOUNCE_SECONDS,
        timer_factory: TimerFactory = threading.Timer,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.mode = FormMode(mode)
        if self.mode is FormMode.EDIT and (initial is None or not initial.id):
            raise ValueError("Edit mode requires an existing appointment with an id")

        self._client = client
        self._initial = initial
        self._on_success = on_success
        self._confirm = confirm
        self._clock = clock

        self.values = self._default_values(initial, preselected_start, preselected_provider_id)
        self.selected_patient: Optional[Patient] = initial_patient
        if initial_patient is not None:
            self.values.patient_id = initial_patient.id

        self.appointment_types: List[AppointmentType] = []
        self.providers: List[Provider] = []
        self.chairs: List[Chair] = []
        self.notices: List[str] = []

        self.errors: Dict[str, str] = {}
        self.error: Optional[str] = None
        self.saved: Optional[Appointment] = None
        self.state = FormState.EMPTY
        self._conflicts_settled = False

        self.patient_search = PatientSearch(
            client, debounce_seconds=search_debounce_seconds, timer_factory=timer_factory
        )
        self._checker = AvailabilityChecker(
            client,
            debounce_seconds=debounce_seconds,
            on_change=self._on_conflicts,
            timer_factory=timer_factory,
        )
        self._refresh_state()
        self._schedule_check()

    def _default_values(
        self,
        initial: Optional[Appointment],
        preselected_start: Optional[datetime],
        preselected_provider_id: Optional[str],
    ) -> FormValues:
        if initial is None:
            return FormValues(
                provider_id=preselected_provider_id or "",
                start_time=preselected_start or self._clock(),
            )
        return FormValues(
            patient_id=initial.patient_id,
            appointment_type_id=initial.appointment_type_id,
            provider_id=initial.provider_id or preselected_provider_id or "",
            chair_id=initial.chair_id,
            room_id=initial.room_id,
            start_time=initial.start_time,
            duration=initial.duration or DEFAULT_DURATION_MINUTES,
            source=initial.source,
            notes=initial.notes or "",
        )

    # Lookups

    def load_options(self) -> None:
        """Load appointment types, providers, chairs, and recent patients."""

        self.patient_search.load_recent()
        try:
            self.appointment_types = self._client.list_appointment_types()
        except BookingClientError as exc:
            logger.error("Failed to load appointment types: %s", exc)
            self.notices.append("Failed to load appointment types")
        try:
            self.providers = self._client.list_providers()
        except BookingClientError as exc:
            logger.error("Failed to load providers: %s", exc)
            self.notices.append("Failed to load providers")
        try:
            self.chairs = self._client.list_chairs()
        except BookingClientError as exc:
            logger.debug("Chairs unavailable: %s", exc)

    @property
    def selected_type(self) -> Optional[AppointmentType]:
        for appointment_type in self.appointment_types:
            if appointment_type.id == self.values.appointment_type_id:
                return appointment_type
        return None

    @property
    def conflicts(self) -> List[AvailabilityConflict]:
        return self._checker.conflicts

    @property
    def checking_availability(self) -> bool:
        return self._checker.checking or self._checker.pending

    @property
    def end_time(self) -> Optional[datetime]:
        if self.values.start_time is None:
            return None
        return self.values.start_time + timedelta(minutes=self.values.duration or DEFAULT_DURATION_MINUTES)

    # Field edits

    def select_patient(self, patient: Patient) -> None:
        self.selected_patient = patient
        self.values.patient_id = patient.id
        self.patient_search.clear()
        self._refresh_state()

    def clear_patient(self) -> None:
        self.selected_patient = None
        self.values.patient_id = ""
        self._refresh_state()

    def select_appointment_type(self, appointment_type: Union[AppointmentType, str]) -> None:
        if isinstance(appointment_type, AppointmentType):
            if all(item.id != appointment_type.id for item in self.appointment_types):
                self.appointment_types.append(appointment_type)
            self.values.appointment_type_id = appointment_type.id
        else:
            self.values.appointment_type_id = appointment_type

        selected = self.selected_type
        if selected is not None and self.mode is FormMode.CREATE:
            self.values.duration = selected.default_duration
            self._schedule_check()
        self._refresh_state()

    def set_provider(self, provider_id: str) -> None:
        self.values.provider_id = provider_id or ""
        self._schedule_check()

    def set_start_time(self, start_time: Optional[datetime]) -> None:
        self.values.start_time = start_time
        self._schedule_check()

    def set_duration(self, minutes: int) -> None:
        self.values.duration = minutes
        self._schedule_check()

    def set_chair(self, chair_id: Optional[str]) -> None:
        self.values.chair_id = chair_id or None
        self._schedule_check()

    def set_room(self, room_id: Optional[str]) -> None:
        self.values.room_id = room_id or None
        self._schedule_check()

    def set_source(self, source: Union[AppointmentSource, str]) -> None:
        self.values.source = AppointmentSource(source)

    def set_notes(self, notes: str) -> None:
        self.values.notes = notes or ""

    # Validation & submission

    def validate(self) -> Dict[str, str]:
        values = self.values
        errors: Dict[str, str] = {}
        if not values.patient_id:
            errors["patient_id"] = "Patient is required"
        if not values.appointment_type_id:
            errors["appointment_type_id"] = "Appointment type is required"
        if not values.provider_id:
            errors["provider_id"] = "Provider is required"
        if values.start_time is None:
            errors["start_time"] = "Start time is required"
        elif self.mode is FormMode.CREATE and values.start_time < self._clock() - PAST_START_GRACE:
            errors["start_time"] = "Appointment cannot be scheduled in the past"
        if not isinstance(values.duration, int) or values.duration <= 0:
            errors["duration"] = "Duration must be positive"
        elif values.duration > MAX_DURATION_MINUTES:
            errors["duration"] = "Duration cannot exceed 8 hours"
        if len(values.notes) > MAX_NOTES_LENGTH:
            errors["notes"] = f"Notes cannot exceed {MAX_NOTES_LENGTH} characters"
        return errors

    def submit(self) -> Optional[Appointment]:
        """Validate, confirm conflicts, and save the appointment.

        Returns the saved record, or ``None`` when validation failed, the
        user declined the conflict prompt, or the API rejected the request.
        """

        if self.state is FormState.SUCCESS:
            raise RuntimeError("Appointment has already been saved")
        if self.state is FormState.SUBMITTING:
            return None

        self.errors = self.validate()
        if self.errors:
            logger.info("Appointment form has validation errors: %s", ", ".join(sorted(self.errors)))
            return None

        conflicts = self._checker.flush()
        if conflicts and not self._confirm_conflicts(conflicts):
            logger.info("Submission cancelled; %d conflict(s) not confirmed", len(conflicts))
            return None

        self.state = FormState.SUBMITTING
        self.error = None
        try:
            appointment = self._build_appointment()
            if self.mode is FormMode.EDIT:
                saved = self._client.update_appointment(str(self._initial.id), appointment)
            else:
                saved = self._client.create_appointment(appointment)
            self.saved = saved
        except BookingClientError as exc:
            self.error = getattr(exc, "message", None) or str(exc) or "An error occurred"
            self.state = FormState.ERROR
            logger.warning("Failed to save appointment: %s", self.error)
            return None
        finally:
            # Unexpected failures still propagate, but the form stays editable.
            if self.state is FormState.SUBMITTING and self.saved is None:
                self.error = self.error or "An error occurred"
                self.state = FormState.ERROR

        self.state = FormState.SUCCESS
        self.close()
        logger.info(
            "Appointment %s %s for %s",
            saved.id,
            "updated" if self.mode is FormMode.EDIT else "created",
            format_timestamp(saved.start_time),
        )
        if self._on_success is not None:
            self._on_success(saved)
        return saved

    def close(self) -> None:
        """Cancel pending debounced work."""

        self._checker.cancel()
        self.patient_search.cancel()

    def _confirm_conflicts(self, conflicts: List[AvailabilityConflict]) -> bool:
        if self._confirm is None:
            return False
        return self._confirm(list(conflicts)) is True

    def _build_appointment(self) -> Appointment:
        values = self.values
        fields = dict(
            patient_id=values.patient_id,
            provider_id=values.provider_id,
            appointment_type_id=values.appointment_type_id,
            chair_id=values.chair_id,
            room_id=values.room_id,
            start_time=values.start_time,
            duration=values.duration or DEFAULT_DURATION_MINUTES,
            source=values.source,
            notes=values.notes or None,
        )
        if self.mode is FormMode.EDIT:
            return replace(self._initial, **fields)
        return Appointment(**fields)

    def _current_request(self) -> AvailabilityRequest:
        return AvailabilityRequest(
            provider_id=self.values.provider_id or None,
            start_time=self.values.start_time,
            duration=self.values.duration,
            chair_id=self.values.chair_id,
            room_id=self.values.room_id,
            exclude_appointment_id=self._initial.id if self._initial is not None else None,
        )

    def _schedule_check(self) -> None:
        self._conflicts_settled = False
        self._checker.request_check(self._current_request())
        self._refresh_state()

    def _on_conflicts(self, request: AvailabilityRequest, conflicts: List[AvailabilityConflict]) -> None:
        if request != self._current_request():
            return
        self._conflicts_settled = request.is_complete
        self._refresh_state()

    def _refresh_state(self) -> None:
        if self.state in (FormState.SUBMITTING, FormState.SUCCESS):
            return
        values = self.values
        if not values.patient_id:
            self.state = FormState.EMPTY
        elif not values.appointment_type_id:
            self.state = FormState.PATIENT_SELECTED
        elif not values.provider_id or values.start_time is None:
            self.state = FormState.TYPE_SELECTED
        elif self._conflicts_settled:
            self.state = FormState.CONFLICT_CHECKED
        else:
            self.state = FormState.READY


__all__ = [
    "AppointmentForm",
    "CONFLICT_PROMPT",
    "FormMode",
    "FormState",
    "FormValues",
]
