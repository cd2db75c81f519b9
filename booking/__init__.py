"""Scheduling workflow: availability checks, the appointment form, and the calendar."""

from .appointment_form import AppointmentForm, FormMode, FormState, FormValues
from .availability import AvailabilityChecker, AvailabilityRequest
from .calendar_adapter import BookingCalendarAdapter, LegendItem
from .debounce import Debouncer
from .patients import PatientSearch

__all__ = [
    "AppointmentForm",
    "AvailabilityChecker",
    "AvailabilityRequest",
    "BookingCalendarAdapter",
    "Debouncer",
    "FormMode",
    "FormState",
    "FormValues",
    "LegendItem",
    "PatientSearch",
]
