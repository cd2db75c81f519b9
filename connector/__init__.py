"""Connector interfaces for the Zantra booking workflow."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .booking_client import (
    BookingAPIClient,
    BookingAPIError,
    BookingClientError,
    BookingConnectionError,
)
from .models import (
    Appointment,
    AppointmentSource,
    AppointmentStatus,
    AppointmentType,
    AvailabilityConflict,
    BookingZone,
    CalendarEvent,
    Chair,
    ConfirmationStatus,
    ConflictType,
    Patient,
    Provider,
    ZoneDetails,
    format_timestamp,
    parse_timestamp,
    windows_overlap,
)


class InMemoryBookingBackend:
    """In-memory stand-in for the booking API.

    Implements the same methods as :class:`BookingAPIClient` so workflows can
    run against it in tests and demos.
    """

    def __init__(self, *, reject_conflicts: bool = False) -> None:
        self._lock = threading.Lock()
        self._appointments: Dict[str, Appointment] = {}
        self._sequence: int = 1
        self._patients: Dict[str, Patient] = {}
        self._appointment_types: Dict[str, AppointmentType] = {}
        self._providers: Dict[str, Provider] = {}
        self._chairs: Dict[str, Chair] = {}
        self._zones: List[BookingZone] = []
        self.reject_conflicts = reject_conflicts

    # Seeding

    def add_patient(self, patient: Patient) -> None:
        self._patients[patient.id] = patient

    def add_appointment_type(self, appointment_type: AppointmentType) -> None:
        self._appointment_types[appointment_type.id] = appointment_type

    def add_provider(self, provider: Provider) -> None:
        self._providers[provider.id] = provider

    def add_chair(self, chair: Chair) -> None:
        self._chairs[chair.id] = chair

    def add_zone(self, zone: BookingZone) -> None:
        self._zones.append(zone)

    def add_appointment(self, appointment: Appointment) -> Appointment:
        """Store an appointment as-is, skipping conflict enforcement."""

        with self._lock:
            return self._store(appointment)

    # Scheduling

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
        if not provider_id:
            raise ValueError("provider_id must be provided")
        if end_time <= start_time:
            raise ValueError("end_time must be after start_time")
        with self._lock:
            return self._find_conflicts(
                provider_id, start_time, end_time, chair_id, room_id, exclude_appointment_id
            )

    def create_appointment(self, appointment: Appointment) -> Appointment:
        with self._lock:
            self._enforce_availability(appointment, exclude_appointment_id=None)
            return self._store(replace(appointment, id=None))

    def update_appointment(self, appointment_id: str, appointment: Appointment) -> Appointment:
        if not appointment_id:
            raise ValueError("appointment_id must be provided")
        with self._lock:
            if appointment_id not in self._appointments:
                raise BookingAPIError(
                    "Appointment not found", status_code=404, code="NOT_FOUND"
                )
            self._enforce_availability(appointment, exclude_appointment_id=appointment_id)
            record = replace(appointment, id=appointment_id)
            self._appointments[appointment_id] = record
            return replace(record)

    def cancel_appointment(self, appointment_id: str) -> bool:
        with self._lock:
            record = self._appointments.get(appointment_id)
            if record is None:
                return False
            self._appointments[appointment_id] = replace(record, status=AppointmentStatus.CANCELLED)
            return True

    def get_appointment(self, appointment_id: str) -> Optional[Appointment]:
        record = self._appointments.get(appointment_id)
        return replace(record) if record else None

    # Calendar

    def get_calendar_events(
        self, start: datetime, end: datetime, *, provider_ids: Optional[Iterable[str]] = None
    ) -> List[CalendarEvent]:
        wanted = set(provider_ids or ())
        with self._lock:
            records = sorted(self._appointments.values(), key=lambda record: record.start_time)
        return [
            self._to_event(record)
            for record in records
            if record.is_active
            and record.overlaps(start, end)
            and (not wanted or record.provider_id in wanted)
        ]

    def get_calendar_zones(
        self, start: datetime, end: datetime, *, provider_ids: Optional[Iterable[str]] = None
    ) -> List[BookingZone]:
        return [zone for zone in self._zones if windows_overlap(zone.start, zone.end, start, end)]

    # Lookups

    def search_patients(self, search: str, *, page_size: int = 10) -> List[Patient]:
        needle = search.strip().lower()
        matches = [
            patient
            for patient in self._patients.values()
            if needle
            and any(
                needle in (value or "").lower()
                for value in (patient.first_name, patient.last_name, patient.phone, patient.email)
            )
        ]
        return matches[:page_size]

    def recent_patients(self, *, page_size: int = 5) -> List[Patient]:
        return list(reversed(list(self._patients.values())))[:page_size]

    def list_appointment_types(self, *, page_size: int = 50) -> List[AppointmentType]:
        return [item for item in self._appointment_types.values() if item.is_active][:page_size]

    def list_providers(self, *, page_size: int = 50) -> List[Provider]:
        return list(self._providers.values())[:page_size]

    def list_chairs(self, *, page_size: int = 50) -> List[Chair]:
        return list(self._chairs.values())[:page_size]

    # Internals

    def _store(self, appointment: Appointment) -> Appointment:
        appointment_id = appointment.id or str(self._sequence)
        self._sequence += 1
        record = replace(appointment, id=appointment_id)
        self._appointments[appointment_id] = record
        return replace(record)

    def _enforce_availability(
        self, appointment: Appointment, *, exclude_appointment_id: Optional[str]
    ) -> None:
        if not self.reject_conflicts:
            return
        conflicts = self._find_conflicts(
            appointment.provider_id,
            appointment.start_time,
            appointment.end_time,
            appointment.chair_id,
            appointment.room_id,
            exclude_appointment_id,
        )
        if conflicts:
            conflict = conflicts[0]
            raise BookingAPIError(
                f"{conflict.conflict_type.value.capitalize()} has a scheduling conflict at this time",
                status_code=409,
                code=f"{conflict.conflict_type.name}_CONFLICT",
                details={"conflictingAppointmentId": conflict.appointment_id},
            )

    def _find_conflicts(
        self,
        provider_id: str,
        start_time: datetime,
        end_time: datetime,
        chair_id: Optional[str],
        room_id: Optional[str],
        exclude_appointment_id: Optional[str],
    ) -> List[AvailabilityConflict]:
        conflicts: List[AvailabilityConflict] = []
        for record in sorted(self._appointments.values(), key=lambda item: item.start_time):
            if record.id == exclude_appointment_id or not record.is_active:
                continue
            if not record.overlaps(start_time, end_time):
                continue
            window = f"{record.start_time:%H:%M}-{record.end_time:%H:%M}"
            shared = (
                (ConflictType.PROVIDER, "Provider", provider_id, record.provider_id),
                (ConflictType.CHAIR, "Chair", chair_id, record.chair_id),
                (ConflictType.ROOM, "Room", room_id, record.room_id),
            )
            for conflict_type, label, wanted, booked in shared:
                if wanted and wanted == booked:
                    conflicts.append(
                        AvailabilityConflict(
                            conflict_type=conflict_type,
                            appointment_id=str(record.id),
                            start_time=record.start_time,
                            end_time=record.end_time,
                            details=f"{label} {wanted} is booked {window} (appointment {record.id})",
                        )
                    )
        return conflicts

    def _to_event(self, record: Appointment) -> CalendarEvent:
        patient = self._patients.get(record.patient_id)
        appointment_type = self._appointment_types.get(record.appointment_type_id)
        provider = self._providers.get(record.provider_id)
        chair = self._chairs.get(record.chair_id) if record.chair_id else None
        patient_name = patient.display_name if patient else record.patient_id
        type_name = appointment_type.name if appointment_type else record.appointment_type_id
        color = appointment_type.color if appointment_type else "#3B82F6"
        return CalendarEvent(
            id=str(record.id),
            title=f"{patient_name} - {type_name}",
            start=record.start_time,
            end=record.end_time,
            background_color=color,
            border_color=color,
            text_color="#FFFFFF",
            extended_props={
                "appointmentId": record.id,
                "patientId": record.patient_id,
                "patientName": patient_name,
                "providerId": record.provider_id,
                "providerName": provider.display_name if provider else record.provider_id,
                "appointmentTypeId": record.appointment_type_id,
                "appointmentTypeName": type_name,
                "appointmentTypeCode": appointment_type.code if appointment_type else "",
                "status": record.status.value,
                "confirmationStatus": record.confirmation_status.value,
                "chairId": record.chair_id,
                "chairName": chair.name if chair else None,
                "roomId": record.room_id,
                "roomName": chair.room_name if chair else None,
                "duration": record.duration,
                "notes": record.notes,
            },
        )


__all__ = [
    "Appointment",
    "AppointmentSource",
    "AppointmentStatus",
    "AppointmentType",
    "AvailabilityConflict",
    "BookingAPIClient",
    "BookingAPIError",
    "BookingClientError",
    "BookingConnectionError",
    "BookingZone",
    "CalendarEvent",
    "Chair",
    "ConfirmationStatus",
    "ConflictType",
    "InMemoryBookingBackend",
    "Patient",
    "Provider",
    "ZoneDetails",
    "format_timestamp",
    "parse_timestamp",
]
