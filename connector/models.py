"""Domain records exchanged with the booking API.

Every record exposes a ``from_payload`` constructor that accepts the camelCase
JSON returned by the API, and the writable records expose ``to_payload`` for
the reverse direction.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

MAX_DURATION_MINUTES = 480
MAX_BUFFER_MINUTES = 60
APPOINTMENT_TYPE_CODE_PATTERN = re.compile(r"^[A-Z0-9_]+$")
HEX_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")


class AppointmentSource(str, Enum):
    STAFF = "STAFF"
    PHONE = "PHONE"
    ONLINE = "ONLINE"
    WAITLIST = "WAITLIST"
    TREATMENT_PLAN = "TREATMENT_PLAN"
    RECALL = "RECALL"


class AppointmentStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    ARRIVED = "ARRIVED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"
    CANCELLED = "CANCELLED"


class ConfirmationStatus(str, Enum):
    UNCONFIRMED = "UNCONFIRMED"
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    DECLINED = "DECLINED"


class ConflictType(str, Enum):
    PROVIDER = "provider"
    CHAIR = "chair"
    ROOM = "room"


# Bookings in these states no longer occupy their window.
INACTIVE_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW})


def parse_timestamp(value: object) -> datetime:
    """Coerce an API timestamp into an aware ``datetime``.

    Naive values are assumed to be UTC.
    """

    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value.strip():
        try:
            moment = datetime.fromisoformat(value.strip())
        except ValueError as exc:
            raise ValueError(f"Timestamps must be ISO formatted: {value!r}") from exc
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment


def format_timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat().replace("+00:00", "Z")


def windows_overlap(
    start: datetime, end: datetime, other_start: datetime, other_end: datetime
) -> bool:
    """Return True when two half-open windows ``[start, end)`` intersect."""

    return start < other_end and other_start < end


def _extract_first(
    payload: Mapping[str, Any],
    keys: Sequence[str],
    *,
    allow_missing: bool = False,
) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    if allow_missing:
        return None
    raise KeyError(f"Expected one of {keys!r} in payload but none were present")


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


@dataclass(frozen=True)
class AvailabilityConflict:
    """An existing booking that overlaps a candidate window."""

    conflict_type: ConflictType
    appointment_id: str
    start_time: datetime
    end_time: datetime
    details: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AvailabilityConflict":
        return cls(
            conflict_type=ConflictType(str(_extract_first(payload, ("type", "conflictType"))).lower()),
            appointment_id=str(_extract_first(payload, ("appointmentId", "conflictingAppointmentId"))),
            start_time=parse_timestamp(_extract_first(payload, ("startTime", "conflictStart"))),
            end_time=parse_timestamp(_extract_first(payload, ("endTime", "conflictEnd"))),
            details=str(_extract_first(payload, ("details",), allow_missing=True) or ""),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "type": self.conflict_type.value,
            "appointmentId": self.appointment_id,
            "startTime": format_timestamp(self.start_time),
            "endTime": format_timestamp(self.end_time),
            "details": self.details,
        }

    def describe(self) -> str:
        return f"{self.conflict_type.value.capitalize()} conflict: {self.details}"


@dataclass
class AppointmentType:
    """Reusable template that seeds a new appointment's defaults."""

    id: str
    code: str
    name: str
    default_duration: int
    color: str = "#3B82F6"
    requires_chair: bool = True
    requires_room: bool = False
    prep_time: int = 0
    cleanup_time: int = 0
    min_duration: Optional[int] = None
    max_duration: Optional[int] = None
    is_active: bool = True
    allow_online: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AppointmentType":
        def optional_int(key: str) -> Optional[int]:
            value = payload.get(key)
            return int(value) if value is not None else None

        return cls(
            id=str(payload["id"]),
            code=str(payload.get("code", "")),
            name=str(payload.get("name", "")),
            default_duration=int(payload.get("defaultDuration", 30)),
            color=str(payload.get("color") or "#3B82F6"),
            requires_chair=bool(payload.get("requiresChair", True)),
            requires_room=bool(payload.get("requiresRoom", False)),
            prep_time=int(payload.get("prepTime") or 0),
            cleanup_time=int(payload.get("cleanupTime") or 0),
            min_duration=optional_int("minDuration"),
            max_duration=optional_int("maxDuration"),
            is_active=bool(payload.get("isActive", True)),
            allow_online=bool(payload.get("allowOnline", False)),
        )

    @property
    def total_block_minutes(self) -> int:
        """Minutes the type occupies including prep and cleanup buffers."""

        return self.prep_time + self.default_duration + self.cleanup_time

    def validate(self) -> Dict[str, str]:
        """Return a mapping of field name to error message."""

        errors: Dict[str, str] = {}
        if not self.code:
            errors["code"] = "Code is required"
        elif len(self.code) > 50 or not APPOINTMENT_TYPE_CODE_PATTERN.match(self.code):
            errors["code"] = "Code must be uppercase letters, numbers, and underscores only"
        if not self.name or not self.name.strip():
            errors["name"] = "Name is required"
        elif len(self.name) > 200:
            errors["name"] = "Name cannot exceed 200 characters"
        if self.default_duration <= 0:
            errors["default_duration"] = "Duration must be positive"
        elif self.default_duration > MAX_DURATION_MINUTES:
            errors["default_duration"] = "Duration cannot exceed 8 hours"
        if self.min_duration is not None and self.min_duration > self.default_duration:
            errors["min_duration"] = "Minimum duration cannot exceed default duration"
        if self.max_duration is not None and self.max_duration < self.default_duration:
            errors["max_duration"] = "Maximum duration cannot be less than default duration"
        for key in ("prep_time", "cleanup_time"):
            value = getattr(self, key)
            if value < 0 or value > MAX_BUFFER_MINUTES:
                errors[key] = f"Must be between 0 and {MAX_BUFFER_MINUTES} minutes"
        if not HEX_COLOR_PATTERN.match(self.color):
            errors["color"] = "Must be a valid hex color (e.g., #3B82F6)"
        return errors


@dataclass(frozen=True)
class Patient:
    id: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    date_of_birth: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Patient":
        return cls(
            id=str(payload["id"]),
            first_name=str(payload.get("firstName", "")),
            last_name=str(payload.get("lastName", "")),
            phone=_optional_str(payload.get("phone")),
            email=_optional_str(payload.get("email")),
            date_of_birth=_optional_str(payload.get("dateOfBirth")),
        )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Provider:
    id: str
    first_name: str
    last_name: str
    title: Optional[str] = None
    provider_type: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Provider":
        return cls(
            id=str(payload["id"]),
            first_name=str(payload.get("firstName", "")),
            last_name=str(payload.get("lastName", "")),
            title=_optional_str(payload.get("title")),
            provider_type=_optional_str(payload.get("providerType")),
        )

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return f"{name} - {self.title}" if self.title else name


@dataclass(frozen=True)
class Chair:
    id: str
    name: str
    room_name: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Chair":
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name", "")),
            room_name=str(payload.get("roomName") or (payload.get("room") or {}).get("name", "")),
        )


@dataclass
class Appointment:
    """A scheduled clinical visit; the server holds the authoritative copy."""

    patient_id: str
    provider_id: str
    appointment_type_id: str
    start_time: datetime
    duration: int
    id: Optional[str] = None
    chair_id: Optional[str] = None
    room_id: Optional[str] = None
    source: AppointmentSource = AppointmentSource.STAFF
    notes: Optional[str] = None
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    confirmation_status: ConfirmationStatus = ConfirmationStatus.UNCONFIRMED

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration)

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return windows_overlap(self.start_time, self.end_time, start, end)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Appointment":
        start_time = parse_timestamp(payload["startTime"])
        duration = payload.get("duration")
        if duration is None and payload.get("endTime"):
            span = parse_timestamp(payload["endTime"]) - start_time
            duration = int(span.total_seconds() // 60)
        return cls(
            id=_optional_str(payload.get("id")),
            patient_id=str(_extract_first(payload, ("patientId",))),
            provider_id=str(_extract_first(payload, ("providerId",))),
            appointment_type_id=str(_extract_first(payload, ("appointmentTypeId",))),
            start_time=start_time,
            duration=int(duration or 30),
            chair_id=_optional_str(payload.get("chairId")),
            room_id=_optional_str(payload.get("roomId")),
            source=AppointmentSource(payload.get("source") or AppointmentSource.STAFF.value),
            notes=payload.get("notes"),
            status=AppointmentStatus(payload.get("status") or AppointmentStatus.SCHEDULED.value),
            confirmation_status=ConfirmationStatus(
                payload.get("confirmationStatus") or ConfirmationStatus.UNCONFIRMED.value
            ),
        )

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "patientId": self.patient_id,
            "providerId": self.provider_id,
            "appointmentTypeId": self.appointment_type_id,
            "chairId": self.chair_id,
            "roomId": self.room_id,
            "startTime": format_timestamp(self.start_time),
            "endTime": format_timestamp(self.end_time),
            "duration": self.duration,
            "source": self.source.value,
            "notes": self.notes,
            "status": self.status.value,
            "confirmationStatus": self.confirmation_status.value,
        }
        if self.id:
            payload["id"] = self.id
        return payload


@dataclass
class CalendarEvent:
    """Appointment as rendered on the booking calendar."""

    id: str
    title: str
    start: datetime
    end: datetime
    all_day: bool = False
    background_color: str = ""
    border_color: str = ""
    text_color: str = ""
    extended_props: Dict[str, Any] = field(default_factory=dict)

    @property
    def appointment_id(self) -> str:
        return str(self.extended_props.get("appointmentId") or self.id)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CalendarEvent":
        return cls(
            id=str(payload["id"]),
            title=str(payload.get("title", "")),
            start=parse_timestamp(payload["start"]),
            end=parse_timestamp(payload["end"]),
            all_day=bool(payload.get("allDay", False)),
            background_color=str(payload.get("backgroundColor") or ""),
            border_color=str(payload.get("borderColor") or ""),
            text_color=str(payload.get("textColor") or ""),
            extended_props=dict(payload.get("extendedProps") or {}),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "start": format_timestamp(self.start),
            "end": format_timestamp(self.end),
            "allDay": self.all_day,
            "backgroundColor": self.background_color,
            "borderColor": self.border_color,
            "textColor": self.text_color,
            "extendedProps": dict(self.extended_props),
        }


@dataclass(frozen=True)
class ZoneDetails:
    """Template metadata carried by a booking zone."""

    template_id: str
    template_name: str
    appointment_type_ids: List[str] = field(default_factory=list)
    appointment_type_names: List[str] = field(default_factory=list)
    is_blocked: bool = False
    block_reason: Optional[str] = None
    label: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ZoneDetails":
        return cls(
            template_id=str(payload.get("templateId", "")),
            template_name=str(payload.get("templateName", "")),
            appointment_type_ids=[str(item) for item in payload.get("appointmentTypeIds") or []],
            appointment_type_names=[str(item) for item in payload.get("appointmentTypeNames") or []],
            is_blocked=bool(payload.get("isBlocked", False)),
            block_reason=_optional_str(payload.get("blockReason")),
            label=_optional_str(payload.get("label")),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "type": "booking-zone",
            "templateId": self.template_id,
            "templateName": self.template_name,
            "appointmentTypeIds": list(self.appointment_type_ids),
            "appointmentTypeNames": list(self.appointment_type_names),
            "isBlocked": self.is_blocked,
            "blockReason": self.block_reason,
            "label": self.label,
        }

    def legend_entry(self) -> tuple[str, str]:
        """Return the ``(key, label)`` pair used to group zones in a legend."""

        if self.is_blocked:
            reason = self.block_reason or "Blocked"
            return reason, reason
        if self.appointment_type_names:
            names = ", ".join(self.appointment_type_names)
            return names, names
        if self.label:
            return self.label, self.label
        return "Open", "Open slot"

    def tooltip(self) -> str:
        if self.is_blocked:
            text = self.block_reason or "Blocked"
        elif self.label:
            text = self.label
        elif self.appointment_type_names:
            text = ", ".join(self.appointment_type_names)
        else:
            text = "Open slot"
        return f"{text}\nTemplate: {self.template_name}"


@dataclass(frozen=True)
class BookingZone:
    """Background block describing an availability template window."""

    id: str
    start: datetime
    end: datetime
    details: ZoneDetails
    background_color: str = ""
    border_color: str = ""

    def contains(self, start: datetime, end: datetime) -> bool:
        return self.start <= start and end <= self.end

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "BookingZone":
        return cls(
            id=str(payload["id"]),
            start=parse_timestamp(payload["start"]),
            end=parse_timestamp(payload["end"]),
            details=ZoneDetails.from_payload(payload.get("extendedProps") or {}),
            background_color=str(payload.get("backgroundColor") or ""),
            border_color=str(payload.get("borderColor") or ""),
        )

    def to_background_event(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "start": format_timestamp(self.start),
            "end": format_timestamp(self.end),
            "display": "background",
            "backgroundColor": self.background_color,
            "borderColor": self.border_color,
            "extendedProps": self.details.to_payload(),
        }


__all__ = [
    "Appointment",
    "AppointmentSource",
    "AppointmentStatus",
    "AppointmentType",
    "AvailabilityConflict",
    "BookingZone",
    "CalendarEvent",
    "Chair",
    "ConfirmationStatus",
    "ConflictType",
    "INACTIVE_STATUSES",
    "MAX_DURATION_MINUTES",
    "Patient",
    "Provider",
    "ZoneDetails",
    "format_timestamp",
    "parse_timestamp",
    "windows_overlap",
]
