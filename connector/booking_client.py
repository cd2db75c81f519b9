"""Booking API client utilities.

This module provides the HTTP client used by the scheduling workflow to talk
to the practice's booking API. The client manages the HTTP session, bearer
token headers, the response envelope, and structured error reporting so that
callers only deal with domain records.
"""
from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, TypeVar, Union

import requests
from requests import Response
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .models import (
    Appointment,
    AppointmentType,
    AvailabilityConflict,
    BookingZone,
    CalendarEvent,
    Chair,
    Patient,
    Provider,
    format_timestamp,
)

__all__ = [
    "BookingAPIClient",
    "BookingAPIError",
    "BookingClientError",
    "BookingConnectionError",
]


logger = logging.getLogger(__name__)


DEFAULT_BASE_URL = os.getenv("BOOKING_API_BASE_URL", "http://localhost:3000")
DEFAULT_API_TOKEN = os.getenv("BOOKING_API_TOKEN")
DEFAULT_TIMEOUT_SECONDS = float(os.getenv("BOOKING_API_TIMEOUT", "10"))
# Workflow calls are never retried automatically; retries apply to GET only.
DEFAULT_MAX_RETRIES = int(os.getenv("BOOKING_API_MAX_RETRIES", "0"))
DEFAULT_BACKOFF_FACTOR = 0.5
DEFAULT_LOOKUP_PAGE_SIZE = 50
PATIENT_SEARCH_PAGE_SIZE = 10
RECENT_PATIENTS_PAGE_SIZE = 5

T = TypeVar("T")


class BookingClientError(RuntimeError):
    """Base exception for booking API client errors."""


class BookingConnectionError(BookingClientError):
    """Raised when the booking API cannot be reached."""


class BookingAPIError(BookingClientError):
    """Raised when the booking API returns an error response."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details


class BookingAPIClient:
    """Client for the booking, calendar, and lookup endpoints."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        api_token: Optional[str] = DEFAULT_API_TOKEN,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url must be provided")

        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.timeout = timeout
        self._session = session or self._build_session(
            max_retries=max_retries, backoff_factor=backoff_factor
        )

    def _build_session(self, *, max_retries: int, backoff_factor: float) -> requests.Session:
        session = requests.Session()
        retry_strategy = Retry(
            total=max_retries,
            read=max_retries,
            connect=max_retries,
            status=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=(429, 502, 503, 504),
            allowed_methods=("GET",),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def close(self) -> None:
        self._session.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_payload: Optional[Dict[str, Any]] = None,
        expected_status: Union[int, Tuple[int, ...]] = (200,),
    ) -> Any:
        """Issue a request and return the unwrapped ``data`` member."""

        if not path:
            raise ValueError("path must be provided")
        if isinstance(expected_status, int):
            expected_status = (expected_status,)

        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {"Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"

        try:
            response = self._session.request(
                method=method.upper(),
                url=url,
                params=params,
                json=json_payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Request to booking API failed: %s %s: %s", method.upper(), url, exc)
            raise BookingConnectionError("Failed to connect to server") from exc

        envelope = self._parse_envelope(response)
        if response.status_code not in expected_status or not envelope.get("success", False):
            self._log_error_response(response)
            raise self._build_api_error(response, envelope)

        return envelope.get("data")

    @staticmethod
    def _parse_envelope(response: Response) -> Dict[str, Any]:
        try:
            parsed = response.json()
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}

    @staticmethod
    def _build_api_error(response: Response, envelope: Mapping[str, Any]) -> BookingAPIError:
        error = envelope.get("error")
        if isinstance(error, Mapping):
            message = error.get("message") or f"Booking API responded with status {response.status_code}"
            return BookingAPIError(
                str(message),
                status_code=response.status_code,
                code=error.get("code"),
                details=error.get("details"),
            )
        return BookingAPIError(
            f"Booking API responded with unexpected status {response.status_code}",
            status_code=response.status_code,
        )

    @staticmethod
    def _log_error_response(response: Response) -> None:
        content_type = response.headers.get("Content-Type", "")
        if "json" in content_type:
            try:
                parsed = response.json()
                logger.error("Booking API error response: status=%s body=%s", response.status_code, parsed)
                return
            except ValueError:
                pass
        logger.error(
            "Booking API error response: status=%s body=%s", response.status_code, response.text[:2048]
        )

    @staticmethod
    def _parse(build: Callable[[], T]) -> T:
        """Build domain records, reporting malformed payloads as API errors."""

        try:
            return build()
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.error("Invalid response from booking API: %s", exc)
            raise BookingAPIError("Invalid response from booking API", code="INVALID_RESPONSE") from exc

    @staticmethod
    def _items(data: Any) -> List[Mapping[str, Any]]:
        if isinstance(data, Mapping):
            data = data.get("items") or []
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, Mapping)]

    @staticmethod
    def _range_params(start: datetime, end: datetime, provider_ids: Optional[Iterable[str]]) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "startDate": format_timestamp(start),
            "endDate": format_timestamp(end),
        }
        provider_ids = [provider_id for provider_id in provider_ids or () if provider_id]
        if provider_ids:
            params["providerIds"] = ",".join(provider_ids)
        return params

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
        """Return bookings that overlap the given window."""

        if not provider_id:
            raise ValueError("provider_id must be provided")
        if end_time <= start_time:
            raise ValueError("end_time must be after start_time")

        payload: Dict[str, Any] = {
            "providerId": provider_id,
            "startTime": format_timestamp(start_time),
            "endTime": format_timestamp(end_time),
        }
        if chair_id:
            payload["chairId"] = chair_id
        if room_id:
            payload["roomId"] = room_id
        if exclude_appointment_id:
            payload["excludeAppointmentId"] = exclude_appointment_id

        data = self._request("POST", "api/booking/availability", json_payload=payload)
        raw_conflicts = data.get("conflicts") if isinstance(data, Mapping) else None
        return self._parse(lambda: [AvailabilityConflict.from_payload(item) for item in raw_conflicts or []])

    def create_appointment(self, appointment: Appointment) -> Appointment:
        data = self._request(
            "POST",
            "api/booking/appointments",
            json_payload=appointment.to_payload(),
            expected_status=(200, 201),
        )
        return self._parse(lambda: Appointment.from_payload(data))

    def update_appointment(self, appointment_id: str, appointment: Appointment) -> Appointment:
        if not appointment_id:
            raise ValueError("appointment_id must be provided")
        data = self._request(
            "PUT",
            f"api/booking/appointments/{appointment_id}",
            json_payload=appointment.to_payload(),
        )
        return self._parse(lambda: Appointment.from_payload(data))

    # Calendar

    def get_calendar_events(
        self, start: datetime, end: datetime, *, provider_ids: Optional[Iterable[str]] = None
    ) -> List[CalendarEvent]:
        data = self._request(
            "GET", "api/booking/calendar", params=self._range_params(start, end, provider_ids)
        )
        return self._parse(lambda: [CalendarEvent.from_payload(item) for item in self._items(data)])

    def get_calendar_zones(
        self, start: datetime, end: datetime, *, provider_ids: Optional[Iterable[str]] = None
    ) -> List[BookingZone]:
        data = self._request(
            "GET", "api/booking/calendar/zones", params=self._range_params(start, end, provider_ids)
        )
        return self._parse(lambda: [BookingZone.from_payload(item) for item in self._items(data)])

    # Lookups

    def search_patients(self, search: str, *, page_size: int = PATIENT_SEARCH_PAGE_SIZE) -> List[Patient]:
        data = self._request("GET", "api/patients", params={"search": search, "pageSize": page_size})
        return self._parse(lambda: [Patient.from_payload(item) for item in self._items(data)])

    def recent_patients(self, *, page_size: int = RECENT_PATIENTS_PAGE_SIZE) -> List[Patient]:
        params = {"pageSize": page_size, "sortBy": "createdAt", "sortOrder": "desc"}
        data = self._request("GET", "api/patients", params=params)
        return self._parse(lambda: [Patient.from_payload(item) for item in self._items(data)])

    def list_appointment_types(self, *, page_size: int = DEFAULT_LOOKUP_PAGE_SIZE) -> List[AppointmentType]:
        data = self._request(
            "GET",
            "api/booking/appointment-types",
            params={"isActive": "true", "pageSize": page_size},
        )
        return self._parse(lambda: [AppointmentType.from_payload(item) for item in self._items(data)])

    def list_providers(self, *, page_size: int = DEFAULT_LOOKUP_PAGE_SIZE) -> List[Provider]:
        data = self._request(
            "GET",
            "api/staff",
            params={"isProvider": "true", "status": "ACTIVE", "pageSize": page_size},
        )
        return self._parse(lambda: [Provider.from_payload(item) for item in self._items(data)])

    def list_chairs(self, *, page_size: int = DEFAULT_LOOKUP_PAGE_SIZE) -> List[Chair]:
        data = self._request(
            "GET",
            "api/resources/chairs",
            params={"isActive": "true", "pageSize": page_size},
        )
        return self._parse(lambda: [Chair.from_payload(item) for item in self._items(data)])
