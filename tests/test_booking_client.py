import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import requests

from connector import (
    Appointment,
    BookingAPIClient,
    BookingAPIError,
    BookingConnectionError,
    ConflictType,
)


def _response(status_code: int, body=None, *, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.headers = {"Content-Type": "application/json" if body is not None else "text/html"}
    response.text = text
    if body is None:
        response.json.side_effect = ValueError("No JSON")
    else:
        response.json.return_value = body
    return response


class BookingAPIClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = MagicMock()
        self.client = BookingAPIClient(
            base_url="https://booking.example.test/", api_token="token-123", session=self.session
        )
        self.start = datetime(2030, 1, 7, 9, 0, tzinfo=timezone.utc)

    def test_check_availability_posts_window_and_parses_conflicts(self) -> None:
        self.session.request.return_value = _response(
            200,
            {
                "success": True,
                "data": {
                    "conflicts": [
                        {
                            "type": "provider",
                            "appointmentId": "1",
                            "startTime": "2030-01-07T09:15:00Z",
                            "endTime": "2030-01-07T09:45:00Z",
                            "details": "Provider P1 is booked 09:15-09:45 (appointment 1)",
                        }
                    ]
                },
            },
        )

        conflicts = self.client.check_availability(
            "P1", self.start, self.start + timedelta(minutes=30), chair_id="C1"
        )

        self.assertEqual(len(conflicts), 1)
        self.assertIs(conflicts[0].conflict_type, ConflictType.PROVIDER)
        kwargs = self.session.request.call_args.kwargs
        self.assertEqual(kwargs["method"], "POST")
        self.assertEqual(kwargs["url"], "https://booking.example.test/api/booking/availability")
        self.assertEqual(
            kwargs["json"],
            {
                "providerId": "P1",
                "startTime": "2030-01-07T09:00:00Z",
                "endTime": "2030-01-07T09:30:00Z",
                "chairId": "C1",
            },
        )
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer token-123")

    def test_check_availability_validates_window_before_request(self) -> None:
        with self.assertRaises(ValueError):
            self.client.check_availability("", self.start, self.start + timedelta(minutes=30))
        with self.assertRaises(ValueError):
            self.client.check_availability("P1", self.start, self.start)

        self.session.request.assert_not_called()

    def test_error_envelope_raises_api_error(self) -> None:
        self.session.request.return_value = _response(
            409,
            {
                "success": False,
                "error": {
                    "code": "PROVIDER_CONFLICT",
                    "message": "Provider has a scheduling conflict at this time",
                    "details": {"conflictingAppointmentId": "1"},
                },
            },
        )

        with self.assertRaises(BookingAPIError) as captured:
            self.client.get_calendar_events(self.start, self.start + timedelta(days=7))

        self.assertEqual(captured.exception.status_code, 409)
        self.assertEqual(captured.exception.code, "PROVIDER_CONFLICT")
        self.assertEqual(captured.exception.message, "Provider has a scheduling conflict at this time")

    def test_success_false_with_ok_status_is_still_an_error(self) -> None:
        self.session.request.return_value = _response(
            200, {"success": False, "error": {"message": "Nope"}}
        )

        with self.assertRaises(BookingAPIError):
            self.client.list_providers()

    def test_non_json_error_reports_status(self) -> None:
        self.session.request.return_value = _response(502, None, text="<html>Bad gateway</html>")

        with self.assertRaises(BookingAPIError) as captured:
            self.client.list_chairs()

        self.assertIn("502", str(captured.exception))

    def test_transport_failure_raises_connection_error(self) -> None:
        self.session.request.side_effect = requests.ConnectionError("refused")

        with self.assertRaises(BookingConnectionError) as captured:
            self.client.list_appointment_types()

        self.assertEqual(str(captured.exception), "Failed to connect to server")

    def test_calendar_events_send_range_and_provider_filter(self) -> None:
        self.session.request.return_value = _response(
            200,
            {
                "success": True,
                "data": [
                    {
                        "id": "1",
                        "title": "Jane Doe - Adjustment",
                        "start": "2030-01-07T09:00:00Z",
                        "end": "2030-01-07T09:30:00Z",
                        "extendedProps": {"appointmentId": "1", "providerId": "P1"},
                    }
                ],
            },
        )

        events = self.client.get_calendar_events(
            self.start, self.start + timedelta(days=7), provider_ids=["P1", "P2"]
        )

        self.assertEqual([event.appointment_id for event in events], ["1"])
        params = self.session.request.call_args.kwargs["params"]
        self.assertEqual(params["providerIds"], "P1,P2")
        self.assertEqual(params["startDate"], "2030-01-07T09:00:00Z")

    def test_create_appointment_accepts_created_status(self) -> None:
        self.session.request.return_value = _response(
            201,
            {
                "success": True,
                "data": {
                    "id": "42",
                    "patientId": "patient-1",
                    "providerId": "P1",
                    "appointmentTypeId": "type-1",
                    "startTime": "2030-01-07T09:00:00Z",
                    "duration": 30,
                },
            },
        )

        saved = self.client.create_appointment(
            Appointment(
                patient_id="patient-1",
                provider_id="P1",
                appointment_type_id="type-1",
                start_time=self.start,
                duration=30,
            )
        )

        self.assertEqual(saved.id, "42")
        self.assertEqual(self.session.request.call_args.kwargs["method"], "POST")

    def test_search_patients_reads_paginated_items(self) -> None:
        self.session.request.return_value = _response(
            200,
            {
                "success": True,
                "data": {"items": [{"id": "patient-1", "firstName": "Jane", "lastName": "Doe"}], "total": 1},
            },
        )

        patients = self.client.search_patients("Ja")

        self.assertEqual([patient.display_name for patient in patients], ["Jane Doe"])
        self.assertEqual(
            self.session.request.call_args.kwargs["params"], {"search": "Ja", "pageSize": 10}
        )

    def test_default_session_only_retries_reads(self) -> None:
        client = BookingAPIClient(base_url="https://booking.example.test", max_retries=2)

        retries = client._session.get_adapter("https://booking.example.test").max_retries

        self.assertEqual(retries.total, 2)
        self.assertIn("GET", retries.allowed_methods)
        self.assertNotIn("POST", retries.allowed_methods)
        client.close()

    def test_created_appointment_without_data_is_an_api_error(self) -> None:
        self.session.request.return_value = _response(201, {"success": True, "data": None})

        with self.assertRaises(BookingAPIError) as captured:
            self.client.create_appointment(
                Appointment(
                    patient_id="patient-1",
                    provider_id="P1",
                    appointment_type_id="type-1",
                    start_time=self.start,
                    duration=30,
                )
            )

        self.assertEqual(captured.exception.message, "Invalid response from booking API")
        self.assertEqual(captured.exception.code, "INVALID_RESPONSE")

    def test_malformed_conflict_entries_are_an_api_error(self) -> None:
        self.session.request.return_value = _response(200, {"success": True, "data": {"conflicts": [1]}})

        with self.assertRaises(BookingAPIError):
            self.client.check_availability("P1", self.start, self.start + timedelta(minutes=30))

    def test_calendar_event_without_start_is_an_api_error(self) -> None:
        self.session.request.return_value = _response(200, {"success": True, "data": [{"id": "1", "title": "x"}]})

        with self.assertRaises(BookingAPIError):
            self.client.get_calendar_events(self.start, self.start + timedelta(days=7))


if __name__ == "__main__":
    unittest.main()
