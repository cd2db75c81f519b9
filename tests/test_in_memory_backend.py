import unittest
from datetime import datetime, timedelta, timezone

from connector import (
    Appointment,
    AppointmentStatus,
    BookingAPIError,
    ConflictType,
    InMemoryBookingBackend,
    Patient,
)


class InMemoryBookingBackendTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = InMemoryBookingBackend()
        self.nine = datetime(2030, 1, 7, 9, 0, tzinfo=timezone.utc)
        self.existing = self.backend.add_appointment(
            Appointment(
                patient_id="patient-1",
                provider_id="P1",
                appointment_type_id="type-1",
                start_time=self.nine + timedelta(minutes=15),
                duration=30,
                chair_id="C1",
            )
        )

    def test_overlapping_provider_booking_is_reported(self) -> None:
        conflicts = self.backend.check_availability(
            "P1", self.nine, self.nine + timedelta(minutes=30)
        )

        self.assertEqual(len(conflicts), 1)
        self.assertIs(conflicts[0].conflict_type, ConflictType.PROVIDER)
        self.assertIn("P1", conflicts[0].details)
        self.assertEqual(conflicts[0].appointment_id, self.existing.id)

    def test_adjacent_window_does_not_conflict(self) -> None:
        conflicts = self.backend.check_availability(
            "P1", self.nine + timedelta(minutes=45), self.nine + timedelta(minutes=75)
        )

        self.assertEqual(conflicts, [])

    def test_shared_chair_with_other_provider_conflicts(self) -> None:
        conflicts = self.backend.check_availability(
            "P2", self.nine, self.nine + timedelta(minutes=30), chair_id="C1"
        )

        self.assertEqual([conflict.conflict_type for conflict in conflicts], [ConflictType.CHAIR])

    def test_excluded_appointment_is_ignored(self) -> None:
        conflicts = self.backend.check_availability(
            "P1",
            self.nine,
            self.nine + timedelta(minutes=30),
            exclude_appointment_id=self.existing.id,
        )

        self.assertEqual(conflicts, [])

    def test_cancelled_appointments_free_their_window(self) -> None:
        self.assertTrue(self.backend.cancel_appointment(self.existing.id))

        conflicts = self.backend.check_availability("P1", self.nine, self.nine + timedelta(minutes=30))

        self.assertEqual(conflicts, [])
        self.assertEqual(
            self.backend.get_appointment(self.existing.id).status, AppointmentStatus.CANCELLED
        )

    def test_rejecting_backend_refuses_conflicting_create(self) -> None:
        self.backend.reject_conflicts = True

        with self.assertRaises(BookingAPIError) as captured:
            self.backend.create_appointment(
                Appointment(
                    patient_id="patient-2",
                    provider_id="P1",
                    appointment_type_id="type-1",
                    start_time=self.nine,
                    duration=30,
                )
            )

        self.assertEqual(captured.exception.status_code, 409)
        self.assertEqual(captured.exception.code, "PROVIDER_CONFLICT")

    def test_update_unknown_appointment_raises_not_found(self) -> None:
        with self.assertRaises(BookingAPIError) as captured:
            self.backend.update_appointment("999", self.existing)

        self.assertEqual(captured.exception.status_code, 404)

    def test_calendar_events_filter_by_provider(self) -> None:
        self.backend.add_patient(Patient(id="patient-1", first_name="Jane", last_name="Doe"))
        self.backend.add_appointment(
            Appointment(
                patient_id="patient-1",
                provider_id="P2",
                appointment_type_id="type-1",
                start_time=self.nine + timedelta(hours=2),
                duration=30,
            )
        )

        events = self.backend.get_calendar_events(
            self.nine, self.nine + timedelta(days=1), provider_ids=["P1"]
        )

        self.assertEqual([event.appointment_id for event in events], [self.existing.id])
        self.assertEqual(events[0].title, "Jane Doe - type-1")

    def test_search_patients_matches_names(self) -> None:
        self.backend.add_patient(Patient(id="patient-1", first_name="Jane", last_name="Doe"))
        self.backend.add_patient(Patient(id="patient-2", first_name="John", last_name="Smith"))

        matches = self.backend.search_patients("smi")

        self.assertEqual([patient.id for patient in matches], ["patient-2"])


if __name__ == "__main__":
    unittest.main()
