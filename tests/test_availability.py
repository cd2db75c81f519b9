import threading
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from booking import AvailabilityChecker, AvailabilityRequest, Debouncer
from connector import (
    Appointment,
    AvailabilityConflict,
    BookingConnectionError,
    ConflictType,
    InMemoryBookingBackend,
)
from fakes import ManualTimerFactory


def _conflict(appointment_id: str, start: datetime) -> AvailabilityConflict:
    return AvailabilityConflict(
        conflict_type=ConflictType.PROVIDER,
        appointment_id=appointment_id,
        start_time=start,
        end_time=start + timedelta(minutes=30),
        details=f"Provider P1 is booked (appointment {appointment_id})",
    )


class DebouncerTests(unittest.TestCase):
    def test_negative_delay_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            Debouncer(-1)

    def test_only_latest_submission_runs(self) -> None:
        timers = ManualTimerFactory()
        debouncer = Debouncer(0.5, timer_factory=timers)
        calls = []

        debouncer.submit(lambda sequence: calls.append(("first", sequence)))
        second = debouncer.submit(lambda sequence: calls.append(("second", sequence)))
        timers.fire_all()

        self.assertEqual(calls, [("second", second)])
        self.assertTrue(timers.timers[0].cancelled)
        self.assertEqual(timers.timers[0].interval, 0.5)

    def test_cancel_invalidates_pending_and_sequence(self) -> None:
        timers = ManualTimerFactory()
        debouncer = Debouncer(0.5, timer_factory=timers)
        calls = []

        sequence = debouncer.submit(calls.append)
        debouncer.cancel()
        timers.fire_all()

        self.assertEqual(calls, [])
        self.assertFalse(debouncer.is_current(sequence))
        self.assertFalse(debouncer.pending)

    def test_flush_runs_pending_action_in_caller_thread(self) -> None:
        debouncer = Debouncer(60)
        seen = []

        debouncer.submit(lambda sequence: seen.append(threading.current_thread()))

        self.assertTrue(debouncer.flush())
        self.assertEqual(seen, [threading.current_thread()])
        self.assertFalse(debouncer.flush())

    def test_flush_never_runs_an_action_twice(self) -> None:
        debouncer = Debouncer(0.01)
        calls = []

        debouncer.submit(calls.append)
        debouncer.flush(timeout=5)

        self.assertEqual(calls, [1])
        self.assertFalse(debouncer.in_flight)


class AvailabilityCheckerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.timers = ManualTimerFactory()
        self.client = MagicMock()
        self.client.check_availability.return_value = []
        self.listener = MagicMock()
        self.checker = AvailabilityChecker(
            self.client, on_change=self.listener, timer_factory=self.timers
        )
        self.nine = datetime(2030, 1, 7, 9, 0, tzinfo=timezone.utc)

    def _request(self, minutes: int = 0, **overrides) -> AvailabilityRequest:
        values = dict(provider_id="P1", start_time=self.nine + timedelta(minutes=minutes), duration=30)
        values.update(overrides)
        return AvailabilityRequest(**values)

    def test_default_quiet_period_is_half_a_second(self) -> None:
        self.checker.request_check(self._request())

        self.assertEqual(self.timers.timers[0].interval, 0.5)

    def test_rapid_edits_issue_one_call_with_final_values(self) -> None:
        for minutes in (0, 15, 30):
            self.checker.request_check(self._request(minutes))
        self.timers.fire_all()

        self.client.check_availability.assert_called_once()
        args = self.client.check_availability.call_args
        self.assertEqual(args.args[1], self.nine + timedelta(minutes=30))
        self.assertEqual(args.args[2], self.nine + timedelta(minutes=60))

    def test_incomplete_request_clears_conflicts_without_calling(self) -> None:
        self.client.check_availability.return_value = [_conflict("1", self.nine)]
        self.checker.request_check(self._request())
        self.timers.fire_all()
        self.assertEqual(len(self.checker.conflicts), 1)

        self.checker.request_check(self._request(provider_id=None))

        self.assertEqual(self.checker.conflicts, [])
        self.client.check_availability.assert_called_once()
        self.assertEqual(self.listener.call_args.args[1], [])

    def test_stale_response_is_discarded(self) -> None:
        stale = [_conflict("1", self.nine)]
        newer_request = self._request(60)

        def respond(provider_id, start_time, end_time, **kwargs):
            if start_time == self.nine:
                # The user edits the slot while the first call is in flight.
                self.checker.request_check(newer_request)
                return stale
            return []

        self.client.check_availability.side_effect = respond
        self.checker.request_check(self._request())
        self.timers.timers[0].fire()

        self.assertEqual(self.checker.conflicts, [])
        self.listener.assert_not_called()

        self.timers.fire_all()

        self.assertEqual(self.checker.conflicts, [])
        self.listener.assert_called_once_with(newer_request, [])

    def test_failed_check_is_treated_as_no_conflicts(self) -> None:
        self.client.check_availability.side_effect = BookingConnectionError("Failed to connect to server")

        with self.assertLogs("booking.availability", level="WARNING"):
            self.checker.request_check(self._request())
            self.timers.fire_all()

        self.assertEqual(self.checker.conflicts, [])
        self.assertFalse(self.checker.checking)
        self.listener.assert_called_once()

    def test_unexpected_payload_error_is_treated_as_no_conflicts(self) -> None:
        self.client.check_availability.side_effect = TypeError("argument of type 'int' is not iterable")

        self.checker.request_check(self._request())
        conflicts = self.checker.flush()

        self.assertEqual(conflicts, [])
        self.listener.assert_called_once()

    def test_excluded_appointment_is_filtered_from_results(self) -> None:
        self.client.check_availability.return_value = [
            _conflict("A1", self.nine),
            _conflict("A2", self.nine),
        ]

        self.checker.request_check(self._request(exclude_appointment_id="A1"))
        conflicts = self.checker.flush()

        self.assertEqual([conflict.appointment_id for conflict in conflicts], ["A2"])
        self.assertEqual(
            self.client.check_availability.call_args.kwargs["exclude_appointment_id"], "A1"
        )

    def test_flush_checks_immediately(self) -> None:
        self.checker.request_check(self._request())

        self.checker.flush()

        self.client.check_availability.assert_called_once()
        self.assertTrue(self.timers.timers[0].cancelled)
        self.assertFalse(self.checker.pending)

    def test_overlapping_booking_from_backend(self) -> None:
        backend = InMemoryBookingBackend()
        backend.add_appointment(
            Appointment(
                patient_id="patient-1",
                provider_id="P1",
                appointment_type_id="type-1",
                start_time=self.nine + timedelta(minutes=15),
                duration=30,
            )
        )
        checker = AvailabilityChecker(backend, timer_factory=self.timers)

        checker.request_check(self._request())
        conflicts = checker.flush()

        self.assertEqual(len(conflicts), 1)
        self.assertIs(conflicts[0].conflict_type, ConflictType.PROVIDER)
        self.assertIn("P1", conflicts[0].details)


if __name__ == "__main__":
    unittest.main()
