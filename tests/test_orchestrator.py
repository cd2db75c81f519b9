import io
import json
import tempfile
import unittest
from contextlib import redirect_stdout
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

from connector import Appointment, AppointmentType, InMemoryBookingBackend
from orchestrator.main import (
    TaskLogger,
    execute_with_logging,
    main,
    parse_args,
    run_book,
    run_check_availability,
)

FUTURE = datetime(2099, 1, 5, 9, 0, tzinfo=timezone.utc)


class TaskLoggerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.log_path = Path(self.tmpdir.name) / "logs" / "task_log.json"
        self.task_logger = TaskLogger(self.log_path)

    def _entries(self):
        return json.loads(self.log_path.read_text(encoding="utf-8"))

    def test_successful_task_is_logged(self) -> None:
        result = execute_with_logging("calendar", lambda: {"events": []}, self.task_logger)

        self.assertEqual(result, {"events": []})
        entry = self._entries()[0]
        self.assertEqual(entry["task"], "calendar")
        self.assertEqual(entry["status"], "success")
        self.assertTrue(entry["completed_at"].endswith("Z"))

    def test_failed_result_is_logged_as_failed(self) -> None:
        execute_with_logging(
            "book", lambda: {"status": "failed", "error": "Submission cancelled"}, self.task_logger
        )

        entry = self._entries()[0]
        self.assertEqual(entry["status"], "failed")
        self.assertEqual(entry["message"], "Submission cancelled")

    def test_exceptions_are_logged_and_reraised(self) -> None:
        def explode():
            raise ValueError("bad input")

        with self.assertRaises(ValueError):
            execute_with_logging("check-availability", explode, self.task_logger)

        self.assertEqual(self._entries()[0]["message"], "bad input")

    def test_corrupted_log_is_reported(self) -> None:
        self.log_path.write_text("{not json", encoding="utf-8")

        with self.assertRaises(ValueError):
            self.task_logger.log("calendar", "success")


class CommandTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = InMemoryBookingBackend()
        self.backend.add_appointment_type(
            AppointmentType(id="type-1", code="ADJ", name="Adjustment", default_duration=45)
        )
        self.backend.add_appointment(
            Appointment(
                patient_id="patient-2",
                provider_id="P1",
                appointment_type_id="type-1",
                start_time=FUTURE + timedelta(minutes=15),
                duration=30,
            )
        )

    def test_parse_args_reads_timestamps(self) -> None:
        args = parse_args(
            ["check-availability", "--provider", "P1", "--start", "2099-01-05T09:00:00Z", "--duration", "30"]
        )

        self.assertEqual(args.command, "check-availability")
        self.assertEqual(args.start, FUTURE)

    def test_check_availability_reports_conflicts(self) -> None:
        args = parse_args(["check-availability", "--provider", "P1", "--start", "2099-01-05T09:00:00Z"])

        result = run_check_availability(self.backend, args)

        self.assertEqual(result["end"], "2099-01-05T09:30:00Z")
        self.assertEqual([item["type"] for item in result["conflicts"]], ["provider"])

    def test_book_with_yes_saves_despite_conflicts(self) -> None:
        args = parse_args(
            [
                "book",
                "--patient", "patient-1",
                "--type", "type-1",
                "--provider", "P1",
                "--start", "2099-01-05T09:00:00Z",
                "--yes",
            ]
        )

        result = run_book(self.backend, args)

        self.assertEqual(result["status"], "success")
        self.assertEqual(result["appointment"]["duration"], 45)
        self.assertEqual(len(result["conflicts"]), 1)

    def test_book_declined_at_prompt_is_cancelled(self) -> None:
        args = parse_args(
            [
                "book",
                "--patient", "patient-1",
                "--type", "type-1",
                "--provider", "P1",
                "--start", "2099-01-05T09:00:00Z",
            ]
        )

        with patch("builtins.input", return_value="n"), patch("sys.stderr", new_callable=io.StringIO):
            result = run_book(self.backend, args)

        self.assertEqual(result["status"], "failed")
        self.assertEqual(result["error"], "Submission cancelled")
        self.assertIsNone(self.backend.get_appointment("2"))

    def test_book_with_zero_duration_reports_validation_error(self) -> None:
        args = parse_args(
            [
                "book",
                "--patient", "patient-1",
                "--type", "type-1",
                "--provider", "P1",
                "--start", "2099-01-05T09:00:00Z",
                "--duration", "0",
                "--yes",
            ]
        )

        result = run_book(self.backend, args)

        self.assertEqual(result["status"], "failed")
        self.assertEqual(result["errors"]["duration"], "Duration must be positive")
        self.assertIsNone(self.backend.get_appointment("2"))

    def test_main_prints_result_and_closes_client(self) -> None:
        client = MagicMock()
        client.get_calendar_events.return_value = []
        client.get_calendar_zones.return_value = []
        with tempfile.TemporaryDirectory() as tmpdir, patch(
            "orchestrator.main.LOG_PATH", Path(tmpdir) / "task_log.json"
        ), patch("orchestrator.main.BookingAPIClient", return_value=client):
            output = io.StringIO()
            with redirect_stdout(output):
                exit_code = main(["calendar", "--start", "2030-01-07T00:00:00Z"])

        self.assertEqual(exit_code, 0)
        self.assertEqual(json.loads(output.getvalue())["end"], "2030-01-14T00:00:00Z")
        client.close.assert_called_once()


if __name__ == "__main__":
    unittest.main()
