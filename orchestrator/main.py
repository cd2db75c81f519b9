"""Command line entry point for Zantra booking workflows."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

if __package__ is None or __package__ == "":  # pragma: no cover - runtime safety for script execution
    sys.path.append(str(Path(__file__).resolve().parent.parent))

from booking import AppointmentForm, AvailabilityChecker, AvailabilityRequest, BookingCalendarAdapter
from booking.appointment_form import CONFLICT_PROMPT
from connector import (
    AppointmentSource,
    AvailabilityConflict,
    BookingAPIClient,
    Patient,
    format_timestamp,
    parse_timestamp,
)
from connector.booking_client import DEFAULT_BASE_URL

LOG_PATH = Path(os.getenv("BOOKING_TASK_LOG", str(Path(__file__).resolve().parent / "task_log.json")))
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TaskLogger:
    """Persists command executions into a JSON log."""

    def __init__(self, log_path: Path) -> None:
        self._log_path = log_path
        self._lock = threading.Lock()
        self._log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(
        self,
        task_name: str,
        status: str,
        *,
        start_time: Optional[datetime] = None,
        message: Optional[str] = None,
        details: Optional[Dict[str, object]] = None,
    ) -> None:
        completed_at = _utc_now()
        started_at = start_time or completed_at
        entry: Dict[str, object] = {
            "task": task_name,
            "status": status,
            "started_at": format_timestamp(started_at),
            "completed_at": format_timestamp(completed_at),
        }
        if message:
            entry["message"] = message
        if details is not None:
            entry["details"] = details

        with self._lock:
            history = self._read_history()
            history.append(entry)
            serialized = json.dumps(history, indent=2)
            self._log_path.write_text(f"{serialized}\n", encoding="utf-8")

    def _read_history(self) -> List[Dict[str, object]]:
        if not self._log_path.exists():
            return []
        raw_content = self._log_path.read_text(encoding="utf-8").strip()
        if not raw_content:
            return []
        try:
            data = json.loads(raw_content)
        except json.JSONDecodeError as exc:
            raise ValueError(
                f"Task log is corrupted and cannot be parsed: {exc.msg}"
            ) from exc
        if not isinstance(data, list):
            raise ValueError("Task log must contain a JSON list of entries.")
        return data


def execute_with_logging(
    task_name: str, action: Callable[[], Dict[str, Any]], task_logger: TaskLogger
) -> Dict[str, Any]:
    """Run ``action`` while emitting structured log entries."""

    start_time = _utc_now()
    details: Optional[Dict[str, object]] = None
    status = "success"
    message: Optional[str] = None

    try:
        result = action()
        details = result
        if result.get("status") == "failed":
            status = "failed"
            message = str(result.get("error") or "")
        return result
    except Exception as exc:
        status = "failed"
        message = str(exc)
        raise
    finally:
        task_logger.log(
            task_name,
            status,
            start_time=start_time,
            message=message,
            details=details,
        )


def _conflict_summary(conflicts: List[AvailabilityConflict]) -> List[Dict[str, Any]]:
    return [conflict.to_payload() for conflict in conflicts]


def run_check_availability(client: BookingAPIClient, args: argparse.Namespace) -> Dict[str, Any]:
    checker = AvailabilityChecker(client)
    request = AvailabilityRequest(
        provider_id=args.provider,
        start_time=args.start,
        duration=args.duration,
        chair_id=args.chair,
        room_id=args.room,
        exclude_appointment_id=args.exclude,
    )
    if not request.is_complete:
        raise ValueError("A provider, start time, and positive duration are required")
    checker.request_check(request)
    conflicts = checker.flush()
    return {
        "provider_id": args.provider,
        "start": format_timestamp(args.start),
        "end": format_timestamp(request.end_time),
        "conflicts": _conflict_summary(conflicts),
    }


def run_calendar(client: BookingAPIClient, args: argparse.Namespace) -> Dict[str, Any]:
    end = args.end or args.start + timedelta(days=7)
    adapter = BookingCalendarAdapter(
        client, provider_ids=args.provider or None, show_zones=not args.no_zones
    )
    adapter.dates_set(args.start, end)
    return {
        "start": format_timestamp(args.start),
        "end": format_timestamp(end),
        "error": adapter.error,
        "events": adapter.all_events(),
        "legend": [
            {"label": item.label, "color": item.color, "count": item.count}
            for item in adapter.zone_legend()
        ],
    }


def _prompt_confirmation(conflicts: List[AvailabilityConflict]) -> bool:
    for conflict in conflicts:
        print(conflict.describe(), file=sys.stderr)
    answer = input(f"{CONFLICT_PROMPT} [y/N] ")
    return answer.strip().lower() in {"y", "yes"}


def run_book(client: BookingAPIClient, args: argparse.Namespace) -> Dict[str, Any]:
    confirm = (lambda conflicts: True) if args.yes else _prompt_confirmation
    form = AppointmentForm(
        client,
        preselected_start=args.start,
        preselected_provider_id=args.provider,
        initial_patient=Patient(id=args.patient, first_name="", last_name=""),
        confirm=confirm,
    )
    try:
        form.load_options()
        form.select_appointment_type(args.type)
        if args.duration is not None:
            form.set_duration(args.duration)
        if args.chair:
            form.set_chair(args.chair)
        form.set_source(args.source)
        if args.notes:
            form.set_notes(args.notes)

        saved = form.submit()
    finally:
        form.close()

    result: Dict[str, Any] = {
        "state": form.state.value,
        "conflicts": _conflict_summary(form.conflicts),
    }
    if saved is None:
        result["status"] = "failed"
        result["error"] = form.error or ("; ".join(form.errors.values()) or "Submission cancelled")
        result["errors"] = form.errors
    else:
        result["status"] = "success"
        result["appointment"] = saved.to_payload()
    return result


def _timestamp_arg(value: str) -> datetime:
    try:
        return parse_timestamp(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Zantra booking workflow controller")
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL, help="Booking API base URL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    check = subparsers.add_parser("check-availability", help="List conflicts for a candidate slot")
    check.add_argument("--provider", required=True)
    check.add_argument("--start", required=True, type=_timestamp_arg)
    check.add_argument("--duration", type=int, default=30)
    check.add_argument("--chair")
    check.add_argument("--room")
    check.add_argument("--exclude", help="Appointment id to ignore when rescheduling")

    calendar = subparsers.add_parser("calendar", help="Show events, zones, and legend for a range")
    calendar.add_argument("--start", required=True, type=_timestamp_arg)
    calendar.add_argument("--end", type=_timestamp_arg)
    calendar.add_argument("--provider", action="append")
    calendar.add_argument("--no-zones", action="store_true")

    book = subparsers.add_parser("book", help="Create an appointment")
    book.add_argument("--patient", required=True)
    book.add_argument("--type", required=True, help="Appointment type id")
    book.add_argument("--provider", required=True)
    book.add_argument("--start", required=True, type=_timestamp_arg)
    book.add_argument("--duration", type=int)
    book.add_argument("--chair")
    book.add_argument("--source", default="STAFF", choices=[source.value for source in AppointmentSource])
    book.add_argument("--notes")
    book.add_argument("--yes", action="store_true", help="Proceed without confirming conflicts")

    return parser.parse_args(argv)


COMMANDS: Dict[str, Callable[[BookingAPIClient, argparse.Namespace], Dict[str, Any]]] = {
    "check-availability": run_check_availability,
    "calendar": run_calendar,
    "book": run_book,
}


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("BOOKING_LOG_LEVEL", "INFO").upper(), format=LOG_FORMAT
    )
    args = parse_args(argv)
    task_logger = TaskLogger(LOG_PATH)
    client = BookingAPIClient(base_url=args.base_url)
    command = COMMANDS[args.command]

    try:
        result = execute_with_logging(args.command, lambda: command(client, args), task_logger)
    finally:
        client.close()

    print(json.dumps(result, indent=2, default=str))
    return 1 if result.get("status") == "failed" or result.get("error") else 0


if __name__ == "__main__":
    sys.exit(main())
