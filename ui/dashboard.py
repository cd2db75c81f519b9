"""Booking dashboard web application.

This module exposes a small Flask application that renders the week's
appointments and booking zones for the front desk, plus JSON endpoints the
scheduling screens poll: the calendar feed for a range and an immediate
availability check for a candidate slot. All data comes from the booking API
through :class:`connector.BookingAPIClient`.
"""
from __future__ import annotations

from collections import OrderedDict
from datetime import UTC, date, datetime, time, timedelta
import os
from typing import Any, Dict, List, MutableMapping, Optional, Tuple

from flask import Flask, Response, jsonify, render_template_string, request

from booking import AvailabilityChecker, AvailabilityRequest, BookingCalendarAdapter
from connector import BookingAPIClient, CalendarEvent, parse_timestamp

DATE_FORMAT = "%Y-%m-%d"


def parse_iso_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except ValueError:
        return None


def week_bounds(target_date: date) -> Tuple[datetime, datetime]:
    """Return the Monday-to-Monday window containing ``target_date``."""

    monday = target_date - timedelta(days=target_date.weekday())
    start = datetime.combine(monday, time.min, tzinfo=UTC)
    return start, start + timedelta(days=7)


def group_events_by_day(
    events: List[CalendarEvent], start: datetime
) -> "OrderedDict[str, List[MutableMapping[str, object]]]":
    days: "OrderedDict[str, List[MutableMapping[str, object]]]" = OrderedDict()
    for offset in range(7):
        days[(start + timedelta(days=offset)).strftime("%A %d %b")] = []
    for event in sorted(events, key=lambda item: item.start):
        label = event.start.astimezone(UTC).strftime("%A %d %b")
        if label not in days:
            continue
        props = event.extended_props
        days[label].append(
            {
                "time": f"{event.start.astimezone(UTC):%H:%M}-{event.end.astimezone(UTC):%H:%M}",
                "title": event.title,
                "provider": props.get("providerName") or props.get("providerId") or "",
                "status": props.get("status") or "",
                "color": event.background_color,
            }
        )
    return days


def build_dashboard_context(
    adapter: BookingCalendarAdapter, target_date: date
) -> MutableMapping[str, object]:
    start, end = week_bounds(target_date)
    adapter.dates_set(start, end)
    return {
        "filters": {
            "date": target_date.strftime(DATE_FORMAT),
            "provider": ",".join(adapter.provider_ids),
        },
        "error": adapter.error,
        "days": group_events_by_day(adapter.events, start),
        "legend": adapter.zone_legend(),
    }


def _provider_filter(raw: Optional[str]) -> List[str]:
    return [item.strip() for item in (raw or "").split(",") if item.strip()]


app = Flask(__name__)
client = BookingAPIClient()

dashboard_template = """
<!doctype html>
<html lang=\"en\">
  <head>
    <meta charset=\"utf-8\">
    <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\">
    <meta http-equiv=\"refresh\" content=\"60\">
    <title>Zantra Booking Dashboard</title>
    <link
      href=\"https://cdn.jsdelivr.net/npm/bootstrap@5.3.3/dist/css/bootstrap.min.css\"
      rel=\"stylesheet\"
      integrity=\"sha384-QWTKZyjpPEjISv5WaRU9OFeRpok6YctnYmDr5pNlyT2bRjXh0JMhjY6hW+ALEwIH\"
      crossorigin=\"anonymous\"
    >
  </head>
  <body class=\"bg-light\">
    <nav class=\"navbar navbar-expand-lg navbar-dark bg-primary\">
      <div class=\"container-fluid\">
        <a class=\"navbar-brand\" href=\"#\">Zantra Booking Dashboard</a>
      </div>
    </nav>
    <main class=\"container my-4\">
      <section class=\"mb-4\">
        <form class=\"row gy-2 gx-3 align-items-center\" method=\"get\" action=\"/dashboard\" aria-label=\"Calendar filters\">
          <div class=\"col-md-3\">
            <label for=\"filter-date\" class=\"form-label\">Week of</label>
            <input id=\"filter-date\" name=\"date\" type=\"date\" class=\"form-control\" value=\"{{ filters.date }}\">
          </div>
          <div class=\"col-md-3\">
            <label for=\"filter-provider\" class=\"form-label\">Provider IDs</label>
            <input id=\"filter-provider\" name=\"provider\" type=\"text\" class=\"form-control\" value=\"{{ filters.provider }}\">
          </div>
          <div class=\"col-md-3 align-self-end\">
            <button type=\"submit\" class=\"btn btn-primary w-100\">Apply Filters</button>
          </div>
        </form>
      </section>
      {% if error %}
        <div class=\"alert alert-danger\" role=\"alert\">{{ error }}</div>
      {% endif %}
      {% if legend %}
        <section class=\"mb-3 d-flex flex-wrap gap-3 align-items-center\">
          <span class=\"small text-muted fw-semibold\">Booking Zones:</span>
          {% for item in legend %}
            <span class=\"small\" title=\"{{ item.count }} time slot{{ '' if item.count == 1 else 's' }} this week\">
              <span class=\"d-inline-block me-1\" style=\"width:12px;height:12px;border-left:3px solid {{ item.color }};background:{{ item.color }}50\"></span>{{ item.label }}
            </span>
          {% endfor %}
        </section>
      {% endif %}
      <section class=\"row g-3\">
        {% for day, entries in days.items() %}
          <div class=\"col-lg-3 col-md-4\">
            <div class=\"card shadow-sm h-100\">
              <div class=\"card-header\">{{ day }}</div>
              <div class=\"card-body\">
                {% if entries %}
                  <ul class=\"list-unstyled mb-0\">
                    {% for entry in entries %}
                      <li class=\"mb-2 ps-2\" style=\"border-left:4px solid {{ entry.color or '#6c757d' }}\">
                        <div class=\"fw-semibold\">{{ entry.time }}</div>
                        <div>{{ entry.title }}</div>
                        <div class=\"small text-muted\">{{ entry.provider or '—' }} · {{ entry.status or '—' }}</div>
                      </li>
                    {% endfor %}
                  </ul>
                {% else %}
                  <p class=\"text-muted mb-0\">No appointments.</p>
                {% endif %}
              </div>
            </div>
          </div>
        {% endfor %}
      </section>
    </main>
  </body>
</html>
"""


@app.route("/dashboard", methods=["GET"])
def dashboard() -> str:
    target_date = parse_iso_date(request.args.get("date")) or date.today()
    adapter = BookingCalendarAdapter(client, provider_ids=_provider_filter(request.args.get("provider")))
    context = build_dashboard_context(adapter, target_date)
    return render_template_string(dashboard_template, **context)


@app.route("/api/calendar", methods=["GET"])
def calendar_feed() -> Tuple[Response, int]:
    """Return events, background zones, and the zone legend for a range."""

    try:
        start = parse_timestamp(request.args.get("start"))
        end = parse_timestamp(request.args.get("end"))
    except ValueError as exc:
        return jsonify({"success": False, "error": {"code": "VALIDATION_ERROR", "message": str(exc)}}), 400
    if end <= start:
        return jsonify(
            {"success": False, "error": {"code": "VALIDATION_ERROR", "message": "end must be after start"}}
        ), 400

    adapter = BookingCalendarAdapter(
        client,
        provider_ids=_provider_filter(request.args.get("provider")),
        show_zones=request.args.get("zones", "true").lower() != "false",
    )
    adapter.dates_set(start, end)
    payload: Dict[str, Any] = {
        "events": adapter.all_events(),
        "legend": [
            {"label": item.label, "color": item.color, "count": item.count}
            for item in adapter.zone_legend()
        ],
    }
    if adapter.error:
        return jsonify({"success": False, "data": payload, "error": {"message": adapter.error}}), 502
    return jsonify({"success": True, "data": payload}), 200


@app.route("/api/availability", methods=["POST"])
def availability() -> Tuple[Response, int]:
    """Run an immediate conflict check for the posted candidate slot."""

    body = request.get_json(silent=True) or {}
    try:
        check_request = AvailabilityRequest(
            provider_id=body.get("providerId"),
            start_time=parse_timestamp(body.get("startTime")),
            duration=int(body.get("duration") or 0),
            chair_id=body.get("chairId"),
            room_id=body.get("roomId"),
            exclude_appointment_id=body.get("excludeAppointmentId"),
        )
    except (TypeError, ValueError) as exc:
        return jsonify({"success": False, "error": {"code": "VALIDATION_ERROR", "message": str(exc)}}), 400
    if not check_request.is_complete:
        return jsonify(
            {
                "success": False,
                "error": {
                    "code": "VALIDATION_ERROR",
                    "message": "providerId, startTime, and a positive duration are required",
                },
            }
        ), 400

    checker = AvailabilityChecker(client)
    checker.request_check(check_request)
    conflicts = checker.flush()
    return jsonify(
        {"success": True, "data": {"conflicts": [conflict.to_payload() for conflict in conflicts]}}
    ), 200


if __name__ == "__main__":
    app.run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "5000")),
        debug=False,
    )
