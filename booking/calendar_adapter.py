"""Adapter between calendar widget interactions and booking records."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from connector import (
    BookingAPIError,
    BookingClientError,
    BookingConnectionError,
    BookingZone,
    CalendarEvent,
    ZoneDetails,
)

logger = logging.getLogger(__name__)

MAX_LEGEND_ITEMS = 6

EventClickHandler = Callable[[str, CalendarEvent], None]
DateSelectHandler = Callable[[datetime, datetime, Optional[ZoneDetails]], None]
# Reschedule handlers must return True to keep the change; anything else reverts it.
RescheduleHandler = Callable[[str, datetime, datetime], bool]


@dataclass(frozen=True)
class LegendItem:
    label: str
    color: str
    count: int


class BookingCalendarAdapter:
    """Holds the visible range's events and zones and routes interactions.

    Callers wire the widget's range-change, click, select, drop, and resize
    callbacks to :meth:`dates_set`, :meth:`event_click`, :meth:`date_select`,
    :meth:`event_drop`, and :meth:`event_resize`.
    """

    def __init__(
        self,
        client,
        *,
        provider_ids: Optional[Iterable[str]] = None,
        show_zones: bool = True,
        on_event_click: Optional[EventClickHandler] = None,
        on_date_select: Optional[DateSelectHandler] = None,
        on_event_drop: Optional[RescheduleHandler] = None,
        on_event_resize: Optional[RescheduleHandler] = None,
    ) -> None:
        self._client = client
        self.provider_ids = [provider_id for provider_id in provider_ids or () if provider_id]
        self.show_zones = show_zones
        self.on_event_click = on_event_click
        self.on_date_select = on_date_select
        self.on_event_drop = on_event_drop
        self.on_event_resize = on_event_resize

        self.events: List[CalendarEvent] = []
        self.zones: List[BookingZone] = []
        self.error: Optional[str] = None
        self.loading = False
        self.visible_range: Optional[Tuple[datetime, datetime]] = None

    @property
    def selectable(self) -> bool:
        return self.on_date_select is not None

    def dates_set(self, start: datetime, end: datetime) -> None:
        """Load events and zones for a newly visible range."""

        self.visible_range = (start, end)
        self.loading = True
        self.error = None
        provider_ids = self.provider_ids or None
        try:
            with ThreadPoolExecutor(max_workers=2, thread_name_prefix="calendar") as executor:
                events_future = executor.submit(
                    self._client.get_calendar_events, start, end, provider_ids=provider_ids
                )
                zones_future = (
                    executor.submit(self._client.get_calendar_zones, start, end, provider_ids=provider_ids)
                    if self.show_zones
                    else None
                )

                try:
                    self.events = events_future.result()
                except BookingConnectionError as exc:
                    self.error = "Failed to connect to server"
                    logger.error("Calendar fetch error: %s", exc)
                except BookingAPIError as exc:
                    self.error = exc.message or "Failed to load appointments"
                    logger.error("Calendar events request rejected: %s", exc)

                if zones_future is not None:
                    try:
                        self.zones = zones_future.result()
                    except BookingClientError as exc:
                        logger.warning("Booking zones unavailable for %s - %s: %s", start, end, exc)
        finally:
            self.loading = False
        logger.debug(
            "Loaded %d event(s) and %d zone(s) for %s - %s",
            len(self.events),
            len(self.zones),
            start.isoformat(),
            end.isoformat(),
        )

    def event_click(self, raw_event: Mapping[str, Any]) -> CalendarEvent:
        """Resolve a widget event object and forward it to the click handler."""

        event = CalendarEvent.from_payload(raw_event)
        if self.on_event_click is not None:
            self.on_event_click(event.appointment_id, event)
        return event

    def find_zone_for_time(self, start: datetime, end: datetime) -> Optional[ZoneDetails]:
        for zone in self.zones:
            if zone.contains(start, end):
                return zone.details
        return None

    def date_select(self, start: datetime, end: datetime) -> Optional[ZoneDetails]:
        """Handle a slot selection made to create an appointment."""

        zone = self.find_zone_for_time(start, end)
        if self.on_date_select is not None:
            self.on_date_select(start, end, zone)
        return zone

    def event_drop(
        self, event_id: str, new_start: Optional[datetime], new_end: Optional[datetime]
    ) -> bool:
        return self._reschedule(event_id, new_start, new_end, self.on_event_drop, "drop")

    def event_resize(
        self, event_id: str, new_start: Optional[datetime], new_end: Optional[datetime]
    ) -> bool:
        return self._reschedule(event_id, new_start, new_end, self.on_event_resize, "resize")

    def zone_legend(self) -> List[LegendItem]:
        if not self.show_zones or not self.zones:
            return []

        entries: Dict[str, List[Any]] = {}
        for zone in self.zones:
            key, label = zone.details.legend_entry()
            existing = entries.get(key)
            if existing is not None:
                existing[2] += 1
            else:
                entries[key] = [label, zone.border_color, 1]

        items = [LegendItem(label=label, color=color, count=count) for label, color, count in entries.values()]
        return items[:MAX_LEGEND_ITEMS]

    def all_events(self) -> List[Dict[str, Any]]:
        """Appointment events followed by zones rendered as background events."""

        combined = [event.to_payload() for event in self.events]
        if self.show_zones:
            combined.extend(zone.to_background_event() for zone in self.zones)
        return combined

    def _find_event(self, event_id: str) -> CalendarEvent:
        for event in self.events:
            if event.id == event_id or event.appointment_id == event_id:
                return event
        raise LookupError(f"Calendar event '{event_id}' is not loaded")

    def _reschedule(
        self,
        event_id: str,
        new_start: Optional[datetime],
        new_end: Optional[datetime],
        handler: Optional[RescheduleHandler],
        action: str,
    ) -> bool:
        event = self._find_event(event_id)
        if handler is None or new_start is None or new_end is None:
            logger.debug("Reverting %s of event %s; no handler or incomplete window", action, event_id)
            return False

        original = (event.start, event.end)
        event.start, event.end = new_start, new_end

        try:
            approved = handler(event.appointment_id, new_start, new_end)
        except Exception:  # noqa: BLE001 - any handler failure reverts the move
            logger.exception("Reschedule %s handler failed for appointment %s", action, event.appointment_id)
            approved = False

        if not isinstance(approved, bool):
            logger.error(
                "Reschedule %s handler returned %r instead of a bool; reverting appointment %s",
                action,
                approved,
                event.appointment_id,
            )
            approved = False

        if not approved:
            event.start, event.end = original
            logger.info("Reverted %s of appointment %s", action, event.appointment_id)
        return approved


__all__ = [
    "BookingCalendarAdapter",
    "LegendItem",
    "MAX_LEGEND_ITEMS",
]
