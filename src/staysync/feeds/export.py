"""Outbound iCalendar feed rendering.

The exporter is a pure formatter over the property, block and reservation
stores, built on ``icalendar`` components. Output is byte-stable for
unchanged data: DTSTAMP values come from the records themselves, so the etag
only moves when the calendar does.
"""

from __future__ import annotations

import enum
import hashlib
import logging
import re
from datetime import UTC, date, datetime, time, timedelta

from icalendar import Calendar, Event

from staysync.config import ExportConfig
from staysync.errors import NotFoundError
from staysync.feeds.models import CalendarBlock, ExportedCalendar, Property, Reservation
from staysync.feeds.store import CalendarBlockRepository, PropertyRepository, ReservationRepository

logger = logging.getLogger(__name__)

DEFAULT_PRODID = "-//StaySync//Calendar Feed//EN"

_FILENAME_UNSAFE_RE = re.compile(r"[^A-Za-z0-9]")


class ExportVariant(enum.StrEnum):
    BLOCKS = "blocks"
    FULL = "full"


_FILENAME_SUFFIX = {
    ExportVariant.BLOCKS: "_blocks.ics",
    ExportVariant.FULL: "_calendar.ics",
}
_CALENDAR_LABEL = {
    ExportVariant.BLOCKS: "Blocked dates",
    ExportVariant.FULL: "Property calendar",
}


def as_utc(value: datetime) -> datetime:
    """Aware UTC copy of *value*; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def export_filename(property_name: str, variant: ExportVariant) -> str:
    return _FILENAME_UNSAFE_RE.sub("_", property_name) + _FILENAME_SUFFIX[variant]


def compute_etag(content: str) -> str:
    """First 16 hex characters of the SHA-256 of *content*."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


def _all_day_event(
    uid: str,
    stamp: datetime,
    start: date,
    end: date,
    summary: str,
    description: str | None = None,
) -> Event:
    event = Event()
    event.add("uid", uid)
    event.add("dtstamp", as_utc(stamp))
    event.add("dtstart", start)
    event.add("dtend", end)
    event.add("summary", summary)
    if description:
        event.add("description", description)
    event.add("status", "CONFIRMED")
    event.add("transp", "OPAQUE")
    return event


def block_event(block: CalendarBlock) -> Event:
    # end_date is stored inclusive; DTEND for all-day events is exclusive.
    return _all_day_event(
        uid=f"staysync-block-{block.id}",
        stamp=block.created_at or datetime.combine(block.start_date, time.min, tzinfo=UTC),
        start=block.start_date,
        end=block.end_date + timedelta(days=1),
        summary="BLOCKED",
        description=block.reason or "Blocked by host",
    )


def reservation_event(reservation: Reservation) -> Event:
    start = reservation.check_in.date()
    end = reservation.check_out.date()
    if end <= start:
        end = start + timedelta(days=1)
    return _all_day_event(
        uid=f"staysync-reservation-{reservation.id}",
        stamp=reservation.updated_at or reservation.created_at or reservation.check_in,
        start=start,
        end=end,
        summary="Reserved",
    )


def _sort_key(event: Event) -> tuple[date, str]:
    return event["dtstart"].dt, str(event["uid"])


class FeedExporter:
    """Renders a property's availability as an RFC 5545 document."""

    def __init__(
        self,
        *,
        properties: PropertyRepository,
        blocks: CalendarBlockRepository,
        reservations: ReservationRepository,
        prodid: str = DEFAULT_PRODID,
        past_days: int = 365,
        future_days: int = 548,
    ) -> None:
        self._properties = properties
        self._blocks = blocks
        self._reservations = reservations
        self._prodid = prodid
        self._past_days = past_days
        self._future_days = future_days

    @classmethod
    def from_config(
        cls,
        export: ExportConfig,
        *,
        properties: PropertyRepository,
        blocks: CalendarBlockRepository,
        reservations: ReservationRepository,
    ) -> FeedExporter:
        return cls(
            properties=properties,
            blocks=blocks,
            reservations=reservations,
            prodid=export.prodid,
            past_days=export.past_days,
            future_days=export.future_days,
        )

    def window(self, today: date) -> tuple[date, date]:
        return today - timedelta(days=self._past_days), today + timedelta(days=self._future_days)

    async def export_calendar(
        self,
        property_id: str,
        variant: ExportVariant | str = ExportVariant.BLOCKS,
        today: date | None = None,
    ) -> ExportedCalendar:
        """Render the calendar for *property_id*.

        Raises
        ------
        NotFoundError
            If the property does not exist.
        ValueError
            If *variant* is not a known export variant.
        """
        variant = ExportVariant(variant)
        prop = await self._properties.get(property_id)
        if prop is None:
            raise NotFoundError(f"Property not found: {property_id}")

        window_start, window_end = self.window(today or datetime.now(UTC).date())
        events = [
            block_event(block)
            for block in await self._blocks.list_active(
                property_id, window_start=window_start, window_end=window_end
            )
        ]
        if variant is ExportVariant.FULL:
            reservations = await self._reservations.list_booked(
                property_id, window_start=window_start, window_end=window_end
            )
            events.extend(reservation_event(reservation) for reservation in reservations)
            events.sort(key=_sort_key)

        content = self._render(prop, variant, events)
        etag = compute_etag(content)
        logger.info(
            "Rendered %s feed for property=%s events=%d etag=%s",
            variant.value,
            property_id,
            len(events),
            etag,
        )
        return ExportedCalendar(
            content=content,
            etag=etag,
            filename=export_filename(prop.name, variant),
            event_count=len(events),
        )

    def _render(self, prop: Property, variant: ExportVariant, events: list[Event]) -> str:
        calendar = Calendar()
        calendar.add("version", "2.0")
        calendar.add("prodid", self._prodid)
        calendar.add("calscale", "GREGORIAN")
        calendar.add("method", "PUBLISH")
        calendar.add("x-wr-calname", f"{prop.name} - {_CALENDAR_LABEL[variant]}")
        calendar.add("x-wr-caldesc", f"Exported calendar for property {prop.id}")
        for event in events:
            calendar.add_component(event)
        return calendar.to_ical().decode("utf-8")
