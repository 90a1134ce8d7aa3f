"""Domain models for inbound feeds, reservations, blocks and exports."""

from __future__ import annotations

import enum
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_GUEST_COUNT = 50


class SourceStatus(enum.StrEnum):
    """Outcome recorded on a calendar source after each sync attempt."""

    OK = "ok"
    FETCH_ERROR = "fetch_error"
    PARSE_ERROR = "parse_error"
    STORE_ERROR = "store_error"


class EventStatus(enum.StrEnum):
    CONFIRMED = "confirmed"
    CANCELED = "canceled"


class ReservationStatus(enum.StrEnum):
    BOOKED = "booked"
    CANCELED = "canceled"


class UpsertOutcome(enum.StrEnum):
    """What a reservation upsert did to the row keyed by (property_id, external_uid)."""

    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class CalendarSource(BaseModel):
    """One external OTA feed linked to a property."""

    model_config = ConfigDict(extra="ignore")

    id: str
    property_id: str
    url: str = Field(min_length=1)
    active: bool = True
    channel: str | None = None
    last_sync_at: datetime | None = None
    last_status: SourceStatus | None = None
    last_error: str | None = None


class NormalizedEvent(BaseModel):
    """One VEVENT after unfolding, field extraction and date normalization."""

    model_config = ConfigDict(extra="forbid")

    uid: str = Field(min_length=1)
    start: datetime | None = None
    end: datetime | None = None
    status: EventStatus = EventStatus.CONFIRMED
    summary: str = ""
    description: str = ""
    guest_count: int = Field(default=2, gt=0, le=MAX_GUEST_COUNT)
    guest_name: str | None = None
    channel: str = "other"
    uid_generated: bool = False

    @property
    def reservation_status(self) -> ReservationStatus:
        if self.status is EventStatus.CANCELED:
            return ReservationStatus.CANCELED
        return ReservationStatus.BOOKED


class ReservationUpsert(BaseModel):
    """Payload written to the reservation store for one feed event."""

    model_config = ConfigDict(extra="forbid")

    property_id: str
    source_id: str
    external_uid: str = Field(min_length=1)
    guest_name: str | None = None
    guest_count: int = Field(default=2, gt=0, le=MAX_GUEST_COUNT)
    check_in: datetime
    check_out: datetime
    status: ReservationStatus
    channel: str | None = None

    @field_validator("guest_name")
    @classmethod
    def _truncate_guest_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized[:120] or None

    @classmethod
    def from_event(cls, event: NormalizedEvent, *, source: CalendarSource) -> ReservationUpsert:
        if event.start is None or event.end is None:
            raise ValueError(f"Event {event.uid!r} has no start/end and cannot be reserved")
        return cls(
            property_id=source.property_id,
            source_id=source.id,
            external_uid=event.uid,
            guest_name=event.guest_name or event.summary or None,
            guest_count=event.guest_count,
            check_in=event.start,
            check_out=event.end,
            status=event.reservation_status,
            channel=event.channel if event.channel != "other" else source.channel,
        )


class Reservation(BaseModel):
    """A durable reservation row."""

    model_config = ConfigDict(extra="ignore")

    id: str
    property_id: str
    source_id: str | None = None
    external_uid: str
    guest_name: str | None = None
    guest_count: int = 2
    check_in: datetime
    check_out: datetime
    status: ReservationStatus = ReservationStatus.BOOKED
    channel: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CalendarBlock(BaseModel):
    """Host-authored unavailability window; ``end_date`` is inclusive."""

    model_config = ConfigDict(extra="ignore")

    id: str
    property_id: str
    start_date: date
    end_date: date
    reason: str | None = None
    active: bool = True
    created_by: str | None = None
    created_at: datetime | None = None


class Property(BaseModel):
    """The slice of a property record the engine needs."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    host_id: str | None = None


class SourceSyncResult(BaseModel):
    """Outcome summary for one calendar source."""

    model_config = ConfigDict(extra="forbid")

    source_id: str
    property_id: str
    status: SourceStatus | None = None
    fetched_events: int = 0
    inserted: int = 0
    updated: int = 0
    canceled: int = 0
    unchanged: int = 0
    skipped: int = 0
    cancelled_before_start: bool = False
    error: str | None = None
    samples: list[dict[str, Any]] | None = None

    @property
    def ok(self) -> bool:
        return self.status is SourceStatus.OK


class BatchSyncResult(BaseModel):
    """Aggregate over every source processed by one batch sync."""

    model_config = ConfigDict(extra="forbid")

    inserted: int = 0
    updated: int = 0
    canceled: int = 0
    unchanged: int = 0
    skipped: int = 0
    succeeded_sources: int = 0
    failed_sources: int = 0
    sources: list[SourceSyncResult] = Field(default_factory=list)

    @classmethod
    def aggregate(cls, results: list[SourceSyncResult]) -> BatchSyncResult:
        batch = cls(sources=results)
        for result in results:
            batch.inserted += result.inserted
            batch.updated += result.updated
            batch.canceled += result.canceled
            batch.unchanged += result.unchanged
            batch.skipped += result.skipped
            if result.ok:
                batch.succeeded_sources += 1
            elif not result.cancelled_before_start:
                batch.failed_sources += 1
        return batch


class ExportedCalendar(BaseModel):
    """Rendered outbound feed plus its cache validator."""

    model_config = ConfigDict(extra="forbid")

    content: str
    etag: str
    filename: str
    event_count: int = 0
