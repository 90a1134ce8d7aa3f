"""In-memory stand-ins for the asyncpg stores and the feed fetcher."""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any

from staysync.cleaning.models import CleanerAssignment, CleaningTask, TaskStatus
from staysync.errors import PersistenceError, TransportError
from staysync.feeds.models import (
    CalendarBlock,
    CalendarSource,
    Property,
    Reservation,
    ReservationStatus,
    ReservationUpsert,
    SourceStatus,
    UpsertOutcome,
)
from staysync.feeds.sync import FeedFetcher

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def make_source(
    source_id: str = "src-1",
    property_id: str = "prop-1",
    *,
    url: str | None = None,
    channel: str | None = "airbnb",
    active: bool = True,
) -> CalendarSource:
    return CalendarSource(
        id=source_id,
        property_id=property_id,
        url=url or f"https://feeds.example.com/{source_id}.ics",
        channel=channel,
        active=active,
    )


def make_ics(*events: str) -> str:
    return "\r\n".join(
        ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//Test//EN", *events, "END:VCALENDAR"]
    )


def make_vevent(
    uid: str,
    start: str = "20260310",
    end: str = "20260314",
    *,
    summary: str = "Reserved",
    status: str | None = None,
    description: str | None = None,
) -> str:
    lines = [
        "BEGIN:VEVENT",
        f"UID:{uid}",
        f"DTSTART;VALUE=DATE:{start}",
        f"DTEND;VALUE=DATE:{end}",
        f"SUMMARY:{summary}",
    ]
    if description is not None:
        lines.append(f"DESCRIPTION:{description}")
    if status is not None:
        lines.append(f"STATUS:{status}")
    lines.append("END:VEVENT")
    return "\r\n".join(lines)


class StaticFetcher(FeedFetcher):
    """Serves canned bodies per URL; an Exception value is raised instead."""

    def __init__(self, responses: dict[str, str | Exception]) -> None:
        self.responses = responses
        self.calls: list[str] = []
        self.shutdown_called = False

    async def fetch(self, url: str) -> str:
        self.calls.append(url)
        response = self.responses.get(url)
        if response is None:
            raise TransportError(url=url, status_code=404, message="Not Found")
        if isinstance(response, Exception):
            raise response
        return response

    async def shutdown(self) -> None:
        self.shutdown_called = True


class InMemorySourceStore:
    def __init__(self, sources: list[CalendarSource]) -> None:
        self.sources = {source.id: source for source in sources}
        self.records: list[dict[str, Any]] = []
        self.fail_record = False

    async def list_active(self, property_ids: list[str] | None = None) -> list[CalendarSource]:
        return [
            source
            for source in self.sources.values()
            if source.active and (property_ids is None or source.property_id in property_ids)
        ]

    async def record_result(
        self,
        source_id: str,
        *,
        status: SourceStatus,
        error: str | None,
        synced_at: datetime,
    ) -> None:
        if self.fail_record:
            raise PersistenceError("connection reset")
        self.records.append(
            {"source_id": source_id, "status": status, "error": error, "synced_at": synced_at}
        )
        source = self.sources[source_id]
        self.sources[source_id] = source.model_copy(
            update={"last_status": status, "last_error": error, "last_sync_at": synced_at}
        )


class InMemoryReservationStore:
    """Mirrors the ON CONFLICT upsert: identical payloads are no-ops."""

    def __init__(self) -> None:
        self.rows: dict[tuple[str, str], ReservationUpsert] = {}
        self.ids: dict[tuple[str, str], str] = {}
        self.fail_on: set[str] = set()
        self.writes = 0

    async def upsert(self, reservation: ReservationUpsert) -> UpsertOutcome:
        if reservation.external_uid in self.fail_on:
            raise PersistenceError(f"write rejected for {reservation.external_uid}")
        key = (reservation.property_id, reservation.external_uid)
        existing = self.rows.get(key)
        if existing is not None and existing == reservation:
            return UpsertOutcome.UNCHANGED
        self.writes += 1
        self.rows[key] = reservation
        if existing is None:
            self.ids[key] = f"res-{len(self.ids) + 1}"
            return UpsertOutcome.INSERTED
        return UpsertOutcome.UPDATED

    async def list_booked(
        self, property_id: str, *, window_start: date, window_end: date
    ) -> list[Reservation]:
        booked = [
            Reservation(
                id=self.ids[key],
                created_at=FIXED_NOW,
                updated_at=FIXED_NOW,
                **row.model_dump(),
            )
            for key, row in self.rows.items()
            if row.property_id == property_id
            and row.status is ReservationStatus.BOOKED
            and row.check_out.date() >= window_start
            and row.check_in.date() <= window_end
        ]
        return sorted(booked, key=lambda r: (r.check_in, r.id))


class InMemoryBlockStore:
    def __init__(self, blocks: list[CalendarBlock]) -> None:
        self.blocks = blocks
        self.windows: list[tuple[date, date]] = []

    async def list_active(
        self, property_id: str, *, window_start: date, window_end: date
    ) -> list[CalendarBlock]:
        self.windows.append((window_start, window_end))
        matching = [
            block
            for block in self.blocks
            if block.property_id == property_id
            and block.active
            and block.end_date >= window_start
            and block.start_date <= window_end
        ]
        return sorted(matching, key=lambda b: (b.start_date, b.id))


class InMemoryPropertyStore:
    def __init__(
        self,
        properties: list[Property],
        tokens: dict[str, str] | None = None,
    ) -> None:
        self.properties = {prop.id: prop for prop in properties}
        self.tokens = tokens or {}

    async def get(self, property_id: str) -> Property | None:
        return self.properties.get(property_id)

    async def verify_export_token(self, property_id: str, token: str) -> bool:
        return bool(token) and self.tokens.get(property_id) == token


class InMemoryTaskStore:
    def __init__(self, tasks: list[CleaningTask]) -> None:
        self.tasks = {task.id: task for task in tasks}
        self.fail_ids: set[str] = set()
        self.queries: list[tuple[str, datetime, datetime]] = []

    async def list_unassigned(
        self, property_id: str, *, start: datetime, end: datetime
    ) -> list[CleaningTask]:
        self.queries.append((property_id, start, end))
        return [
            task
            for task in self.tasks.values()
            if task.property_id == property_id
            and task.status is TaskStatus.TODO
            and task.assigned_cleaner_id is None
            and start <= task.scheduled_start < end
        ]

    async def assign(self, task_id: str, cleaner_id: str) -> bool:
        if task_id in self.fail_ids:
            raise PersistenceError(f"update failed for {task_id}")
        task = self.tasks[task_id]
        if task.status is not TaskStatus.TODO or task.assigned_cleaner_id is not None:
            return False
        self.tasks[task_id] = task.model_copy(
            update={"status": TaskStatus.ASSIGNED, "assigned_cleaner_id": cleaner_id}
        )
        return True


class InMemoryAssignmentStore:
    def __init__(self, assignments: list[CleanerAssignment]) -> None:
        self.assignments = assignments

    async def list_active(self, property_id: str) -> list[CleanerAssignment]:
        return [a for a in self.assignments if a.property_id == property_id and a.active]
