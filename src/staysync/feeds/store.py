"""Persistence contracts and asyncpg-backed stores for the feed engine.

Each store receives an explicitly constructed ``asyncpg.Pool``; there is no
module-level connection state.
Database failures surface as :class:`PersistenceError`.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Protocol

import asyncpg

from staysync.errors import PersistenceError
from staysync.feeds.models import (
    CalendarBlock,
    CalendarSource,
    Property,
    Reservation,
    ReservationUpsert,
    SourceStatus,
    UpsertOutcome,
)

logger = logging.getLogger(__name__)

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError)

_SOURCE_COLUMNS = "id, property_id, url, active, channel, last_sync_at, last_status, last_error"
_BLOCK_COLUMNS = "id, property_id, start_date, end_date, reason, active, created_by, created_at"
_RESERVATION_COLUMNS = (
    "id, property_id, source_id, external_uid, guest_name, guest_count, "
    "check_in, check_out, status, channel, created_at, updated_at"
)

# Conflict key is the idempotency boundary. The WHERE clause turns an
# identical payload into a no-op so no row is returned for it.
_UPSERT_RESERVATION_SQL = """
INSERT INTO reservations AS r (
    property_id, source_id, external_uid, guest_name, guest_count,
    check_in, check_out, status, channel
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
ON CONFLICT (property_id, external_uid) DO UPDATE
    SET source_id = EXCLUDED.source_id,
        guest_name = EXCLUDED.guest_name,
        guest_count = EXCLUDED.guest_count,
        check_in = EXCLUDED.check_in,
        check_out = EXCLUDED.check_out,
        status = EXCLUDED.status,
        channel = EXCLUDED.channel,
        updated_at = now()
    WHERE (r.source_id, r.guest_name, r.guest_count, r.check_in, r.check_out,
           r.status, r.channel)
        IS DISTINCT FROM
          (EXCLUDED.source_id, EXCLUDED.guest_name, EXCLUDED.guest_count,
           EXCLUDED.check_in, EXCLUDED.check_out, EXCLUDED.status, EXCLUDED.channel)
RETURNING (xmax = 0) AS inserted
"""


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------


class CalendarSourceRepository(Protocol):
    """Per-source sync metadata (the source registry)."""

    async def list_active(self, property_ids: list[str] | None = None) -> list[CalendarSource]:
        """Active sources, optionally limited to *property_ids*."""
        ...

    async def record_result(
        self,
        source_id: str,
        *,
        status: SourceStatus,
        error: str | None,
        synced_at: datetime,
    ) -> None:
        """Write back the outcome of one sync attempt."""
        ...


class ReservationRepository(Protocol):
    async def upsert(self, reservation: ReservationUpsert) -> UpsertOutcome:
        """Insert or update on (property_id, external_uid)."""
        ...

    async def list_booked(
        self, property_id: str, *, window_start: date, window_end: date
    ) -> list[Reservation]:
        """Booked reservations overlapping the window, ordered by check-in."""
        ...


class CalendarBlockRepository(Protocol):
    async def list_active(
        self, property_id: str, *, window_start: date, window_end: date
    ) -> list[CalendarBlock]:
        """Active blocks overlapping the window, ordered by start date."""
        ...


class PropertyRepository(Protocol):
    async def get(self, property_id: str) -> Property | None: ...

    async def verify_export_token(self, property_id: str, token: str) -> bool: ...


# ---------------------------------------------------------------------------
# asyncpg implementations
# ---------------------------------------------------------------------------


class CalendarSourceStore:
    """``calendar_sources`` table accessor."""

    def __init__(self, pool: Any) -> None:
        self._pool = pool

    async def list_active(self, property_ids: list[str] | None = None) -> list[CalendarSource]:
        try:
            if property_ids is None:
                rows = await self._pool.fetch(
                    f"SELECT {_SOURCE_COLUMNS} FROM calendar_sources "
                    "WHERE active ORDER BY property_id, id"
                )
            else:
                rows = await self._pool.fetch(
                    f"SELECT {_SOURCE_COLUMNS} FROM calendar_sources "
                    "WHERE active AND property_id = ANY($1::text[]) ORDER BY property_id, id",
                    list(property_ids),
                )
        except _DB_ERRORS as exc:
            raise PersistenceError(f"Failed to list calendar sources: {exc}") from exc
        return [CalendarSource.model_validate(dict(row)) for row in rows]

    async def record_result(
        self,
        source_id: str,
        *,
        status: SourceStatus,
        error: str | None,
        synced_at: datetime,
    ) -> None:
        try:
            await self._pool.execute(
                """
                UPDATE calendar_sources
                SET last_sync_at = $2, last_status = $3, last_error = $4
                WHERE id = $1
                """,
                source_id,
                synced_at,
                status.value,
                error,
            )
        except _DB_ERRORS as exc:
            raise PersistenceError(f"Failed to record sync result for {source_id}: {exc}") from exc


class ReservationStore:
    """``reservations`` table accessor."""

    def __init__(self, pool: Any) -> None:
        self._pool = pool

    async def upsert(self, reservation: ReservationUpsert) -> UpsertOutcome:
        try:
            row = await self._pool.fetchrow(
                _UPSERT_RESERVATION_SQL,
                reservation.property_id,
                reservation.source_id,
                reservation.external_uid,
                reservation.guest_name,
                reservation.guest_count,
                reservation.check_in,
                reservation.check_out,
                reservation.status.value,
                reservation.channel,
            )
        except _DB_ERRORS as exc:
            raise PersistenceError(
                f"Failed to upsert reservation {reservation.external_uid!r}: {exc}"
            ) from exc
        if row is None:
            return UpsertOutcome.UNCHANGED
        return UpsertOutcome.INSERTED if row["inserted"] else UpsertOutcome.UPDATED

    async def list_booked(
        self, property_id: str, *, window_start: date, window_end: date
    ) -> list[Reservation]:
        try:
            rows = await self._pool.fetch(
                f"""
                SELECT {_RESERVATION_COLUMNS}
                FROM reservations
                WHERE property_id = $1
                  AND status = 'booked'
                  AND check_out::date >= $2
                  AND check_in::date <= $3
                ORDER BY check_in, id
                """,
                property_id,
                window_start,
                window_end,
            )
        except _DB_ERRORS as exc:
            raise PersistenceError(f"Failed to list reservations for {property_id}: {exc}") from exc
        return [Reservation.model_validate(dict(row)) for row in rows]


class CalendarBlockStore:
    """``calendar_blocks`` table accessor (read-only)."""

    def __init__(self, pool: Any) -> None:
        self._pool = pool

    async def list_active(
        self, property_id: str, *, window_start: date, window_end: date
    ) -> list[CalendarBlock]:
        try:
            rows = await self._pool.fetch(
                f"""
                SELECT {_BLOCK_COLUMNS}
                FROM calendar_blocks
                WHERE property_id = $1
                  AND active
                  AND end_date >= $2
                  AND start_date <= $3
                ORDER BY start_date, id
                """,
                property_id,
                window_start,
                window_end,
            )
        except _DB_ERRORS as exc:
            raise PersistenceError(
                f"Failed to list calendar blocks for {property_id}: {exc}"
            ) from exc
        return [CalendarBlock.model_validate(dict(row)) for row in rows]


class PropertyStore:
    """Read-only view over ``properties`` and the host export tokens."""

    def __init__(self, pool: Any) -> None:
        self._pool = pool

    async def get(self, property_id: str) -> Property | None:
        try:
            row = await self._pool.fetchrow(
                "SELECT id, name, host_id FROM properties WHERE id = $1",
                property_id,
            )
        except _DB_ERRORS as exc:
            raise PersistenceError(f"Failed to load property {property_id}: {exc}") from exc
        if row is None:
            return None
        return Property.model_validate(dict(row))

    async def verify_export_token(self, property_id: str, token: str) -> bool:
        if not token:
            return False
        try:
            matched = await self._pool.fetchval(
                """
                SELECT EXISTS (
                    SELECT 1
                    FROM properties p
                    JOIN host_accounts h ON h.id = p.host_id
                    WHERE p.id = $1 AND h.export_token = $2
                )
                """,
                property_id,
                token,
            )
        except _DB_ERRORS as exc:
            raise PersistenceError(f"Failed to verify export token: {exc}") from exc
        return bool(matched)
