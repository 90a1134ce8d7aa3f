"""Inbound OTA feed reconciliation.

This module owns:
- the fetch contract for external iCal feeds and its httpx implementation
- per-source reconciliation into the reservation store
- bounded-concurrency batch sync across every active source
"""

from __future__ import annotations

import abc
import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx

from staysync.config import DEFAULT_USER_AGENT, FeedsConfig
from staysync.core.logging import sync_context
from staysync.errors import FeedParseError, NoActiveSourcesError, PersistenceError, TransportError
from staysync.feeds.models import (
    BatchSyncResult,
    CalendarSource,
    EventStatus,
    NormalizedEvent,
    ReservationUpsert,
    SourceStatus,
    SourceSyncResult,
    UpsertOutcome,
)
from staysync.feeds.parser import ParseOptions, looks_like_calendar, parse_feed
from staysync.feeds.store import CalendarSourceRepository, ReservationRepository

logger = logging.getLogger(__name__)

DEBUG_SAMPLE_LIMIT = 5
DEFAULT_MAX_CONCURRENCY = 4
_ERROR_TEXT_LIMIT = 300
_SAMPLE_FIELDS = {
    "uid",
    "start",
    "end",
    "status",
    "summary",
    "guest_count",
    "guest_name",
    "channel",
}


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------


class FeedFetcher(abc.ABC):
    """Transport contract for downloading one calendar feed."""

    @abc.abstractmethod
    async def fetch(self, url: str) -> str:
        """Return the feed body; raise :class:`TransportError` on failure."""

    async def shutdown(self) -> None:
        """Release transport resources."""


class HttpFeedFetcher(FeedFetcher):
    """httpx-backed fetcher identifying itself with a stable User-Agent."""

    def __init__(
        self,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_seconds: float = 20.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._user_agent = user_agent
        self._owns_http_client = http_client is None
        self._http_client = (
            http_client
            if http_client is not None
            else httpx.AsyncClient(
                timeout=httpx.Timeout(timeout_seconds, connect=10.0),
                follow_redirects=True,
            )
        )

    @classmethod
    def from_config(cls, feeds: FeedsConfig) -> HttpFeedFetcher:
        return cls(user_agent=feeds.user_agent, timeout_seconds=feeds.timeout_seconds)

    async def fetch(self, url: str) -> str:
        try:
            response = await self._http_client.get(
                url,
                headers={
                    "User-Agent": self._user_agent,
                    "Accept": "text/calendar, text/plain;q=0.9, */*;q=0.1",
                },
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise TransportError(url=url, message=_describe_transport_error(exc)) from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise TransportError(
                url=url,
                status_code=response.status_code,
                message=_safe_error_message(response),
            )
        return response.text

    async def shutdown(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()


def _describe_transport_error(exc: Exception) -> str:
    text = " ".join(str(exc).split())
    return f"{type(exc).__name__}: {text}"[:200] if text else type(exc).__name__


def _safe_error_message(response: httpx.Response) -> str:
    text = response.text.strip()
    if text:
        return " ".join(text.split())[:200]
    return response.reason_phrase or "unknown error"


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


class ReconciliationEngine:
    """Pulls every active feed and upserts its events as reservations.

    Reservations are never deleted; a cancellation is a status transition
    on the existing row keyed by ``(property_id, external_uid)``.
    """

    def __init__(
        self,
        *,
        sources: CalendarSourceRepository,
        reservations: ReservationRepository,
        fetcher: FeedFetcher,
        parse_options: ParseOptions | None = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._sources = sources
        self._reservations = reservations
        self._fetcher = fetcher
        self._parse_options = parse_options or ParseOptions()
        self._max_concurrency = max(1, int(max_concurrency))
        self._clock = clock or (lambda: datetime.now(UTC))

    async def sync_source(self, source: CalendarSource, *, debug: bool = False) -> SourceSyncResult:
        """Reconcile one source and record the outcome on it."""
        with sync_context(property_id=source.property_id, source_id=source.id):
            result = SourceSyncResult(source_id=source.id, property_id=source.property_id)

            try:
                body = await self._fetcher.fetch(source.url)
            except TransportError as exc:
                logger.warning("Calendar fetch failed: %s", exc)
                return await self._finish(source, result, SourceStatus.FETCH_ERROR, str(exc))

            try:
                events = self._parse_document(body)
            except FeedParseError as exc:
                logger.warning("Calendar parse failed: %s", exc)
                return await self._finish(source, result, SourceStatus.PARSE_ERROR, str(exc))

            result.fetched_events = len(events)
            if debug:
                result.samples = [_event_sample(event) for event in events[:DEBUG_SAMPLE_LIMIT]]

            try:
                await self._apply_events(source, events, result)
            except PersistenceError as exc:
                logger.error("Reservation store rejected a write; aborting source: %s", exc)
                return await self._finish(source, result, SourceStatus.STORE_ERROR, str(exc))

            logger.info(
                "Calendar sync ok: fetched=%d inserted=%d updated=%d canceled=%d "
                "unchanged=%d skipped=%d",
                result.fetched_events,
                result.inserted,
                result.updated,
                result.canceled,
                result.unchanged,
                result.skipped,
            )
            return await self._finish(source, result, SourceStatus.OK, None)

    async def sync_all(
        self,
        property_ids: list[str] | None = None,
        *,
        debug: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> BatchSyncResult:
        """Sync every active source, or the active sources of *property_ids*.

        Sources run concurrently behind a semaphore. When *cancel_event* is
        set, sources that have not started yet are reported as cancelled and
        sources already running finish normally.
        """
        sources = await self._sources.list_active(property_ids)
        if not sources:
            raise NoActiveSourcesError(
                "No active calendar sources to sync",
                details={"property_ids": property_ids},
            )

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _run(source: CalendarSource) -> SourceSyncResult:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return SourceSyncResult(
                        source_id=source.id,
                        property_id=source.property_id,
                        cancelled_before_start=True,
                        error="cancelled",
                    )
                try:
                    return await self.sync_source(source, debug=debug)
                except Exception as exc:
                    logger.exception(
                        "Unexpected failure while syncing source=%s property=%s",
                        source.id,
                        source.property_id,
                    )
                    return SourceSyncResult(
                        source_id=source.id,
                        property_id=source.property_id,
                        error=str(exc)[:_ERROR_TEXT_LIMIT] or type(exc).__name__,
                    )

        results = await asyncio.gather(*(_run(source) for source in sources))
        batch = BatchSyncResult.aggregate(list(results))
        logger.info(
            "Batch sync finished: sources=%d succeeded=%d failed=%d inserted=%d updated=%d "
            "canceled=%d",
            len(sources),
            batch.succeeded_sources,
            batch.failed_sources,
            batch.inserted,
            batch.updated,
            batch.canceled,
        )
        return batch

    def _parse_document(self, body: str) -> list[NormalizedEvent]:
        if not looks_like_calendar(body):
            raise FeedParseError("Response is not an iCalendar document (missing BEGIN:VCALENDAR)")
        return parse_feed(body, self._parse_options)

    async def _apply_events(
        self,
        source: CalendarSource,
        events: list[NormalizedEvent],
        result: SourceSyncResult,
    ) -> None:
        for event in events:
            if event.start is None or event.end is None:
                result.skipped += 1
                continue

            outcome = await self._reservations.upsert(
                ReservationUpsert.from_event(event, source=source)
            )
            if outcome is UpsertOutcome.UNCHANGED:
                result.unchanged += 1
            elif event.status is EventStatus.CANCELED:
                result.canceled += 1
            elif outcome is UpsertOutcome.INSERTED:
                result.inserted += 1
            else:
                result.updated += 1

    async def _finish(
        self,
        source: CalendarSource,
        result: SourceSyncResult,
        status: SourceStatus,
        error: str | None,
    ) -> SourceSyncResult:
        error_text = error[:_ERROR_TEXT_LIMIT] if error else None
        result.status = status
        result.error = error_text
        try:
            await self._sources.record_result(
                source.id,
                status=status,
                error=error_text,
                synced_at=self._clock(),
            )
        except PersistenceError as exc:
            logger.error("Could not record sync status on source: %s", exc)
            if status is SourceStatus.OK:
                result.status = SourceStatus.STORE_ERROR
                result.error = str(exc)[:_ERROR_TEXT_LIMIT]
        return result


def _event_sample(event: NormalizedEvent) -> dict[str, Any]:
    return event.model_dump(mode="json", include=_SAMPLE_FIELDS)
