"""Wiring of stores and engines over one connection pool.

Shared by the API lifespan and the CLI so both run the exact same object
graph. Everything is constructed explicitly from a :class:`StaySyncConfig`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from staysync.cleaning.scheduler import AssignmentScheduler
from staysync.cleaning.store import CleanerAssignmentStore, CleaningTaskStore
from staysync.config import StaySyncConfig
from staysync.db import Database
from staysync.feeds.export import FeedExporter
from staysync.feeds.parser import ParseOptions
from staysync.feeds.store import (
    CalendarBlockStore,
    CalendarSourceStore,
    PropertyRepository,
    PropertyStore,
    ReservationStore,
)
from staysync.feeds.sync import FeedFetcher, HttpFeedFetcher, ReconciliationEngine

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """The engines a request or command needs, plus what must be closed."""

    config: StaySyncConfig
    engine: ReconciliationEngine
    exporter: FeedExporter
    scheduler: AssignmentScheduler
    properties: PropertyRepository
    fetcher: FeedFetcher | None = None
    database: Database | None = None

    async def close(self) -> None:
        if self.fetcher is not None:
            await self.fetcher.shutdown()
        if self.database is not None:
            await self.database.close()


def build_services(
    pool: Any,
    config: StaySyncConfig,
    *,
    fetcher: FeedFetcher | None = None,
    database: Database | None = None,
) -> Services:
    """Construct every store and engine over *pool*."""
    fetcher = fetcher or HttpFeedFetcher.from_config(config.feeds)
    properties = PropertyStore(pool)
    reservations = ReservationStore(pool)

    engine = ReconciliationEngine(
        sources=CalendarSourceStore(pool),
        reservations=reservations,
        fetcher=fetcher,
        parse_options=ParseOptions.from_config(config.feeds),
        max_concurrency=config.feeds.max_concurrency,
    )
    exporter = FeedExporter.from_config(
        config.export,
        properties=properties,
        blocks=CalendarBlockStore(pool),
        reservations=reservations,
    )
    scheduler = AssignmentScheduler.from_config(
        config.cleaning,
        tasks=CleaningTaskStore(pool),
        assignments=CleanerAssignmentStore(pool),
        assumed_tz=config.feeds.tzinfo,
    )
    return Services(
        config=config,
        engine=engine,
        exporter=exporter,
        scheduler=scheduler,
        properties=properties,
        fetcher=fetcher,
        database=database,
    )


async def open_services(config: StaySyncConfig) -> Services:
    """Connect to the configured database and build :class:`Services` over it."""
    database = Database.from_env(config.db_name, schema=config.db_schema)
    pool = await database.connect()
    logger.info("Services ready on database %s", config.db_name)
    return build_services(pool, config, database=database)
