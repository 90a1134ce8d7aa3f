"""Shared fixtures for API tests: an app wired to in-memory services."""

from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

import httpx
import pytest

from staysync.api.app import create_app
from staysync.api.routers import cleaning, export, sync
from staysync.cleaning.models import CleanerAssignment, CleaningTask
from staysync.cleaning.scheduler import AssignmentScheduler
from staysync.config import StaySyncConfig
from staysync.feeds.export import FeedExporter
from staysync.feeds.models import CalendarBlock, Property
from staysync.feeds.parser import ParseOptions
from staysync.feeds.sync import ReconciliationEngine
from staysync.services import Services
from tests._doubles import (
    FIXED_NOW,
    InMemoryAssignmentStore,
    InMemoryBlockStore,
    InMemoryPropertyStore,
    InMemoryReservationStore,
    InMemorySourceStore,
    InMemoryTaskStore,
    StaticFetcher,
    make_ics,
    make_source,
    make_vevent,
)

EXPORT_TOKEN = "tok-secret"


@pytest.fixture
def source_store() -> InMemorySourceStore:
    return InMemorySourceStore([make_source("src-1", "prop-1"), make_source("src-2", "prop-2")])


@pytest.fixture
def fetcher() -> StaticFetcher:
    return StaticFetcher(
        {
            "https://feeds.example.com/src-1.ics": make_ics(make_vevent("a"), make_vevent("b")),
            "https://feeds.example.com/src-2.ics": make_ics(make_vevent("c")),
        }
    )


@pytest.fixture
def task_store() -> InMemoryTaskStore:
    return InMemoryTaskStore(
        [
            CleaningTask(id="t1", property_id="prop-1", scheduled_start=datetime(2026, 3, 10, 11)),
            CleaningTask(id="t2", property_id="prop-1", scheduled_start=datetime(2026, 3, 14, 11)),
        ]
    )


@pytest.fixture
def services(
    source_store: InMemorySourceStore,
    fetcher: StaticFetcher,
    task_store: InMemoryTaskStore,
) -> Services:
    config = StaySyncConfig()
    reservations = InMemoryReservationStore()
    properties = InMemoryPropertyStore(
        [Property(id="prop-1", name="Casa Blu")], tokens={"prop-1": EXPORT_TOKEN}
    )
    blocks = InMemoryBlockStore(
        [
            CalendarBlock(
                id="b1",
                property_id="prop-1",
                start_date=date.today(),
                end_date=date.today(),
                reason="Deep clean",
                created_at=FIXED_NOW,
            )
        ]
    )
    return Services(
        config=config,
        engine=ReconciliationEngine(
            sources=source_store,
            reservations=reservations,
            fetcher=fetcher,
            parse_options=ParseOptions(assumed_tz=ZoneInfo("UTC")),
            clock=lambda: FIXED_NOW,
        ),
        exporter=FeedExporter(properties=properties, blocks=blocks, reservations=reservations),
        scheduler=AssignmentScheduler(
            tasks=task_store,
            assignments=InMemoryAssignmentStore(
                [
                    CleanerAssignment(property_id="prop-1", cleaner_id="c-ana", weight=2),
                    CleanerAssignment(property_id="prop-1", cleaner_id="c-ben", weight=1),
                ]
            ),
            assumed_tz=ZoneInfo("UTC"),
        ),
        properties=properties,
        fetcher=fetcher,
    )


@pytest.fixture
def app(services: Services):
    app = create_app(StaySyncConfig())
    for module in (cleaning, export, sync):
        app.dependency_overrides[module._get_services] = lambda: services
    return app


@pytest.fixture
async def client(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client
