"""Tests for POST /api/cleaning/auto-assign."""

from __future__ import annotations

from datetime import datetime

import pytest

from staysync.cleaning.models import TaskStatus
from tests._doubles import InMemoryTaskStore

pytestmark = pytest.mark.unit


async def test_assigns_tasks_in_range(client, task_store: InMemoryTaskStore):
    resp = await client.post(
        "/api/cleaning/auto-assign",
        json={"property_id": "prop-1", "from": "2026-03-01", "to": "2026-04-01"},
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data == {
        "assigned": 2,
        "total_tasks": 2,
        "cleaners_used": 2,
        "strategy": "round_robin",
        "message": "Assigned 2 of 2 tasks",
        "skipped_task_ids": [],
    }
    assert task_store.tasks["t1"].assigned_cleaner_id == "c-ana"
    assert task_store.tasks["t2"].assigned_cleaner_id == "c-ben"
    assert task_store.tasks["t2"].status is TaskStatus.ASSIGNED
    assert task_store.queries[0][1:] == (datetime(2026, 3, 1), datetime(2026, 4, 1))


async def test_strategy_can_be_chosen_per_request(client):
    resp = await client.post(
        "/api/cleaning/auto-assign",
        json={
            "property_id": "prop-1",
            "from": "2026-03-01",
            "to": "2026-04-01",
            "strategy": "weighted",
        },
    )
    assert resp.json()["data"]["strategy"] == "weighted"


async def test_empty_range_reports_nothing_to_do(client):
    resp = await client.post(
        "/api/cleaning/auto-assign",
        json={"property_id": "prop-1", "from": "2026-05-01", "to": "2026-06-01"},
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["message"] == "No unassigned tasks in range; nothing to do"


async def test_property_without_cleaners_is_422(client):
    resp = await client.post(
        "/api/cleaning/auto-assign",
        json={"property_id": "prop-2", "from": "2026-03-01", "to": "2026-04-01"},
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "NO_ELIGIBLE_WORKERS"


async def test_inverted_range_is_400(client):
    resp = await client.post(
        "/api/cleaning/auto-assign",
        json={"property_id": "prop-1", "from": "2026-04-01", "to": "2026-03-01"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_missing_dates_fail_validation(client):
    resp = await client.post("/api/cleaning/auto-assign", json={"property_id": "prop-1"})
    assert resp.status_code == 422


async def test_offset_bearing_bounds_are_converted_to_wall_clock(
    client, task_store: InMemoryTaskStore
):
    resp = await client.post(
        "/api/cleaning/auto-assign",
        json={"property_id": "prop-1", "from": "2026-03-10T13:00:00+02:00", "to": "2026-03-12"},
    )

    assert resp.status_code == 200
    assert resp.json()["data"]["total_tasks"] == 1
    assert task_store.queries[0][1:] == (datetime(2026, 3, 10, 11), datetime(2026, 3, 12))


async def test_both_bounds_with_offsets_reach_the_store_naive(
    client, task_store: InMemoryTaskStore
):
    resp = await client.post(
        "/api/cleaning/auto-assign",
        json={
            "property_id": "prop-1",
            "from": "2026-03-10T12:00:00+01:00",
            "to": "2026-03-20T00:00:00Z",
        },
    )

    assert resp.status_code == 200
    start, end = task_store.queries[0][1:]
    assert (start, end) == (datetime(2026, 3, 10, 11), datetime(2026, 3, 20))
    assert start.tzinfo is None and end.tzinfo is None
