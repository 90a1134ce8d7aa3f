"""Unit tests for the asyncpg-backed cleaning stores (pool is mocked)."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from staysync.cleaning.models import TaskStatus
from staysync.cleaning.store import CleanerAssignmentStore, CleaningTaskStore
from staysync.errors import PersistenceError

pytestmark = pytest.mark.unit


@pytest.fixture
def pool() -> MagicMock:
    mock = MagicMock()
    mock.fetch = AsyncMock(return_value=[])
    mock.execute = AsyncMock(return_value="UPDATE 1")
    return mock


class TestCleaningTaskStore:
    async def test_list_unassigned_uses_half_open_range(self, pool):
        pool.fetch.return_value = [
            {
                "id": "t1",
                "property_id": "prop-1",
                "reservation_id": "res-1",
                "task_type": "turnover",
                "scheduled_start": datetime(2026, 3, 10, 11),
                "status": "todo",
                "assigned_cleaner_id": None,
            }
        ]

        tasks = await CleaningTaskStore(pool).list_unassigned(
            "prop-1", start=datetime(2026, 3, 1), end=datetime(2026, 4, 1)
        )

        sql, *params = pool.fetch.await_args.args
        assert "scheduled_start >= $2" in sql
        assert "scheduled_start < $3" in sql
        assert "assigned_cleaner_id IS NULL" in sql
        assert params == ["prop-1", datetime(2026, 3, 1), datetime(2026, 4, 1)]
        assert tasks[0].status is TaskStatus.TODO

    async def test_assign_succeeds_when_one_row_updated(self, pool):
        assert await CleaningTaskStore(pool).assign("t1", "c1") is True
        sql = pool.execute.await_args.args[0]
        assert "status = 'todo' AND assigned_cleaner_id IS NULL" in sql

    async def test_assign_reports_lost_race(self, pool):
        pool.execute.return_value = "UPDATE 0"
        assert await CleaningTaskStore(pool).assign("t1", "c1") is False

    async def test_assign_failure_is_wrapped(self, pool):
        pool.execute.side_effect = asyncpg.PostgresError("connection lost")
        with pytest.raises(PersistenceError, match="t1"):
            await CleaningTaskStore(pool).assign("t1", "c1")


class TestCleanerAssignmentStore:
    async def test_list_active_orders_by_weight(self, pool):
        pool.fetch.return_value = [
            {"property_id": "prop-1", "cleaner_id": "c2", "weight": 5, "active": True},
            {"property_id": "prop-1", "cleaner_id": "c1", "weight": 1, "active": True},
        ]
        assignments = await CleanerAssignmentStore(pool).list_active("prop-1")
        assert "ORDER BY weight DESC, cleaner_id" in pool.fetch.await_args.args[0]
        assert [a.cleaner_id for a in assignments] == ["c2", "c1"]
