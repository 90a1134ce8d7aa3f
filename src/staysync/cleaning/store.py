"""asyncpg-backed accessors for cleaning tasks and cleaner assignments."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Protocol

import asyncpg

from staysync.cleaning.models import CleanerAssignment, CleaningTask
from staysync.errors import PersistenceError

logger = logging.getLogger(__name__)

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError)


class CleaningTaskRepository(Protocol):
    async def list_unassigned(
        self, property_id: str, *, start: datetime, end: datetime
    ) -> list[CleaningTask]:
        """``todo`` tasks with no cleaner, ``start <= scheduled_start < end``."""
        ...

    async def assign(self, task_id: str, cleaner_id: str) -> bool:
        """Claim *task_id* for *cleaner_id*; False when the task was taken."""
        ...


class CleanerAssignmentRepository(Protocol):
    async def list_active(self, property_id: str) -> list[CleanerAssignment]:
        """Active assignments ordered by weight desc, then cleaner_id."""
        ...


class CleaningTaskStore:
    def __init__(self, pool: Any) -> None:
        self._pool = pool

    async def list_unassigned(
        self, property_id: str, *, start: datetime, end: datetime
    ) -> list[CleaningTask]:
        try:
            rows = await self._pool.fetch(
                """
                SELECT id, property_id, reservation_id, task_type, scheduled_start,
                       status, assigned_cleaner_id
                FROM cleaning_tasks
                WHERE property_id = $1
                  AND status = 'todo'
                  AND assigned_cleaner_id IS NULL
                  AND scheduled_start >= $2
                  AND scheduled_start < $3
                ORDER BY scheduled_start, id
                """,
                property_id,
                start,
                end,
            )
        except _DB_ERRORS as exc:
            raise PersistenceError(
                f"Failed to list cleaning tasks for {property_id}: {exc}"
            ) from exc
        return [CleaningTask.model_validate(dict(row)) for row in rows]

    async def assign(self, task_id: str, cleaner_id: str) -> bool:
        # The guard makes concurrent runs safe: only one claim can win.
        try:
            status = await self._pool.execute(
                """
                UPDATE cleaning_tasks
                SET assigned_cleaner_id = $2, status = 'assigned', updated_at = now()
                WHERE id = $1 AND status = 'todo' AND assigned_cleaner_id IS NULL
                """,
                task_id,
                cleaner_id,
            )
        except _DB_ERRORS as exc:
            raise PersistenceError(f"Failed to assign task {task_id}: {exc}") from exc
        return status == "UPDATE 1"


class CleanerAssignmentStore:
    def __init__(self, pool: Any) -> None:
        self._pool = pool

    async def list_active(self, property_id: str) -> list[CleanerAssignment]:
        try:
            rows = await self._pool.fetch(
                """
                SELECT property_id, cleaner_id, weight, active
                FROM cleaner_assignments
                WHERE property_id = $1 AND active
                ORDER BY weight DESC, cleaner_id
                """,
                property_id,
            )
        except _DB_ERRORS as exc:
            raise PersistenceError(
                f"Failed to list cleaner assignments for {property_id}: {exc}"
            ) from exc
        return [CleanerAssignment.model_validate(dict(row)) for row in rows]
