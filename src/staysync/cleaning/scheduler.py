"""Deterministic auto-assignment of cleaning tasks to eligible cleaners.

Given the same tasks and the same weight-ordered cleaner list, the plan is
always identical. Two strategies are supported:

- ``round_robin``: task *i* goes to ``assignments[i mod n]``. Weight only
  decides the order of the rotation.
- ``weighted``: smooth weighted round-robin. Each cleaner receives a share of
  tasks proportional to its weight, interleaved rather than in runs.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, tzinfo

from staysync.cleaning.models import (
    AssignmentResult,
    AssignmentStrategy,
    CleanerAssignment,
    CleaningTask,
    TaskAssignment,
)
from staysync.cleaning.store import CleanerAssignmentRepository, CleaningTaskRepository
from staysync.config import CleaningConfig
from staysync.errors import NoEligibleWorkersError, PersistenceError

logger = logging.getLogger(__name__)


def order_assignments(assignments: list[CleanerAssignment]) -> list[CleanerAssignment]:
    """Weight descending, ties broken by cleaner id."""
    return sorted(assignments, key=lambda a: (-a.weight, a.cleaner_id))


def order_tasks(tasks: list[CleaningTask]) -> list[CleaningTask]:
    return sorted(tasks, key=lambda t: (t.scheduled_start, t.id))


def round_robin_plan(
    tasks: list[CleaningTask], assignments: list[CleanerAssignment]
) -> list[TaskAssignment]:
    return [
        TaskAssignment(task_id=task.id, cleaner_id=assignments[index % len(assignments)].cleaner_id)
        for index, task in enumerate(tasks)
    ]


def weighted_plan(
    tasks: list[CleaningTask], assignments: list[CleanerAssignment]
) -> list[TaskAssignment]:
    """Smooth weighted round-robin over *assignments*.

    Every step adds each cleaner's weight to its running score, picks the
    highest score (earliest in the list on ties) and subtracts the total
    weight from the winner. All-zero weights degrade to plain rotation.
    """
    weights = [a.weight for a in assignments]
    total = sum(weights)
    if total == 0:
        return round_robin_plan(tasks, assignments)

    scores = [0] * len(assignments)
    plan: list[TaskAssignment] = []
    for task in tasks:
        for index, weight in enumerate(weights):
            scores[index] += weight
        winner = max(range(len(scores)), key=lambda i: (scores[i], -i))
        scores[winner] -= total
        plan.append(TaskAssignment(task_id=task.id, cleaner_id=assignments[winner].cleaner_id))
    return plan


def _as_wall_clock(value: date | datetime, assumed_tz: tzinfo | None) -> datetime:
    """Naive wall-clock datetime; aware values are converted into *assumed_tz*."""
    if not isinstance(value, datetime):
        return datetime.combine(value, time.min)
    if value.tzinfo is None:
        return value
    return value.astimezone(assumed_tz).replace(tzinfo=None)


class AssignmentScheduler:
    """Assigns a property's unassigned tasks in a date range."""

    def __init__(
        self,
        *,
        tasks: CleaningTaskRepository,
        assignments: CleanerAssignmentRepository,
        strategy: AssignmentStrategy | str = AssignmentStrategy.ROUND_ROBIN,
        assumed_tz: tzinfo | None = None,
    ) -> None:
        self._tasks = tasks
        self._assignments = assignments
        self._strategy = AssignmentStrategy(strategy)
        self._assumed_tz = assumed_tz

    @classmethod
    def from_config(
        cls,
        cleaning: CleaningConfig,
        *,
        tasks: CleaningTaskRepository,
        assignments: CleanerAssignmentRepository,
        assumed_tz: tzinfo | None = None,
    ) -> AssignmentScheduler:
        return cls(
            tasks=tasks,
            assignments=assignments,
            strategy=cleaning.strategy,
            assumed_tz=assumed_tz,
        )

    def plan(
        self,
        tasks: list[CleaningTask],
        assignments: list[CleanerAssignment],
        strategy: AssignmentStrategy | None = None,
    ) -> list[TaskAssignment]:
        strategy = strategy or self._strategy
        if strategy is AssignmentStrategy.WEIGHTED:
            return weighted_plan(tasks, assignments)
        return round_robin_plan(tasks, assignments)

    async def auto_assign(
        self,
        property_id: str,
        from_date: date | datetime,
        to_date: date | datetime,
        *,
        strategy: AssignmentStrategy | str | None = None,
    ) -> AssignmentResult:
        """Assign every unassigned task with ``from_date <= scheduled_start < to_date``.

        Offset-bearing bounds are converted to wall-clock time in the assumed
        zone.

        Raises
        ------
        ValueError
            If the range is empty or inverted.
        NoEligibleWorkersError
            If the property has no active cleaner assignment.
        """
        start = _as_wall_clock(from_date, self._assumed_tz)
        end = _as_wall_clock(to_date, self._assumed_tz)
        if start >= end:
            raise ValueError(
                f"Invalid range: from ({start.isoformat()}) must be before to ({end.isoformat()})"
            )
        effective = AssignmentStrategy(strategy) if strategy is not None else self._strategy

        assignments = order_assignments(await self._assignments.list_active(property_id))
        if not assignments:
            raise NoEligibleWorkersError(
                "No active cleaners assigned to this property",
                details={"property_id": property_id},
            )

        tasks = order_tasks(await self._tasks.list_unassigned(property_id, start=start, end=end))
        result = AssignmentResult(
            total_tasks=len(tasks),
            cleaners_used=len(assignments),
            strategy=effective,
        )
        if not tasks:
            logger.info("Auto-assign property=%s: no unassigned tasks in range", property_id)
            return result

        for planned in self.plan(tasks, assignments, effective):
            try:
                claimed = await self._tasks.assign(planned.task_id, planned.cleaner_id)
            except PersistenceError as exc:
                logger.warning("Failed to assign task %s: %s", planned.task_id, exc)
                result.skipped_task_ids.append(planned.task_id)
                continue
            if not claimed:
                logger.info("Task %s was assigned concurrently; skipping", planned.task_id)
                result.skipped_task_ids.append(planned.task_id)
                continue
            result.assignments.append(planned)
            result.assigned_count += 1

        logger.info(
            "Auto-assign property=%s strategy=%s assigned=%d/%d cleaners=%d",
            property_id,
            effective.value,
            result.assigned_count,
            result.total_tasks,
            result.cleaners_used,
        )
        return result
