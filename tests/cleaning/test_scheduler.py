"""Unit tests for cleaning task auto-assignment."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from staysync.cleaning.models import (
    AssignmentStrategy,
    CleanerAssignment,
    CleaningTask,
    TaskStatus,
)
from staysync.cleaning.scheduler import (
    AssignmentScheduler,
    order_assignments,
    round_robin_plan,
    weighted_plan,
)
from staysync.config import CleaningConfig
from staysync.errors import NoEligibleWorkersError
from tests._doubles import InMemoryAssignmentStore, InMemoryTaskStore

pytestmark = pytest.mark.unit


def _task(task_id: str, day: int, hour: int = 11, **kwargs) -> CleaningTask:
    return CleaningTask(
        id=task_id,
        property_id="prop-1",
        scheduled_start=datetime(2026, 3, day, hour),
        **kwargs,
    )


def _cleaner(cleaner_id: str, weight: int = 1, **kwargs) -> CleanerAssignment:
    return CleanerAssignment(property_id="prop-1", cleaner_id=cleaner_id, weight=weight, **kwargs)


def _scheduler(
    tasks: list[CleaningTask],
    cleaners: list[CleanerAssignment],
    strategy: AssignmentStrategy = AssignmentStrategy.ROUND_ROBIN,
) -> tuple[AssignmentScheduler, InMemoryTaskStore]:
    task_store = InMemoryTaskStore(tasks)
    scheduler = AssignmentScheduler(
        tasks=task_store,
        assignments=InMemoryAssignmentStore(cleaners),
        strategy=strategy,
    )
    return scheduler, task_store


class TestPlanning:
    def test_assignments_order_by_weight_then_id(self):
        ordered = order_assignments([_cleaner("c", 1), _cleaner("b", 5), _cleaner("a", 1)])
        assert [a.cleaner_id for a in ordered] == ["b", "a", "c"]

    def test_round_robin_cycles(self):
        tasks = [_task(f"t{i}", 10 + i) for i in range(5)]
        plan = round_robin_plan(tasks, [_cleaner("a"), _cleaner("b")])
        assert [p.cleaner_id for p in plan] == ["a", "b", "a", "b", "a"]

    def test_weighted_plan_is_proportional_and_interleaved(self):
        tasks = [_task(f"t{i}", 10 + i) for i in range(6)]
        plan = weighted_plan(tasks, [_cleaner("a", 2), _cleaner("b", 1)])
        assert [p.cleaner_id for p in plan] == ["a", "b", "a", "a", "b", "a"]

    def test_weighted_plan_with_zero_weights_rotates(self):
        tasks = [_task(f"t{i}", 10 + i) for i in range(3)]
        plan = weighted_plan(tasks, [_cleaner("a", 0), _cleaner("b", 0)])
        assert [p.cleaner_id for p in plan] == ["a", "b", "a"]

    def test_zero_weight_cleaner_never_wins_weighted(self):
        tasks = [_task(f"t{i}", 10 + i) for i in range(4)]
        plan = weighted_plan(tasks, [_cleaner("a", 1), _cleaner("b", 0)])
        assert {p.cleaner_id for p in plan} == {"a"}


class TestAutoAssign:
    async def test_round_robin_in_schedule_order(self):
        tasks = [_task("t3", 12), _task("t1", 10), _task("t2", 11)]
        scheduler, store = _scheduler(tasks, [_cleaner("b", 1), _cleaner("a", 3)])

        result = await scheduler.auto_assign("prop-1", date(2026, 3, 1), date(2026, 4, 1))

        assert result.assigned_count == 3
        assert result.total_tasks == 3
        assert result.cleaners_used == 2
        assert [(p.task_id, p.cleaner_id) for p in result.assignments] == [
            ("t1", "a"),
            ("t2", "b"),
            ("t3", "a"),
        ]
        assert store.tasks["t1"].status is TaskStatus.ASSIGNED
        assert store.tasks["t1"].assigned_cleaner_id == "a"
        assert result.message == "Assigned 3 of 3 tasks"

    async def test_is_deterministic(self):
        tasks = [_task(f"t{i}", 10 + i) for i in range(4)]
        cleaners = [_cleaner("a"), _cleaner("b")]
        first, _ = _scheduler(tasks, cleaners)
        second, _ = _scheduler(tasks, cleaners)
        a = await first.auto_assign("prop-1", date(2026, 3, 1), date(2026, 4, 1))
        b = await second.auto_assign("prop-1", date(2026, 3, 1), date(2026, 4, 1))
        assert a.assignments == b.assignments

    async def test_range_end_is_exclusive_and_dates_mean_midnight(self):
        tasks = [_task("in", 10, 0), _task("edge", 12, 0)]
        scheduler, store = _scheduler(tasks, [_cleaner("a")])

        result = await scheduler.auto_assign("prop-1", date(2026, 3, 10), date(2026, 3, 12))

        assert [p.task_id for p in result.assignments] == ["in"]
        assert store.queries == [("prop-1", datetime(2026, 3, 10), datetime(2026, 3, 12))]

    async def test_offset_bounds_are_converted_to_assumed_zone(self):
        store = InMemoryTaskStore([_task("early", 1, 5), _task("before", 1, 4)])
        scheduler = AssignmentScheduler(
            tasks=store,
            assignments=InMemoryAssignmentStore([_cleaner("a")]),
            assumed_tz=ZoneInfo("Europe/Rome"),
        )
        # 06:00+02:00 is 05:00 in Rome, which is UTC+1 before DST starts.
        start = datetime(2026, 3, 1, 6, tzinfo=timezone(timedelta(hours=2)))

        result = await scheduler.auto_assign("prop-1", start, date(2026, 3, 8))

        assert [p.task_id for p in result.assignments] == ["early"]
        assert store.queries == [("prop-1", datetime(2026, 3, 1, 5), datetime(2026, 3, 8))]

    async def test_already_assigned_or_done_tasks_are_ignored(self):
        tasks = [
            _task("done", 10, status=TaskStatus.DONE),
            _task("taken", 11, status=TaskStatus.ASSIGNED, assigned_cleaner_id="z"),
            _task("open", 12),
        ]
        scheduler, store = _scheduler(tasks, [_cleaner("a")])

        result = await scheduler.auto_assign("prop-1", date(2026, 3, 1), date(2026, 4, 1))

        assert result.total_tasks == 1
        assert store.tasks["taken"].assigned_cleaner_id == "z"

    async def test_no_tasks_is_not_an_error(self):
        scheduler, _ = _scheduler([], [_cleaner("a")])
        result = await scheduler.auto_assign("prop-1", date(2026, 3, 1), date(2026, 4, 1))
        assert result.assigned_count == 0
        assert result.message == "No unassigned tasks in range; nothing to do"

    async def test_no_active_cleaners_raises(self):
        scheduler, store = _scheduler([_task("t1", 10)], [_cleaner("a", active=False)])
        with pytest.raises(NoEligibleWorkersError) as exc_info:
            await scheduler.auto_assign("prop-1", date(2026, 3, 1), date(2026, 4, 1))
        assert exc_info.value.code == "NO_ELIGIBLE_WORKERS"
        assert store.tasks["t1"].assigned_cleaner_id is None

    @pytest.mark.parametrize(
        ("start", "end"),
        [(date(2026, 3, 2), date(2026, 3, 1)), (date(2026, 3, 1), date(2026, 3, 1))],
    )
    async def test_invalid_range_raises(self, start, end):
        scheduler, _ = _scheduler([], [_cleaner("a")])
        with pytest.raises(ValueError, match="Invalid range"):
            await scheduler.auto_assign("prop-1", start, end)

    async def test_failed_write_is_skipped_and_others_proceed(self):
        tasks = [_task("t1", 10), _task("t2", 11), _task("t3", 12)]
        scheduler, store = _scheduler(tasks, [_cleaner("a")])
        store.fail_ids.add("t2")

        result = await scheduler.auto_assign("prop-1", date(2026, 3, 1), date(2026, 4, 1))

        assert result.assigned_count == 2
        assert result.total_tasks == 3
        assert result.skipped_task_ids == ["t2"]
        assert result.message == "Assigned 2 of 3 tasks"

    async def test_concurrently_claimed_task_is_skipped(self):
        tasks = [_task("t1", 10), _task("t2", 11)]
        scheduler, store = _scheduler(tasks, [_cleaner("a")])
        original_assign = store.assign

        async def _racing_assign(task_id: str, cleaner_id: str) -> bool:
            if task_id == "t1":
                store.tasks["t1"] = store.tasks["t1"].model_copy(
                    update={"assigned_cleaner_id": "other", "status": TaskStatus.ASSIGNED}
                )
            return await original_assign(task_id, cleaner_id)

        store.assign = _racing_assign

        result = await scheduler.auto_assign("prop-1", date(2026, 3, 1), date(2026, 4, 1))

        assert result.assigned_count == 1
        assert result.skipped_task_ids == ["t1"]
        assert store.tasks["t1"].assigned_cleaner_id == "other"

    async def test_strategy_override_and_config(self):
        tasks = [_task(f"t{i}", 10 + i) for i in range(3)]
        scheduler = AssignmentScheduler.from_config(
            CleaningConfig(strategy="weighted"),
            tasks=InMemoryTaskStore(tasks),
            assignments=InMemoryAssignmentStore([_cleaner("a", 2), _cleaner("b", 1)]),
        )

        weighted = await scheduler.auto_assign("prop-1", date(2026, 3, 1), date(2026, 4, 1))

        assert weighted.strategy is AssignmentStrategy.WEIGHTED
        assert [p.cleaner_id for p in weighted.assignments] == ["a", "b", "a"]

    async def test_strategy_override_per_call(self):
        tasks = [_task(f"t{i}", 10 + i) for i in range(3)]
        scheduler, _ = _scheduler(tasks, [_cleaner("a", 2), _cleaner("b", 1)])
        result = await scheduler.auto_assign(
            "prop-1", date(2026, 3, 1), date(2026, 4, 1), strategy="weighted"
        )
        assert result.strategy is AssignmentStrategy.WEIGHTED
        assert [p.cleaner_id for p in result.assignments] == ["a", "b", "a"]

    async def test_unknown_strategy_is_rejected(self):
        scheduler, _ = _scheduler([], [_cleaner("a")])
        with pytest.raises(ValueError):
            await scheduler.auto_assign(
                "prop-1", date(2026, 3, 1), date(2026, 4, 1), strategy="random"
            )
