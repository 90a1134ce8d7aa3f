"""Cleaning task and cleaner assignment models."""

from __future__ import annotations

import enum
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class TaskStatus(enum.StrEnum):
    TODO = "todo"
    ASSIGNED = "assigned"
    DONE = "done"


class AssignmentStrategy(enum.StrEnum):
    """How tasks are distributed over the weight-ordered cleaner list."""

    ROUND_ROBIN = "round_robin"
    WEIGHTED = "weighted"


class CleaningTask(BaseModel):
    """A scheduled unit of turnover work."""

    model_config = ConfigDict(extra="ignore")

    id: str
    property_id: str
    reservation_id: str | None = None
    task_type: str = "turnover"
    scheduled_start: datetime
    status: TaskStatus = TaskStatus.TODO
    assigned_cleaner_id: str | None = None


class CleanerAssignment(BaseModel):
    """Eligibility of one cleaner for one property, with a priority weight."""

    model_config = ConfigDict(extra="ignore")

    property_id: str
    cleaner_id: str
    weight: int = Field(default=1, ge=0)
    active: bool = True


class TaskAssignment(BaseModel):
    model_config = ConfigDict(extra="forbid")

    task_id: str
    cleaner_id: str


class AssignmentResult(BaseModel):
    """Outcome of one auto-assignment run.

    ``assigned_count`` counts successful writes only; tasks that failed or
    were claimed concurrently are listed in ``skipped_task_ids``.
    """

    model_config = ConfigDict(extra="forbid")

    assigned_count: int = 0
    total_tasks: int = 0
    cleaners_used: int = 0
    strategy: AssignmentStrategy = AssignmentStrategy.ROUND_ROBIN
    assignments: list[TaskAssignment] = Field(default_factory=list)
    skipped_task_ids: list[str] = Field(default_factory=list)

    @property
    def message(self) -> str:
        if self.total_tasks == 0:
            return "No unassigned tasks in range; nothing to do"
        return f"Assigned {self.assigned_count} of {self.total_tasks} tasks"
