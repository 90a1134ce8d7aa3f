"""Request/response models for the cleaning auto-assignment endpoint."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from staysync.cleaning.models import AssignmentResult, AssignmentStrategy


class AutoAssignRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    property_id: str = Field(min_length=1)
    from_date: date | datetime = Field(alias="from")
    to_date: date | datetime = Field(alias="to")
    strategy: AssignmentStrategy | None = None


class AutoAssignResponse(BaseModel):
    assigned: int
    total_tasks: int
    cleaners_used: int
    strategy: AssignmentStrategy
    message: str
    skipped_task_ids: list[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: AssignmentResult) -> AutoAssignResponse:
        return cls(
            assigned=result.assigned_count,
            total_tasks=result.total_tasks,
            cleaners_used=result.cleaners_used,
            strategy=result.strategy,
            message=result.message,
            skipped_task_ids=list(result.skipped_task_ids),
        )
