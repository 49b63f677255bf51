"""Pickup task domain models, enums and the status transition table."""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

from src.core.config import Constants


class TaskStatus(StrEnum):
    """Pickup task lifecycle state."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


# Allowed edges of the pickup state machine
TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.SCHEDULED: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED, TaskStatus.RESCHEDULED}),
    TaskStatus.RESCHEDULED: frozenset({TaskStatus.SCHEDULED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({TaskStatus.SCHEDULED, TaskStatus.IN_PROGRESS, TaskStatus.RESCHEDULED})


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    """Return True if ``current -> target`` is an edge of the state machine."""
    return target in TASK_TRANSITIONS[current]


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class ReportStatus(StrEnum):
    """Waste report status mirrored from its pickup task."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ReportSummary(BaseModel):
    """The slice of a waste report the engine needs."""

    id: str
    resident_id: str
    waste_type: str = "general"
    address: str = ""
    latitude: float | None = None
    longitude: float | None = None
    status: ReportStatus = ReportStatus.PENDING


class PickupTask(BaseModel):
    """Pickup task data transfer object."""

    id: str = Field(..., description="Unique task ID from database")
    report_id: str = Field(..., description="Waste report this pickup serves")
    collector_id: str = Field(..., description="Assigned collector user ID")
    status: TaskStatus = Field(default=TaskStatus.SCHEDULED, description="Current lifecycle state")
    scheduled_date: datetime = Field(..., description="Planned pickup time")
    estimated_duration: int = Field(
        default=Constants.DEFAULT_ESTIMATED_DURATION_MINUTES,
        ge=Constants.MIN_ESTIMATED_DURATION_MINUTES,
        description="Estimated duration in minutes",
    )
    actual_start_time: datetime | None = Field(default=None, description="Set when the pickup starts")
    actual_end_time: datetime | None = Field(default=None, description="Set when the pickup completes")
    notes: str | None = Field(default=None, max_length=Constants.MAX_TASK_NOTES_LENGTH)
    completion_notes: str | None = Field(default=None, max_length=Constants.MAX_COMPLETION_NOTES_LENGTH)
    images: list[str] = Field(default_factory=list, description="Completion photo URIs")
    version: int = Field(default=1, description="Optimistic concurrency token")
    created: datetime | None = None
    updated: datetime | None = None

    @field_validator("scheduled_date", "actual_start_time", "actual_end_time", "created", "updated")
    @classmethod
    def normalize_timezone(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class TaskStatusChange(BaseModel):
    """One committed transition in a task's status history."""

    id: str
    task_id: str
    status: TaskStatus
    previous_status: TaskStatus | None = None
    actor_id: str
    note: str | None = None
    occurred_at: datetime
