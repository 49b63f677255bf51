"""Pydantic models for service layer return types.

These models provide type safety at service boundaries, converting database
dictionaries into typed objects with validation.
"""

from pydantic import BaseModel, Field

from src.domain.chat import ChatMessage
from src.domain.events import DomainEvent
from src.domain.notification import Notification
from src.domain.task import PickupTask


class TransitionResult(BaseModel):
    """A committed task mutation and the single event it produced."""

    task: PickupTask
    event: DomainEvent


class Pagination(BaseModel):
    """Pagination metadata for list endpoints."""

    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, *, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, pages=(total + limit - 1) // limit if limit else 0)


class NotificationPage(BaseModel):
    """One page of a user's notifications."""

    notifications: list[Notification]
    pagination: Pagination
    unread_count: int


class MessagePage(BaseModel):
    """One page of a room's chat history, oldest first."""

    room: str
    messages: list[ChatMessage]
    pagination: Pagination


class NotificationStats(BaseModel):
    """Aggregate notification counters for admins."""

    total: int
    unread: int
    by_type: dict[str, int] = Field(default_factory=dict)
    unread_by_type: dict[str, int] = Field(default_factory=dict)


class DispatchReport(BaseModel):
    """Outcome of dispatching one event."""

    event: str
    rooms: list[str]
    delivered: int
    failed: int = 0


class FanoutResult(BaseModel):
    """Outcome of projecting and persisting one event's notifications."""

    created: list[Notification] = Field(default_factory=list)
    duplicates: int = 0
    failed: int = 0


class RateLimitDecision(BaseModel):
    """Outcome of counting one request against a tier."""

    tier: str
    count: int
    limit: int
    remaining: int
    reset_in_seconds: int
