"""Pickup task endpoints."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.core.config import Constants
from src.core.errors import UnauthorizedError
from src.core.rate_limiter import RateLimitTier
from src.domain.task import TaskStatus
from src.domain.user import Identity, UserRole
from src.interface.dependencies import general_rate_limit, get_engine, rate_limited
from src.models.service_models import TransitionResult
from src.services.engine import SyncEngine


router = APIRouter(prefix="/api/pickups", tags=["pickups"], dependencies=[Depends(general_rate_limit)])


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AssignTaskRequest(_CamelModel):
    report_id: str = Field(..., min_length=1)
    collector_id: str = Field(..., min_length=1)
    scheduled_date: datetime
    estimated_duration: int = Field(
        default=Constants.DEFAULT_ESTIMATED_DURATION_MINUTES, ge=Constants.MIN_ESTIMATED_DURATION_MINUTES
    )
    notes: str | None = Field(default=None, max_length=Constants.MAX_TASK_NOTES_LENGTH)


class StartTaskRequest(_CamelModel):
    expected_version: int | None = None


class CompleteTaskRequest(_CamelModel):
    completion_notes: str | None = Field(default=None, max_length=Constants.MAX_COMPLETION_NOTES_LENGTH)
    images: list[str] = Field(default_factory=list)
    expected_version: int | None = None


class CancelTaskRequest(_CamelModel):
    reason: str | None = Field(default=None, max_length=Constants.MAX_TASK_NOTES_LENGTH)
    expected_version: int | None = None


class RescheduleTaskRequest(_CamelModel):
    new_date: datetime
    reason: str | None = Field(default=None, max_length=Constants.MAX_TASK_NOTES_LENGTH)
    expected_version: int | None = None


async def _publish(engine: SyncEngine, result: TransitionResult) -> dict[str, Any]:
    await engine.publish(result.event)
    return {"success": True, "data": {"task": result.task.model_dump(mode="json")}}


@router.post("", status_code=status.HTTP_201_CREATED)
async def assign_task(
    body: AssignTaskRequest,
    identity: Identity = Depends(rate_limited(RateLimitTier.WRITE)),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Create a pickup task for a report and push it to the assigned collector."""
    result = await engine.tasks.assign(
        actor=identity,
        report_id=body.report_id,
        collector_id=body.collector_id,
        scheduled_date=body.scheduled_date,
        estimated_duration=body.estimated_duration,
        notes=body.notes,
    )
    return await _publish(engine, result)


@router.get("/my-tasks")
async def my_tasks(
    status_filter: TaskStatus | None = Query(default=None, alias="status"),
    identity: Identity = Depends(rate_limited(RateLimitTier.READ)),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    if identity.role != UserRole.COLLECTOR:
        raise UnauthorizedError("Only collectors have assigned tasks")
    tasks = await engine.tasks.list_tasks_for_collector(identity.user_id, status=status_filter)
    return {"success": True, "data": {"tasks": [task.model_dump(mode="json") for task in tasks]}}


@router.get("/{task_id}")
async def get_task(
    task_id: str,
    identity: Identity = Depends(rate_limited(RateLimitTier.READ)),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    task = await engine.tasks.get_task_for(task_id, identity)
    return {"success": True, "data": {"task": task.model_dump(mode="json")}}


@router.get("/{task_id}/history")
async def get_task_history(
    task_id: str,
    identity: Identity = Depends(rate_limited(RateLimitTier.READ)),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    await engine.tasks.get_task_for(task_id, identity)
    history = await engine.tasks.list_history(task_id)
    return {"success": True, "data": {"history": [change.model_dump(mode="json") for change in history]}}


@router.patch("/{task_id}/start")
async def start_task(
    task_id: str,
    body: StartTaskRequest | None = None,
    identity: Identity = Depends(rate_limited(RateLimitTier.WRITE)),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    body = body or StartTaskRequest()
    result = await engine.tasks.start(task_id=task_id, actor=identity, expected_version=body.expected_version)
    return await _publish(engine, result)


@router.patch("/{task_id}/complete")
async def complete_task(
    task_id: str,
    body: CompleteTaskRequest | None = None,
    identity: Identity = Depends(rate_limited(RateLimitTier.WRITE)),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    body = body or CompleteTaskRequest()
    result = await engine.tasks.complete(
        task_id=task_id,
        actor=identity,
        notes=body.completion_notes,
        images=body.images,
        expected_version=body.expected_version,
    )
    return await _publish(engine, result)


@router.patch("/{task_id}/cancel")
async def cancel_task(
    task_id: str,
    body: CancelTaskRequest | None = None,
    identity: Identity = Depends(rate_limited(RateLimitTier.WRITE)),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    body = body or CancelTaskRequest()
    result = await engine.tasks.cancel(
        task_id=task_id, actor=identity, reason=body.reason, expected_version=body.expected_version
    )
    return await _publish(engine, result)


@router.patch("/{task_id}/reschedule")
async def reschedule_task(
    task_id: str,
    body: RescheduleTaskRequest,
    identity: Identity = Depends(rate_limited(RateLimitTier.WRITE)),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    result = await engine.tasks.reschedule(
        task_id=task_id,
        actor=identity,
        new_date=body.new_date,
        reason=body.reason,
        expected_version=body.expected_version,
    )
    return await _publish(engine, result)
