"""Schedule management endpoints."""

from datetime import UTC, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel

from prnotify.api.deps import get_current_user, get_execution_log, get_schedule_store
from prnotify.core.logging import get_logger
from prnotify.db.stores import ExecutionLogStore, ScheduleStore
from prnotify.models.schedule import (
    EscalationConfig,
    ExecutionLog,
    PRFilters,
    Schedule,
    ScheduleInput,
    ScheduleValidationError,
)
from prnotify.notifications.filters import describe_filters
from prnotify.scheduling.cron import convert_cron_from_utc, describe_next_runs
from prnotify.scheduling.validation import build_schedule_fields

logger = get_logger(__name__)
router = APIRouter()


class ScheduleResponse(BaseModel):
    """A schedule as shown to its owner: cron in the owner's timezone."""

    id: str
    name: str
    cron_expression: str
    cron_expression_utc: str
    timezone: str
    git_provider_type: str
    git_provider_id: str
    repositories: list[str]
    messaging_provider_type: str
    messaging_provider_id: str
    messaging_channel_id: str
    escalation: Optional[EscalationConfig] = None
    pr_filters: Optional[PRFilters] = None
    filters_summary: str
    send_when_empty: bool
    is_active: bool
    last_executed_at: Optional[datetime] = None
    next_runs: list[datetime]

    @classmethod
    def from_schedule(cls, schedule: Schedule, now: Optional[datetime] = None) -> "ScheduleResponse":
        now = now or datetime.now(UTC)
        return cls(
            **schedule.model_dump(
                include={
                    "id",
                    "name",
                    "timezone",
                    "git_provider_type",
                    "git_provider_id",
                    "repositories",
                    "messaging_provider_type",
                    "messaging_provider_id",
                    "messaging_channel_id",
                    "send_when_empty",
                    "is_active",
                    "last_executed_at",
                }
            ),
            escalation=schedule.escalation,
            pr_filters=schedule.pr_filters,
            cron_expression=convert_cron_from_utc(schedule.cron_expression, schedule.timezone),
            cron_expression_utc=schedule.cron_expression,
            filters_summary=describe_filters(schedule.pr_filters),
            next_runs=describe_next_runs(schedule.cron_expression, now) if schedule.is_active else [],
        )


def _validated_fields(data: ScheduleInput) -> dict:
    try:
        return build_schedule_fields(data)
    except ScheduleValidationError as e:
        raise HTTPException(status_code=422, detail={"errors": e.errors})


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="Schedule not found")


@router.get("/schedules", response_model=list[ScheduleResponse])
async def list_schedules(
    user_id: str = Depends(get_current_user),
    store: ScheduleStore = Depends(get_schedule_store),
):
    schedules = await store.list_schedules(user_id)
    return [ScheduleResponse.from_schedule(schedule) for schedule in schedules]


@router.post("/schedules", response_model=ScheduleResponse, status_code=201)
async def create_schedule(
    data: ScheduleInput,
    user_id: str = Depends(get_current_user),
    store: ScheduleStore = Depends(get_schedule_store),
):
    """Create a schedule. The cron expression is given in the schedule's timezone."""
    fields = _validated_fields(data)
    schedule = await store.create_schedule(user_id, fields)
    logger.info("Schedule saved", schedule_id=schedule.id, cron_utc=schedule.cron_expression)
    return ScheduleResponse.from_schedule(schedule)


@router.get("/schedules/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(
    schedule_id: str,
    user_id: str = Depends(get_current_user),
    store: ScheduleStore = Depends(get_schedule_store),
):
    schedule = await store.get_schedule(user_id, schedule_id)
    if schedule is None:
        raise _not_found()
    return ScheduleResponse.from_schedule(schedule)


@router.put("/schedules/{schedule_id}", response_model=ScheduleResponse)
async def update_schedule(
    schedule_id: str,
    data: ScheduleInput,
    user_id: str = Depends(get_current_user),
    store: ScheduleStore = Depends(get_schedule_store),
):
    fields = _validated_fields(data)
    schedule = await store.update_schedule(user_id, schedule_id, fields)
    if schedule is None:
        raise _not_found()
    logger.info("Schedule updated", schedule_id=schedule.id)
    return ScheduleResponse.from_schedule(schedule)


@router.delete("/schedules/{schedule_id}", status_code=204)
async def delete_schedule(
    schedule_id: str,
    user_id: str = Depends(get_current_user),
    store: ScheduleStore = Depends(get_schedule_store),
):
    if not await store.delete_schedule(user_id, schedule_id):
        raise _not_found()
    logger.info("Schedule deleted", schedule_id=schedule_id)
    return Response(status_code=204)


@router.post("/schedules/{schedule_id}/toggle", response_model=ScheduleResponse)
async def toggle_schedule(
    schedule_id: str,
    user_id: str = Depends(get_current_user),
    store: ScheduleStore = Depends(get_schedule_store),
):
    """Pause or resume a schedule."""
    schedule = await store.toggle_schedule(user_id, schedule_id)
    if schedule is None:
        raise _not_found()
    logger.info("Schedule toggled", schedule_id=schedule.id, is_active=schedule.is_active)
    return ScheduleResponse.from_schedule(schedule)


@router.get("/schedules/{schedule_id}/executions", response_model=list[ExecutionLog])
async def list_executions(
    schedule_id: str,
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user),
    store: ScheduleStore = Depends(get_schedule_store),
    execution_log: ExecutionLogStore = Depends(get_execution_log),
):
    """Recent runs of a schedule, newest first."""
    if await store.get_schedule(user_id, schedule_id) is None:
        raise _not_found()
    return await execution_log.list_executions(schedule_id, limit=limit)
