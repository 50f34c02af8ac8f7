"""Core API routes: health and schedule listing."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from schedbot import __version__
from schedbot.api.deps import get_registrar, get_store
from schedbot.core.cron.scheduler import CronRegistrar
from schedbot.core.schedule.types import ActionKind, ScheduleRecord
from schedbot.memory.store import BotStore

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    version: str
    scheduler_running: bool
    schedules: dict[str, int]


class ScheduleSummary(BaseModel):
    id: str
    kind: ActionKind
    creator_name: str
    repeat: str
    hour: int
    minute: int
    active: bool
    next_run_at: datetime | None
    last_run_at: datetime | None
    run_count: int
    last_attempt_status: str | None
    last_error: str | None

    @classmethod
    def from_record(cls, record: ScheduleRecord) -> ScheduleSummary:
        return cls(
            id=record.id,
            kind=record.kind,
            creator_name=record.creator_name,
            repeat=record.repeat.label(record.weeks),
            hour=record.hour,
            minute=record.minute,
            active=record.active,
            next_run_at=record.next_run_at,
            last_run_at=record.last_run_at,
            run_count=record.run_count,
            last_attempt_status=record.last_attempt_status,
            last_error=record.last_error,
        )


@router.get("/health", response_model=HealthResponse)
async def health(
    store: BotStore = Depends(get_store),
    registrar: CronRegistrar = Depends(get_registrar),
):
    """Health check."""
    return HealthResponse(
        status="ok",
        version=__version__,
        scheduler_running=registrar.running,
        schedules=store.count_schedules(),
    )


@router.get("/groups/{group_id}/schedules", response_model=list[ScheduleSummary])
async def group_schedules(
    group_id: int,
    kind: ActionKind | None = Query(None),
    store: BotStore = Depends(get_store),
):
    """Active schedules of a group, optionally filtered by action kind."""
    return [ScheduleSummary.from_record(r) for r in store.list_active_for_group(group_id, kind)]
