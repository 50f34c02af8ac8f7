"""CronRegistrar + RecoveryBootstrapper: APScheduler timers for schedule records."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from schedbot.core.errors import RegistrationError, SchedbotError
from schedbot.core.schedule.intervals import first_run_at
from schedbot.core.schedule.types import ScheduleRecord, utcnow
from schedbot.memory.store import BotStore

if TYPE_CHECKING:
    from schedbot.core.cron.runner import ExecutionCoordinator


class CronRegistrar:
    """Owns the process-wide scheduler and binds one minute timer per record.

    A timer only carries the schedule id; the coordinator re-reads the
    record on every fire. Handles are opaque job ids.
    """

    def __init__(self, coordinator: ExecutionCoordinator):
        self.coordinator = coordinator
        self._scheduler = AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1},
            timezone=timezone.utc,
        )
        self._handles: dict[str, str] = {}

    def register(self, record: ScheduleRecord) -> str:
        """Bind a timer for ``record``, replacing any timer it already has."""
        previous = self._handles.get(record.id) or record.timer_handle
        if previous:
            self.cancel(previous)

        handle = str(uuid.uuid4())
        try:
            self._scheduler.add_job(
                self.coordinator.tick,
                trigger=CronTrigger(second=0, timezone=timezone.utc),
                id=handle,
                args=[record.id],
                replace_existing=True,
            )
        except Exception as e:
            raise RegistrationError(f"Failed to register schedule {record.id}: {e}") from e
        self._handles[record.id] = handle
        logger.debug(f"[sched:{record.id}] timer bound ({handle})")
        return handle

    def cancel(self, handle: str) -> bool:
        """Remove a timer. Returns False if no such timer is bound."""
        for schedule_id, bound in list(self._handles.items()):
            if bound == handle:
                del self._handles[schedule_id]
        try:
            self._scheduler.remove_job(handle)
        except JobLookupError:
            return False
        return True

    def handle_for(self, schedule_id: str) -> str | None:
        return self._handles.get(schedule_id)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    async def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info(f"CronRegistrar started with {len(self._handles)} timers")

    async def stop(self) -> None:
        """Shutdown the scheduler; in-flight ticks are not interrupted."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("CronRegistrar stopped")


class RecoveryBootstrapper:
    """Rebinds timers for every active record after a restart."""

    def __init__(
        self,
        store: BotStore,
        registrar: CronRegistrar,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.registrar = registrar
        self.clock = clock

    def recover(self) -> int:
        """Register all active records. Returns how many were bound."""
        now = self.clock()
        bound = 0
        for record in self.store.list_schedules():
            if not record.active:
                continue
            try:
                if record.next_run_at is None:
                    record.next_run_at = first_run_at(record, now)
                record.timer_handle = self.registrar.register(record)
                self.store.put_schedule(record)
            except SchedbotError as e:
                logger.error(f"[sched:{record.id}] recovery failed: {e}")
                continue
            bound += 1
        logger.info(f"Recovered {bound} scheduled records")
        return bound
