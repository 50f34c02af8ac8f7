"""Per-record controls behind the list commands: pause, resume, delete, run now."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Callable

from loguru import logger

from schedbot.core.config.schema import Config
from schedbot.core.errors import CapExceededError, RegistrationError, ValidationError
from schedbot.core.schedule.intervals import next_run_for
from schedbot.core.schedule.types import ActionKind, RepeatPolicy, ScheduleRecord, utcnow
from schedbot.memory.store import BotStore

if TYPE_CHECKING:
    from schedbot.core.cron.scheduler import CronRegistrar


class ScheduleControls:
    def __init__(
        self,
        store: BotStore,
        registrar: CronRegistrar,
        config: Config,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.registrar = registrar
        self.config = config
        self.clock = clock

    def list_for_group(self, group_id: int, kind: ActionKind | None = None) -> list[ScheduleRecord]:
        return self.store.list_active_for_group(group_id, kind)

    def toggle_active(self, schedule_id: str, requester_id: int) -> ScheduleRecord:
        """Pause an active record or resume a paused one."""
        record = self._owned(schedule_id, requester_id)
        if record.active:
            return self._pause(record)
        return self._resume(record)

    def pause(self, schedule_id: str, requester_id: int) -> ScheduleRecord:
        """Pause only; a record that is already inactive is left as it is."""
        record = self._owned(schedule_id, requester_id)
        if not record.active:
            return record
        return self._pause(record)

    def delete(self, schedule_id: str, requester_id: int) -> ScheduleRecord:
        """Soft-delete: the record stays in the store, inactive, unbound and marked deleted."""
        record = self._owned(schedule_id, requester_id)
        self._unbind(record)
        record.active = False
        record.deleted = True
        self.store.put_schedule(record)
        logger.info(f"[sched:{record.id}] deleted")
        return record

    def run_now(self, schedule_id: str, requester_id: int) -> ScheduleRecord:
        """Make the record due so the next tick executes it."""
        record = self._owned(schedule_id, requester_id)
        record.next_run_at = self.clock()
        self.store.put_schedule(record)
        logger.info(f"[sched:{record.id}] queued to run now")
        return record

    def close(self, schedule_id: str, requester_id: int) -> ScheduleRecord:
        """Creator check for dismissing a list entry; no state change."""
        return self._owned(schedule_id, requester_id)

    def _pause(self, record: ScheduleRecord) -> ScheduleRecord:
        self._unbind(record)
        record.active = False
        self.store.put_schedule(record)
        logger.info(f"[sched:{record.id}] paused")
        return record

    def _resume(self, record: ScheduleRecord) -> ScheduleRecord:
        if record.repeat is RepeatPolicy.NONE and record.run_count > 0:
            raise ValidationError("ℹ️ This one-time schedule has already run")

        cap = self.config.cap_for(record.kind.value)
        active = self.store.list_active_for_group(record.group_id, record.kind)
        if len(active) >= cap:
            raise CapExceededError(record.kind.value, cap)

        record.active = True
        now = self.clock()
        if record.next_run_at is None or record.next_run_at < now:
            record.next_run_at = next_run_for(record, now)
        self._bind(record)
        self.store.put_schedule(record)
        logger.info(f"[sched:{record.id}] resumed")
        return record

    def _owned(self, schedule_id: str, requester_id: int) -> ScheduleRecord:
        record = self.store.get_schedule(schedule_id)
        if record is None or record.deleted:
            raise ValidationError("ℹ️ Schedule not found")
        if record.creator_id != requester_id:
            raise ValidationError("❌ Only the creator can manage this schedule")
        return record

    def _bind(self, record: ScheduleRecord) -> None:
        try:
            record.timer_handle = self.registrar.register(record)
        except RegistrationError as e:
            logger.error(f"[sched:{record.id}] timer registration failed: {e}")
            record.timer_handle = None

    def _unbind(self, record: ScheduleRecord) -> None:
        if record.timer_handle:
            self.registrar.cancel(record.timer_handle)
        record.timer_handle = None
