"""ExecutionCoordinator: one tick of one schedule: check, lease, execute, reschedule."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from loguru import logger

from schedbot.core.actions.base import ActionExecutor
from schedbot.core.config.schema import Config
from schedbot.core.cron.notifier import Notifier
from schedbot.core.errors import ExternalServiceError, SchedbotError, StoreError
from schedbot.core.providers.payments import PaymentClient, PurchaseRequest, ToolUsage
from schedbot.core.schedule.intervals import first_run_at, next_run_for
from schedbot.core.schedule.types import (
    ActionKind,
    ExecutionOutcome,
    RepeatPolicy,
    ScheduleRecord,
    utcnow,
)
from schedbot.memory.store import BotStore


class ExecutionCoordinator:
    """Runs the per-tick state machine for scheduled records.

    Each timer fire calls ``tick(schedule_id)``; the record is always read
    fresh from the store so pause/delete/edit take effect on the next fire.

    Parameters
    ----------
    store : BotStore
        Schedule records and group credentials.
    executor : ActionExecutor
        Usually an ``ActionDispatcher`` routing on the action kind.
    notifier : Notifier
        Group delivery and creator notifications.
    config : Config
        Lease length and billing switch.
    payments : PaymentClient, optional
        Used to bill AI usage after successful prompt runs.
    clock : callable, optional
        Returns the current UTC time.
    """

    def __init__(
        self,
        store: BotStore,
        executor: ActionExecutor,
        notifier: Notifier,
        config: Config,
        payments: PaymentClient | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.executor = executor
        self.notifier = notifier
        self.config = config
        self.payments = payments
        self.clock = clock

    @property
    def lease(self) -> timedelta:
        return timedelta(seconds=self.config.scheduler.lease_seconds)

    async def tick(self, schedule_id: str, now: datetime | None = None) -> bool:
        """Run ``schedule_id`` if it is due. Returns True when an execution happened."""
        fixed_clock = now is not None
        now = now or self.clock()

        try:
            record = self.store.get_schedule(schedule_id)
        except StoreError as e:
            logger.error(f"[sched:{schedule_id}] load failed: {e}")
            return False
        if record is None:
            logger.warning(f"[sched:{schedule_id}] schedule not found; skipping")
            return False
        if not record.active:
            logger.debug(f"[sched:{schedule_id}] inactive; skipping")
            return False
        if record.locked_until is not None and record.locked_until > now:
            logger.debug(f"[sched:{schedule_id}] locked_until={record.locked_until} > now={now}; skipping")
            return False
        if record.next_run_at is None:
            record.next_run_at = first_run_at(record, now)
            logger.info(f"[sched:{schedule_id}] seeded next_run_at={record.next_run_at}")
            self._save(record)
            return False
        if record.next_run_at > now:
            return False

        leased = self._acquire(record, now)
        if leased is None:
            return False

        logger.info(f"[sched:{schedule_id}] executing {leased.kind.value} (run #{leased.run_count + 1})")
        outcome = await self.executor.execute(leased)
        ran_at = now if fixed_clock else self.clock()

        current = self._reload(leased)
        self._apply_outcome(current, outcome, ran_at)
        self._save(current)

        await self._after_run(current, outcome)
        return True

    # ════════════════════════════════════════════════════════════
    # LEASE + BOOKKEEPING
    # ════════════════════════════════════════════════════════════

    def _acquire(self, record: ScheduleRecord, now: datetime) -> ScheduleRecord | None:
        try:
            leased = self.store.try_acquire_lease(record.id, now, now + self.lease)
        except StoreError as e:
            # The lease could not be written; run anyway, a stale lease expires on its own.
            logger.error(f"[sched:{record.id}] lease write failed, continuing: {e}")
            return record
        if leased is None:
            logger.debug(f"[sched:{record.id}] lease held elsewhere; skipping")
        return leased

    def _reload(self, record: ScheduleRecord) -> ScheduleRecord:
        """Latest stored copy, so changes made during execution survive."""
        try:
            return self.store.get_schedule(record.id) or record
        except StoreError as e:
            logger.error(f"[sched:{record.id}] reload failed: {e}")
            return record

    def _apply_outcome(
        self, record: ScheduleRecord, outcome: ExecutionOutcome, ran_at: datetime
    ) -> None:
        record.locked_until = None
        if outcome.success:
            record.last_run_at = ran_at
            record.run_count += 1
            record.last_error = None
            record.last_attempt_status = "success"
            if outcome.conversation_token:
                record.conversation_token = outcome.conversation_token
            if record.repeat is RepeatPolicy.NONE:
                record.active = False
                record.next_run_at = None
                logger.info(f"[sched:{record.id}] one-off run complete; deactivated")
                return
        else:
            record.last_error = outcome.error
            record.last_attempt_status = "failure"
            logger.warning(f"[sched:{record.id}] run failed: {outcome.error}")
        # Strictly after the run instant, so a run exactly on an anchor is not repeated.
        record.next_run_at = next_run_for(record, ran_at + timedelta(microseconds=1))
        logger.debug(f"[sched:{record.id}] next_run_at={record.next_run_at}")

    def _save(self, record: ScheduleRecord) -> None:
        try:
            self.store.put_schedule(record)
        except StoreError as e:
            logger.error(f"[sched:{record.id}] bookkeeping write failed: {e}")

    # ════════════════════════════════════════════════════════════
    # DELIVERY + NOTIFICATIONS
    # ════════════════════════════════════════════════════════════

    async def _after_run(self, record: ScheduleRecord, outcome: ExecutionOutcome) -> None:
        if outcome.success and record.kind is ActionKind.PROMPT:
            try:
                await self._bill(record, outcome)
            except SchedbotError as e:
                logger.error(f"[sched:{record.id}] billing failed: {e}")
        try:
            if outcome.success:
                if record.kind is ActionKind.PROMPT:
                    await self.notifier.broadcast(record, outcome)
                if record.notify_on_success:
                    await self.notifier.notify_success(record, outcome)
            elif record.notify_on_failure:
                await self.notifier.notify_failure(record, outcome.error or "unknown error")
        except SchedbotError as e:
            logger.error(f"[sched:{record.id}] delivery failed: {e}")

    async def _bill(self, record: ScheduleRecord, outcome: ExecutionOutcome) -> None:
        if not self.config.billing.enabled or self.payments is None:
            return
        jwt = self.store.get_group_credentials(record.group_id)
        if not jwt:
            logger.warning(f"[sched:{record.id}] no group credentials; usage not billed")
            return
        tools = [
            ToolUsage(tool=key.split(":", 1)[1], calls=n)
            for key, n in outcome.usage.items()
            if key.startswith("tool:")
        ]
        request = PurchaseRequest(
            model=outcome.model or "",
            tokens_used=outcome.usage.get("total_tokens", 0),
            tools_used=tools,
            group_id=str(record.group_id),
        )
        try:
            await self.payments.record_purchase(jwt, request)
        except ExternalServiceError as e:
            logger.error(f"[sched:{record.id}] billing failed: {e}")
