"""Action executors and the kind-based dispatcher."""

from __future__ import annotations

from loguru import logger

from schedbot.core.actions.base import ActionExecutor
from schedbot.core.actions.payment import PaymentTransferExecutor
from schedbot.core.actions.prompt import SCHEDULED_SUFFIX, PromptBroadcastExecutor
from schedbot.core.schedule.types import ActionKind, ExecutionOutcome, ScheduleRecord


class ActionDispatcher(ActionExecutor):
    """Route a record to the executor registered for its action kind."""

    def __init__(self, executors: dict[ActionKind, ActionExecutor]) -> None:
        self.executors = executors

    async def execute(self, record: ScheduleRecord) -> ExecutionOutcome:
        executor = self.executors.get(record.kind)
        if executor is None:
            return ExecutionOutcome.failure(f"No executor for {record.kind.value}")
        try:
            return await executor.execute(record)
        except Exception as e:
            logger.exception(f"[sched:{record.id}] executor crashed: {e}")
            return ExecutionOutcome.failure(str(e) or type(e).__name__)


__all__ = [
    "SCHEDULED_SUFFIX",
    "ActionDispatcher",
    "ActionExecutor",
    "PaymentTransferExecutor",
    "PromptBroadcastExecutor",
]
