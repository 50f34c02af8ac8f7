"""ActionExecutor: shared interface for every schedulable action kind."""

from __future__ import annotations

import abc

from schedbot.core.schedule.types import ExecutionOutcome, ScheduleRecord


class ActionExecutor(abc.ABC):
    """Run one action for a schedule record.

    Implementations report problems through ``ExecutionOutcome.failure``
    rather than raising.
    """

    @abc.abstractmethod
    async def execute(self, record: ScheduleRecord) -> ExecutionOutcome:
        ...
