"""Schedule domain: types and next-run computation."""

from schedbot.core.schedule.intervals import first_run_at, next_run, next_run_for
from schedbot.core.schedule.types import (
    ActionKind,
    ExecutionOutcome,
    PaymentAction,
    PromptAction,
    RepeatPolicy,
    ScheduleRecord,
    WizardState,
    WizardStep,
)

__all__ = [
    "ActionKind",
    "ExecutionOutcome",
    "PaymentAction",
    "PromptAction",
    "RepeatPolicy",
    "ScheduleRecord",
    "WizardState",
    "WizardStep",
    "first_run_at",
    "next_run",
    "next_run_for",
]
