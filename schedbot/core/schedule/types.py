"""Schedule types: repeat policies, actions, records, wizard sessions."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RepeatPolicy(str, Enum):
    """Closed set of cadences. Values double as callback codes."""

    NONE = "none"
    EVERY_5M = "5m"
    EVERY_15M = "15m"
    EVERY_30M = "30m"
    EVERY_45M = "45m"
    EVERY_1H = "1h"
    EVERY_3H = "3h"
    EVERY_6H = "6h"
    EVERY_12H = "12h"
    DAILY = "1d"
    WEEKLY = "1w"
    MONTHLY = "1mo"

    @property
    def minutes(self) -> int | None:
        return _MINUTE_STEPS.get(self)

    @property
    def hours(self) -> int | None:
        return _HOUR_STEPS.get(self)

    def label(self, weeks: int | None = None) -> str:
        if self is RepeatPolicy.WEEKLY and weeks and weeks > 1:
            return f"Every {weeks} weeks"
        return _LABELS[self]


_MINUTE_STEPS = {
    RepeatPolicy.EVERY_5M: 5,
    RepeatPolicy.EVERY_15M: 15,
    RepeatPolicy.EVERY_30M: 30,
    RepeatPolicy.EVERY_45M: 45,
}

_HOUR_STEPS = {
    RepeatPolicy.EVERY_1H: 1,
    RepeatPolicy.EVERY_3H: 3,
    RepeatPolicy.EVERY_6H: 6,
    RepeatPolicy.EVERY_12H: 12,
}

_LABELS = {
    RepeatPolicy.NONE: "No repeat",
    RepeatPolicy.EVERY_5M: "Every 5 min",
    RepeatPolicy.EVERY_15M: "Every 15 min",
    RepeatPolicy.EVERY_30M: "Every 30 min",
    RepeatPolicy.EVERY_45M: "Every 45 min",
    RepeatPolicy.EVERY_1H: "Every 1 hour",
    RepeatPolicy.EVERY_3H: "Every 3 hours",
    RepeatPolicy.EVERY_6H: "Every 6 hours",
    RepeatPolicy.EVERY_12H: "Every 12 hours",
    RepeatPolicy.DAILY: "Daily",
    RepeatPolicy.WEEKLY: "Weekly",
    RepeatPolicy.MONTHLY: "Monthly",
}


class ActionKind(str, Enum):
    PROMPT = "prompt"
    PAYMENT = "payment"


# ════════════════════════════════════════════════════════════
# ACTIONS (tagged union)
# ════════════════════════════════════════════════════════════


class PromptAction(BaseModel):
    """Broadcast an AI-generated message to the group."""

    kind: Literal["prompt"] = "prompt"
    prompt: str


class PaymentAction(BaseModel):
    """Send a token payment to a recipient's wallet."""

    kind: Literal["payment"] = "payment"
    recipient_username: str | None = None
    recipient_address: str | None = None
    symbol: str | None = None
    token_type: str | None = None
    decimals: int | None = None
    amount_smallest_units: int | None = None

    def display_amount(self) -> Decimal:
        if self.amount_smallest_units is None:
            return Decimal(0)
        return Decimal(self.amount_smallest_units).scaleb(-(self.decimals or 0))


Action = Annotated[PromptAction | PaymentAction, Field(discriminator="kind")]


# ════════════════════════════════════════════════════════════
# SCHEDULE RECORD
# ════════════════════════════════════════════════════════════


class ScheduleRecord(BaseModel):
    """Durable, engine-owned representation of one recurring action."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    group_id: int
    creator_id: int
    creator_name: str
    thread_id: int | None = None

    action: Action

    hour: int = 0
    minute: int = 0
    repeat: RepeatPolicy = RepeatPolicy.NONE
    start_at: datetime | None = None
    weeks: int | None = None

    active: bool = True
    deleted: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    run_count: int = 0
    locked_until: datetime | None = None
    timer_handle: str | None = None
    last_error: str | None = None
    last_attempt_status: Literal["success", "failure"] | None = None
    notify_on_success: bool = False
    notify_on_failure: bool = True
    conversation_token: str | None = None

    @property
    def kind(self) -> ActionKind:
        return ActionKind(self.action.kind)

    def timing(self) -> tuple[Any, ...]:
        """Fields that determine when the record runs."""
        return (self.hour, self.minute, self.repeat, self.weeks, self.start_at)


# ════════════════════════════════════════════════════════════
# WIZARD
# ════════════════════════════════════════════════════════════


class WizardStep(str, Enum):
    AWAITING_PROMPT = "awaiting_prompt"
    AWAITING_RECIPIENT = "awaiting_recipient"
    AWAITING_TOKEN = "awaiting_token"
    AWAITING_AMOUNT = "awaiting_amount"
    AWAITING_DATE = "awaiting_date"
    AWAITING_HOUR = "awaiting_hour"
    AWAITING_MINUTE = "awaiting_minute"
    AWAITING_REPEAT = "awaiting_repeat"
    AWAITING_CONFIRM = "awaiting_confirm"


class WizardState(BaseModel):
    """In-progress configuration session, keyed by (group_id, creator_id)."""

    group_id: int
    creator_id: int
    creator_name: str
    thread_id: int | None = None
    kind: ActionKind
    step: WizardStep

    prompt: str | None = None

    recipient_username: str | None = None
    recipient_address: str | None = None
    symbol: str | None = None
    token_type: str | None = None
    decimals: int | None = None
    amount_display: Decimal | None = None
    amount_smallest_units: int | None = None
    start_date: date | None = None

    hour: int | None = None
    minute: int | None = None
    repeat: RepeatPolicy | None = None
    weeks: int | None = None

    schedule_id: str | None = None
    editing: bool = False

    @property
    def key(self) -> tuple[int, int]:
        return (self.group_id, self.creator_id)


# ════════════════════════════════════════════════════════════
# EXECUTION OUTCOME
# ════════════════════════════════════════════════════════════


class ExecutionOutcome(BaseModel):
    """Normalized result of running one action."""

    success: bool
    error: str | None = None
    text: str | None = None
    image: bytes | None = None
    usage: dict[str, int] = Field(default_factory=dict)
    model: str | None = None
    conversation_token: str | None = None
    tx_reference: str | None = None

    @classmethod
    def failure(cls, error: str) -> ExecutionOutcome:
        return cls(success=False, error=error)
