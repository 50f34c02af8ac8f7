"""Inline keyboards and summaries for the schedule wizard.

Callback data format: ``<prefix>_<action>:<args>`` where the prefix is
``sched`` for prompts and ``schedpay`` for payments.
"""

from __future__ import annotations

from pydantic import BaseModel

from schedbot.core.schedule.types import ActionKind, RepeatPolicy, ScheduleRecord, WizardState


class InlineButton(BaseModel):
    text: str
    callback_data: str


Keyboard = list[list[InlineButton]]

PROMPT_PREFIX = "sched"
PAYMENT_PREFIX = "schedpay"

# (label, callback code) rows
PROMPT_REPEAT_ROWS: list[list[tuple[str, str]]] = [
    [("No repeat", "none")],
    [("Every 5 min", "5m"), ("15 min", "15m"), ("30 min", "30m")],
    [("45 min", "45m"), ("1 hour", "1h"), ("3 hours", "3h")],
    [("6 hours", "6h"), ("12 hours", "12h"), ("Daily", "1d")],
    [("Weekly", "1w"), ("Monthly", "1mo")],
]

PAYMENT_REPEAT_ROWS: list[list[tuple[str, str]]] = [
    [("Daily", "1d")],
    [("Weekly", "1w")],
    [("2-Weekly", "2w"), ("4-Weekly", "4w")],
]

# Payment repeat codes → (policy, week multiplier)
PAYMENT_REPEATS: dict[str, tuple[RepeatPolicy, int | None]] = {
    "1d": (RepeatPolicy.DAILY, None),
    "1w": (RepeatPolicy.WEEKLY, 1),
    "2w": (RepeatPolicy.WEEKLY, 2),
    "4w": (RepeatPolicy.WEEKLY, 4),
}


def prefix_for(kind: ActionKind) -> str:
    return PAYMENT_PREFIX if kind is ActionKind.PAYMENT else PROMPT_PREFIX


def _grid(buttons: list[InlineButton], width: int = 6) -> Keyboard:
    return [buttons[i : i + width] for i in range(0, len(buttons), width)]


def hours_keyboard(kind: ActionKind, creator_id: int) -> Keyboard:
    p = prefix_for(kind)
    return _grid(
        [InlineButton(text=f"{h:02d}", callback_data=f"{p}_hour:{creator_id}:{h}") for h in range(24)]
    )


def minutes_keyboard(kind: ActionKind, creator_id: int) -> Keyboard:
    p = prefix_for(kind)
    return _grid(
        [
            InlineButton(text=f"{m:02d}", callback_data=f"{p}_min:{creator_id}:{m}")
            for m in range(0, 60, 5)
        ]
    )


def repeat_keyboard(kind: ActionKind, creator_id: int) -> Keyboard:
    p = prefix_for(kind)
    rows = PAYMENT_REPEAT_ROWS if kind is ActionKind.PAYMENT else PROMPT_REPEAT_ROWS
    return [
        [InlineButton(text=label, callback_data=f"{p}_repeat:{creator_id}:{code}") for label, code in row]
        for row in rows
    ]


def confirm_keyboard(kind: ActionKind, creator_id: int) -> Keyboard:
    p = prefix_for(kind)
    return [
        [
            InlineButton(text="✔️ Create schedule", callback_data=f"{p}_confirm:{creator_id}"),
            InlineButton(text="↩️ Cancel", callback_data=f"{p}_cancel:{creator_id}"),
        ]
    ]


def edit_menu_keyboard(kind: ActionKind, schedule_id: str, creator_id: int) -> Keyboard:
    p = prefix_for(kind)

    def btn(text: str, field: str) -> InlineButton:
        return InlineButton(text=text, callback_data=f"{p}_editfield:{schedule_id}:{field}")

    if kind is ActionKind.PAYMENT:
        rows = [
            [btn("👤 Recipient", "recipient"), btn("💳 Token", "token")],
            [btn("💰 Amount", "amount"), btn("🗓 Date/Time", "date")],
            [btn("🔁 Repeat", "repeat")],
        ]
    else:
        rows = [
            [btn("📝 Prompt", "prompt"), btn("⏰ Time", "time")],
            [btn("🔁 Repeat", "repeat")],
        ]
    rows.append(confirm_keyboard(kind, creator_id)[0])
    return rows


def record_controls_keyboard(record: ScheduleRecord) -> Keyboard:
    """Per-item controls shown by the list commands."""
    p = prefix_for(record.kind)
    toggle = "⏸ Pause" if record.active else "▶️ Resume"
    return [
        [
            InlineButton(text="✏️ Edit", callback_data=f"{p}_edit:{record.id}"),
            InlineButton(text=toggle, callback_data=f"{p}_toggle:{record.id}"),
        ],
        [
            InlineButton(text="⚡ Run now", callback_data=f"{p}_runnow:{record.id}"),
            InlineButton(text="🗑 Delete", callback_data=f"{p}_delete:{record.id}"),
        ],
        [InlineButton(text="✖️ Close", callback_data=f"{p}_close:{record.id}")],
    ]


def failure_keyboard(record: ScheduleRecord) -> Keyboard:
    p = prefix_for(record.kind)
    return [
        [
            InlineButton(text="🔁 Retry now", callback_data=f"{p}_runnow:{record.id}"),
            InlineButton(text="⏸ Pause", callback_data=f"{p}_pause:{record.id}"),
        ]
    ]


# ════════════════════════════════════════════════════════════
# SUMMARIES
# ════════════════════════════════════════════════════════════


def _clock(hour: int | None, minute: int | None) -> str:
    h = f"{hour:02d}" if hour is not None else "--"
    m = f"{minute:02d}" if minute is not None else "--"
    return f"{h}:{m}"


def format_amount(value) -> str:
    return f"{value:.4f}"


def summarize(state: WizardState) -> str:
    """Human-readable confirmation text for a wizard session."""
    repeat = state.repeat.label(state.weeks) if state.repeat else "(not set)"
    if state.kind is ActionKind.PAYMENT:
        recipient = f"@{state.recipient_username}" if state.recipient_username else "(recipient not set)"
        amount = format_amount(state.amount_display) if state.amount_display is not None else "(amount not set)"
        date = state.start_date.isoformat() if state.start_date else "(date not set)"
        return (
            "💸 Payment schedule (UTC)\n"
            f"Recipient: {recipient}\n"
            f"Amount: {amount} {state.symbol or '(symbol not set)'}\n"
            f"First run: {date} {_clock(state.hour, state.minute)}\n"
            f"Repeat: {repeat}"
        )
    return (
        "🗓️ Schedule summary (UTC)\n\n"
        f"Prompt: \n{state.prompt or ''}\n\n"
        f"Start: {_clock(state.hour, state.minute)} UTC\n"
        f"Repeat: {repeat}"
    )


def describe_record(record: ScheduleRecord) -> str:
    """One list entry for /listscheduled and /listscheduledpayments."""
    repeat = record.repeat.label(record.weeks)
    status = "" if record.active else " (paused)"
    header = f"⏰ {_clock(record.hour, record.minute)} UTC · {repeat}{status}"
    action = record.action
    if record.kind is ActionKind.PAYMENT:
        body = (
            f"💸 {format_amount(action.display_amount())} {action.symbol} → @{action.recipient_username}"
        )
    else:
        body = action.prompt
    lines = [header, "", body]
    if record.next_run_at:
        lines.append(f"\nNext run: {record.next_run_at:%Y-%m-%d %H:%M} UTC")
    if record.last_attempt_status == "failure" and record.last_error:
        lines.append(f"Last error: {record.last_error}")
    return "\n".join(lines)
