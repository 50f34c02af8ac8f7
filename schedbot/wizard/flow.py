"""Schedule wizard: collects a recurring action step by step.

The wizard is transport-agnostic: every entry point returns a
``WizardReply`` (text plus optional inline keyboard) and raises
``ValidationError`` for input it rejects. Rejected input never mutates
the stored session or any schedule record.
"""

from __future__ import annotations

from datetime import datetime, time, timezone
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Callable

from loguru import logger
from pydantic import BaseModel

from schedbot.core.config.schema import Config
from schedbot.core.errors import CapExceededError, RegistrationError, ValidationError
from schedbot.core.providers.guard import PromptGuard
from schedbot.core.providers.tokens import TokenRegistry
from schedbot.core.schedule.intervals import first_run_at
from schedbot.core.schedule.types import (
    ActionKind,
    PaymentAction,
    PromptAction,
    RepeatPolicy,
    ScheduleRecord,
    WizardState,
    WizardStep,
    utcnow,
)
from schedbot.memory.store import BotStore
from schedbot.wizard import keyboards as kb
from schedbot.wizard import steps

if TYPE_CHECKING:
    from schedbot.core.cron.scheduler import CronRegistrar

S = WizardStep

TOOLS_NOTE = (
    "\n\nℹ️ Note about tools for scheduled prompts:\n\n"
    "• Unavailable: any tool that requires user confirmation or performs transactions "
    "(e.g., pay users, withdrawals, funding, creating proposals or other interactive flows).\n\n"
    "Tip: Schedule informational queries, summaries, monitoring, or analytics. "
    "Avoid actions that need real-time human approval."
)

GUARD_REJECTION = (
    "❌ This prompt can't be scheduled. PLEASE TRY AGAIN\n\n"
    "Reason: {reason}\n\n"
    "Allowed for schedules: informational queries, analytics, web/file search, time, "
    "market snapshots, and image generation.\n\n"
    "Blocked: payments/transfers, withdrawals/funding, DAO/proposal creation, "
    "or any on-chain/interactive actions.\n\n"
    "Please send a new prompt."
)


class WizardReply(BaseModel):
    text: str
    keyboard: kb.Keyboard | None = None
    done: bool = False


class Wizard:
    """Creator-scoped configuration sessions for scheduled prompts and payments.

    Parameters
    ----------
    store : BotStore
        Holds wizard sessions and schedule records.
    registrar : CronRegistrar
        Binds timers for confirmed records.
    config : Config
        Caps and scheduler settings.
    tokens : TokenRegistry
        Symbol lookup for payment tokens.
    guard : PromptGuard, optional
        Classifier that rejects prompts requesting forbidden actions.
    clock : callable, optional
        Returns the current UTC time.
    """

    def __init__(
        self,
        store: BotStore,
        registrar: CronRegistrar,
        config: Config,
        tokens: TokenRegistry,
        guard: PromptGuard | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.registrar = registrar
        self.config = config
        self.tokens = tokens
        self.guard = guard
        self.clock = clock

    # ════════════════════════════════════════════════════════════
    # ENTRY POINTS
    # ════════════════════════════════════════════════════════════

    def start(
        self,
        kind: ActionKind,
        group_id: int,
        user_id: int,
        username: str | None,
        is_admin: bool,
        thread_id: int | None = None,
    ) -> WizardReply:
        """Open a new session for ``user_id``, replacing any previous one."""
        if not is_admin:
            raise ValidationError("❌ Only group admins can create schedules.")
        if not username:
            noun = "payments" if kind is ActionKind.PAYMENT else "prompts"
            raise ValidationError(f"❌ Username required to schedule {noun}.")

        state = WizardState(
            group_id=group_id,
            creator_id=user_id,
            creator_name=username,
            thread_id=thread_id,
            kind=kind,
            step=steps.first_step(kind),
        )
        self.store.put_wizard(state)
        logger.info(f"Wizard started: {kind.value} group={group_id} creator={user_id}")
        reply = self._prompt_for(state)
        if kind is ActionKind.PROMPT:
            reply.text += TOOLS_NOTE
        return reply

    async def handle_text(self, group_id: int, user_id: int, text: str) -> WizardReply | None:
        """Consume a free-text reply. Returns None when no session wants it."""
        state = self.store.get_wizard(group_id, user_id)
        if state is None:
            return None

        text = text.strip()
        lowered = text.lower()
        if lowered == "/cancel" or lowered.startswith("/cancel@"):
            self.store.delete_wizard(group_id, user_id)
            noun = "payment" if state.kind is ActionKind.PAYMENT else "prompt"
            return WizardReply(text=f"✅ Cancelled scheduled {noun} setup.", done=True)
        if not text or text.startswith("/"):
            return None

        if state.step is S.AWAITING_PROMPT:
            await self._take_prompt(state, text)
        elif state.step is S.AWAITING_RECIPIENT:
            self._take_recipient(state, text)
        elif state.step is S.AWAITING_TOKEN:
            self._take_token(state, text)
        elif state.step is S.AWAITING_AMOUNT:
            self._take_amount(state, text)
        elif state.step is S.AWAITING_DATE:
            self._take_date(state, text)
        elif state.step is S.AWAITING_HOUR:
            state.hour = _parse_int(text, 0, 23, "hour")
        elif state.step is S.AWAITING_MINUTE:
            state.minute = _parse_int(text, 0, 59, "minute")
        elif state.step is S.AWAITING_REPEAT:
            self._take_repeat(state, text)
        elif state.step is S.AWAITING_CONFIRM:
            if lowered == "skip":
                return WizardReply(text="✔️ Keeping existing values. Use buttons to confirm.")
            return None

        steps.advance(state)
        self.store.put_wizard(state)
        return self._prompt_for(state)

    def set_hour(self, group_id: int, requester_id: int, creator_id: int, hour: int) -> WizardReply:
        state = self._owned(group_id, requester_id, creator_id, S.AWAITING_HOUR)
        state.hour = _parse_int(str(hour), 0, 23, "hour")
        return self._advance(state)

    def set_minute(self, group_id: int, requester_id: int, creator_id: int, minute: int) -> WizardReply:
        state = self._owned(group_id, requester_id, creator_id, S.AWAITING_MINUTE)
        state.minute = _parse_int(str(minute), 0, 59, "minute")
        return self._advance(state)

    def set_repeat(self, group_id: int, requester_id: int, creator_id: int, code: str) -> WizardReply:
        state = self._owned(group_id, requester_id, creator_id, S.AWAITING_REPEAT)
        self._take_repeat(state, code)
        return self._advance(state)

    def cancel(self, group_id: int, requester_id: int, creator_id: int) -> WizardReply:
        if requester_id != creator_id:
            raise ValidationError("❌ Only the creator can cancel this schedule")
        if not self.store.delete_wizard(group_id, creator_id):
            raise ValidationError("ℹ️ No pending schedule to cancel")
        return WizardReply(text="✅ Cancelled", done=True)

    def confirm(self, group_id: int, requester_id: int, creator_id: int) -> WizardReply:
        """Finalize the session into a ScheduleRecord and bind its timer."""
        state = self._owned(group_id, requester_id, creator_id, S.AWAITING_CONFIRM)
        missing = _missing_fields(state)
        if missing:
            raise ValidationError(f"❌ Schedule is incomplete: {', '.join(missing)}")

        if state.editing:
            record = self._apply_edit(state)
            verb = "updated"
        else:
            record = self._create(state)
            verb = "created"

        warning = ""
        if record.active:
            try:
                record.timer_handle = self.registrar.register(record)
            except RegistrationError as e:
                logger.error(f"[sched:{record.id}] timer registration failed: {e}")
                record.timer_handle = None
                warning = "\n\n⚠️ Saved, but the timer could not be started. It will be retried on restart."
        self.store.put_schedule(record)
        self.store.delete_wizard(group_id, creator_id)
        logger.info(f"[sched:{record.id}] schedule {verb} ({record.kind.value})")

        noun = "Scheduled payment" if record.kind is ActionKind.PAYMENT else "Schedule"
        return WizardReply(text=f"✅ {noun} {verb}!\n\n{kb.summarize(state)}{warning}", done=True)

    def begin_edit(self, schedule_id: str, requester_id: int) -> WizardReply:
        """Load a record into an editing session parked at the confirmation step."""
        record = self._editable(schedule_id, requester_id)
        self._refuse_over_pending_setup(record.group_id, requester_id)
        state = _state_from_record(record)
        self.store.put_wizard(state)
        return WizardReply(
            text=f"✏️ What would you like to edit?\n\n{kb.summarize(state)}",
            keyboard=kb.edit_menu_keyboard(record.kind, record.id, record.creator_id),
        )

    def edit_field(self, schedule_id: str, requester_id: int, field: str) -> WizardReply:
        record = self._editable(schedule_id, requester_id)
        state = self.store.get_wizard(record.group_id, requester_id)
        if state is None or state.schedule_id != schedule_id:
            self._refuse_over_pending_setup(record.group_id, requester_id)
            state = _state_from_record(record)
        steps.enter_edit(state, field)
        self.store.put_wizard(state)
        return self._prompt_for(state)

    # ════════════════════════════════════════════════════════════
    # STEP INPUTS
    # ════════════════════════════════════════════════════════════

    async def _take_prompt(self, state: WizardState, text: str) -> None:
        if self.guard is not None and self.config.scheduler.prompt_guard:
            verdict = await self.guard.check(text)
            if not verdict.allowed:
                raise ValidationError(GUARD_REJECTION.format(reason=verdict.reason))
        state.prompt = text

    def _take_recipient(self, state: WizardState, text: str) -> None:
        username = text.lstrip("@").strip()
        address = self.store.resolve_wallet(username) if username else None
        if not address:
            raise ValidationError("❌ Unknown user. Please send a valid @username.")
        state.recipient_username = username
        state.recipient_address = address

    def _take_token(self, state: WizardState, text: str) -> None:
        token = self.tokens.resolve(text)
        if token is None:
            raise ValidationError("❌ Token not found. Try again (e.g., APT, USDC)")
        state.symbol = token.symbol
        state.token_type = token.token_type
        if state.decimals != token.decimals and state.amount_display is not None:
            state.amount_smallest_units = _to_smallest_units(state.amount_display, token.decimals)
        state.decimals = token.decimals

    def _take_amount(self, state: WizardState, text: str) -> None:
        try:
            amount = Decimal(text.replace("_", "").replace(",", ""))
        except InvalidOperation:
            amount = None
        if amount is None or not amount.is_finite() or amount <= 0:
            raise ValidationError("❌ Invalid amount. Please send a positive number.")
        units = _to_smallest_units(amount, state.decimals or 0)
        if units <= 0:
            raise ValidationError("❌ Amount is smaller than the token's precision.")
        state.amount_display = amount
        state.amount_smallest_units = units

    def _take_date(self, state: WizardState, text: str) -> None:
        try:
            state.start_date = datetime.strptime(text, "%Y-%m-%d").date()
        except ValueError as e:
            raise ValidationError("❌ Invalid date. Use YYYY-MM-DD.") from e

    def _take_repeat(self, state: WizardState, code: str) -> None:
        code = code.strip().lower()
        if state.kind is ActionKind.PAYMENT:
            if code not in kb.PAYMENT_REPEATS:
                raise ValidationError("❌ Unsupported repeat for payments")
            state.repeat, state.weeks = kb.PAYMENT_REPEATS[code]
            return
        try:
            state.repeat = RepeatPolicy(code)
        except ValueError as e:
            raise ValidationError(f"❌ Unknown repeat option: {code}") from e
        state.weeks = 1 if state.repeat is RepeatPolicy.WEEKLY else None

    # ════════════════════════════════════════════════════════════
    # FINALIZE
    # ════════════════════════════════════════════════════════════

    def _create(self, state: WizardState) -> ScheduleRecord:
        cap = self.config.cap_for(state.kind.value)
        active = self.store.list_active_for_group(state.group_id, state.kind)
        if len(active) >= cap:
            raise CapExceededError(state.kind.value, cap)

        is_payment = state.kind is ActionKind.PAYMENT
        record = ScheduleRecord(
            group_id=state.group_id,
            creator_id=state.creator_id,
            creator_name=state.creator_name,
            thread_id=state.thread_id,
            action=_action_from_state(state),
            notify_on_success=is_payment,
            notify_on_failure=True,
            **_timing_from_state(state),
        )
        now = self.clock()
        # Payments start at the chosen instant even when it has already passed.
        record.next_run_at = record.start_at if is_payment else first_run_at(record, now)
        return record

    def _apply_edit(self, state: WizardState) -> ScheduleRecord:
        record = self.store.get_schedule(state.schedule_id or "")
        if record is None:
            self.store.delete_wizard(state.group_id, state.creator_id)
            raise ValidationError("ℹ️ Schedule not found")

        before = record.timing()
        updated = record.model_copy(
            update={"action": _action_from_state(state), **_timing_from_state(state)}
        )
        if updated.timing() != before:
            updated.next_run_at = first_run_at(updated, self.clock())
        return updated

    # ════════════════════════════════════════════════════════════
    # HELPERS
    # ════════════════════════════════════════════════════════════

    def _owned(
        self, group_id: int, requester_id: int, creator_id: int, step: WizardStep
    ) -> WizardState:
        if requester_id != creator_id:
            raise ValidationError("❌ Only the creator can change this schedule")
        state = self.store.get_wizard(group_id, creator_id)
        if state is None:
            raise ValidationError("ℹ️ No pending schedule")
        if state.step is not step:
            raise ValidationError("⚠️ That step is no longer active")
        return state

    def _editable(self, schedule_id: str, requester_id: int) -> ScheduleRecord:
        record = self.store.get_schedule(schedule_id)
        if record is None or record.deleted:
            raise ValidationError("ℹ️ Schedule not found")
        if record.creator_id != requester_id:
            raise ValidationError("❌ Only the creator can edit")
        return record

    def _refuse_over_pending_setup(self, group_id: int, requester_id: int) -> None:
        pending = self.store.get_wizard(group_id, requester_id)
        if pending is not None and not pending.editing:
            raise ValidationError("❌ Finish or /cancel your pending schedule setup first")

    def _advance(self, state: WizardState) -> WizardReply:
        steps.advance(state)
        self.store.put_wizard(state)
        return self._prompt_for(state)

    def _prompt_for(self, state: WizardState) -> WizardReply:
        """Reply asking for whatever the current step needs."""
        step, kind, creator = state.step, state.kind, state.creator_id
        if step is S.AWAITING_PROMPT:
            return WizardReply(
                text="📝 Send the prompt you want to schedule as your next message.\n\n"
                "If your prompt is rejected for using a forbidden action, try again with a safer prompt."
            )
        if step is S.AWAITING_RECIPIENT:
            return WizardReply(text="👤 Send the recipient @username")
        if step is S.AWAITING_TOKEN:
            return WizardReply(text="💳 Send token symbol (e.g., APT, USDC, or emoji)")
        if step is S.AWAITING_AMOUNT:
            return WizardReply(text="💰 Send amount (decimal)")
        if step is S.AWAITING_DATE:
            return WizardReply(text="📅 Send start date in YYYY-MM-DD (UTC)")
        if step is S.AWAITING_HOUR:
            return WizardReply(text="⏰ Select start hour (UTC)", keyboard=kb.hours_keyboard(kind, creator))
        if step is S.AWAITING_MINUTE:
            return WizardReply(text="Select start minute (UTC)", keyboard=kb.minutes_keyboard(kind, creator))
        if step is S.AWAITING_REPEAT:
            return WizardReply(text="Select repeat interval", keyboard=kb.repeat_keyboard(kind, creator))
        return WizardReply(text=kb.summarize(state), keyboard=kb.confirm_keyboard(kind, creator))


# ════════════════════════════════════════════════════════════
# STATE ↔ RECORD
# ════════════════════════════════════════════════════════════


def _parse_int(text: str, low: int, high: int, name: str) -> int:
    try:
        value = int(text.strip())
    except ValueError as e:
        raise ValidationError(f"❌ Invalid {name}: {text}") from e
    if not low <= value <= high:
        raise ValidationError(f"❌ {name.capitalize()} must be between {low} and {high}")
    return value


def _to_smallest_units(amount: Decimal, decimals: int) -> int:
    return int(amount.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))


def _missing_fields(state: WizardState) -> list[str]:
    required = ["hour", "minute", "repeat"]
    if state.kind is ActionKind.PAYMENT:
        required = [
            "recipient_address",
            "token_type",
            "amount_smallest_units",
            "start_date",
            *required,
        ]
    else:
        required = ["prompt", *required]
    return [name for name in required if getattr(state, name) is None]


def _action_from_state(state: WizardState) -> PromptAction | PaymentAction:
    if state.kind is ActionKind.PAYMENT:
        return PaymentAction(
            recipient_username=state.recipient_username,
            recipient_address=state.recipient_address,
            symbol=state.symbol,
            token_type=state.token_type,
            decimals=state.decimals,
            amount_smallest_units=state.amount_smallest_units,
        )
    return PromptAction(prompt=state.prompt or "")


def _timing_from_state(state: WizardState) -> dict:
    start_at = None
    if state.kind is ActionKind.PAYMENT and state.start_date is not None:
        start_at = datetime.combine(
            state.start_date, time(state.hour or 0, state.minute or 0), tzinfo=timezone.utc
        )
    return {
        "hour": state.hour,
        "minute": state.minute,
        "repeat": state.repeat,
        "weeks": state.weeks,
        "start_at": start_at,
    }


def _state_from_record(record: ScheduleRecord) -> WizardState:
    state = WizardState(
        group_id=record.group_id,
        creator_id=record.creator_id,
        creator_name=record.creator_name,
        thread_id=record.thread_id,
        kind=record.kind,
        step=S.AWAITING_CONFIRM,
        hour=record.hour,
        minute=record.minute,
        repeat=record.repeat,
        weeks=record.weeks,
        schedule_id=record.id,
        editing=True,
    )
    action = record.action
    if isinstance(action, PaymentAction):
        state.recipient_username = action.recipient_username
        state.recipient_address = action.recipient_address
        state.symbol = action.symbol
        state.token_type = action.token_type
        state.decimals = action.decimals
        state.amount_smallest_units = action.amount_smallest_units
        state.amount_display = action.display_amount()
        state.start_date = record.start_at.date() if record.start_at else None
    else:
        state.prompt = action.prompt
    return state
