"""Delivery of scheduled results and run notifications."""

from __future__ import annotations

from loguru import logger

from schedbot.core.channels.telegram import CAPTION_LIMIT, TelegramClient, split_message
from schedbot.core.config.schema import PaymentsConfig
from schedbot.core.errors import TelegramError
from schedbot.core.schedule.types import ActionKind, ExecutionOutcome, ScheduleRecord
from schedbot.wizard.keyboards import Keyboard, failure_keyboard, format_amount

EMPTY_REPLY = "_(The model processed the request but returned no text.)_"


class Notifier:
    """Post generated content to groups and run notices to creators.

    Direct messages fall back to a group message tagging the creator when
    the DM cannot be delivered.
    """

    def __init__(self, telegram: TelegramClient, payments: PaymentsConfig) -> None:
        self.telegram = telegram
        self.payments = payments

    async def broadcast(self, record: ScheduleRecord, outcome: ExecutionOutcome) -> None:
        """Post a prompt's generated output to its group (and topic)."""
        text = (outcome.text or "").strip() or EMPTY_REPLY
        chat, thread = record.group_id, record.thread_id

        if outcome.image:
            head, *_ = split_message(text, CAPTION_LIMIT)
            await self.telegram.send_photo(chat, outcome.image, caption=head, thread_id=thread)
            text = text[len(head):].strip()
            if not text:
                return
        await self.telegram.send_long_message(chat, text, thread_id=thread)

    async def notify_success(self, record: ScheduleRecord, outcome: ExecutionOutcome) -> None:
        if record.kind is ActionKind.PAYMENT:
            text = self.payment_receipt(record, outcome.tx_reference or "")
        else:
            text = f"✅ Scheduled prompt ran\nSchedule: {record.id}"
        await self._dm_or_group(record, text)

    async def notify_failure(self, record: ScheduleRecord, error: str) -> None:
        if record.kind is ActionKind.PAYMENT:
            text = f"❌ Payment failed: {error}"
            fallback = "❌ Scheduled payment failed (unable to DM). Use /listscheduledpayments for actions."
        else:
            text = f"❌ Scheduled prompt failed: {error}"
            fallback = "❌ Scheduled prompt failed (unable to DM). Use /listscheduled for actions."
        await self._dm_or_group(record, text, fallback=fallback, keyboard=failure_keyboard(record))

    def payment_receipt(self, record: ScheduleRecord, tx_hash: str) -> str:
        action = record.action
        explorer = self.payments.explorer_url.format(hash=tx_hash, network=self.payments.network)
        return (
            "✅ Payment sent\n"
            f"Amount: {format_amount(action.display_amount())} {action.symbol}\n"
            f"To: @{action.recipient_username}\n"
            f"Schedule: {record.id}\n"
            f"🔗 Explorer: {explorer}"
        )

    async def _dm_or_group(
        self,
        record: ScheduleRecord,
        text: str,
        fallback: str | None = None,
        keyboard: Keyboard | None = None,
    ) -> None:
        try:
            await self.telegram.send_direct_message(record.creator_id, text, keyboard=keyboard)
            return
        except TelegramError as e:
            logger.warning(f"[sched:{record.id}] DM to {record.creator_id} failed: {e}")

        group_text = f"{fallback or text}\n(tag: @{record.creator_name})"
        try:
            await self.telegram.send_message(record.group_id, group_text, thread_id=record.thread_id)
        except TelegramError as e:
            logger.error(f"[sched:{record.id}] group fallback failed: {e}")
