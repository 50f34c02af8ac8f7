"""Telegram channel: Bot API client + webhook router for the schedule commands."""

from __future__ import annotations

import re
from typing import Any

import httpx
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from loguru import logger

from schedbot.api.deps import get_config, get_controls, get_telegram, get_wizard
from schedbot.core.config.schema import Config
from schedbot.core.errors import SchedbotError, TelegramError, ValidationError
from schedbot.core.schedule.types import ActionKind
from schedbot.wizard import ScheduleControls, Wizard, WizardReply
from schedbot.wizard.keyboards import (
    PAYMENT_PREFIX,
    PROMPT_PREFIX,
    Keyboard,
    describe_record,
    record_controls_keyboard,
)

MESSAGE_LIMIT = 4096
CAPTION_LIMIT = 1024

router = APIRouter(tags=["telegram"])


def split_message(text: str, limit: int = MESSAGE_LIMIT) -> list[str]:
    """Split ``text`` into chunks of at most ``limit`` chars, preferring line breaks."""
    chunks: list[str] = []
    rest = text
    while len(rest) > limit:
        cut = rest.rfind("\n", 0, limit)
        if cut <= 0:
            cut = rest.rfind(" ", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(rest[:cut])
        rest = rest[cut:].lstrip("\n ")
    if rest or not chunks:
        chunks.append(rest)
    return chunks


def md_to_html(text: str) -> str:
    """Convert basic markdown (bold, italic, code, links) to Telegram HTML."""
    blocks: list[str] = []

    def save_block(m: re.Match) -> str:
        blocks.append(m.group(1))
        return f"%%CODEBLOCK{len(blocks) - 1}%%"

    text = re.sub(r"```(?:\w*\n)?(.*?)```", save_block, text, flags=re.DOTALL)
    text = _escape(text)
    text = re.sub(r"`([^`]+)`", r"<code>\1</code>", text)
    text = re.sub(r"\*\*(.+?)\*\*", r"<b>\1</b>", text)
    text = re.sub(r"\*(.+?)\*", r"<i>\1</i>", text)
    text = re.sub(r"(?<!\w)_(.+?)_(?!\w)", r"<i>\1</i>", text)
    text = re.sub(r"\[([^\]]+)\]\(([^)]+)\)", r'<a href="\2">\1</a>', text)
    for i, block in enumerate(blocks):
        text = text.replace(f"%%CODEBLOCK{i}%%", f"<pre>{_escape(block)}</pre>")
    return text


def _escape(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _markup(keyboard: Keyboard | None) -> dict | None:
    if not keyboard:
        return None
    return {"inline_keyboard": [[b.model_dump() for b in row] for row in keyboard]}


class TelegramClient:
    """Minimal async Bot API client.

    Every failed call raises ``TelegramError`` so callers can decide on a
    fallback (e.g. a group message when a DM cannot be delivered).
    """

    def __init__(
        self, token: str, api_base: str = "https://api.telegram.org", timeout: float = 30.0
    ) -> None:
        self.base_url = f"{api_base.rstrip('/')}/bot{token}"
        self.timeout = timeout

    async def _call(
        self, method: str, payload: dict[str, Any], files: dict | None = None
    ) -> Any:
        url = f"{self.base_url}/{method}"
        body = {k: v for k, v in payload.items() if v is not None}
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
                if files:
                    resp = await client.post(url, data=body, files=files)
                else:
                    resp = await client.post(url, json=body)
        except httpx.HTTPError as e:
            raise TelegramError(f"{method}: network error: {e}") from e

        data = resp.json() if resp.content else {}
        if resp.status_code >= 400 or not data.get("ok", False):
            raise TelegramError(f"{method} failed ({resp.status_code}): {data.get('description', '')}")
        return data.get("result")

    async def send_message(
        self,
        chat_id: int,
        text: str,
        thread_id: int | None = None,
        keyboard: Keyboard | None = None,
    ) -> None:
        """Send one message (≤4096 chars). HTML first, plain text on parse failure."""
        payload = {
            "chat_id": chat_id,
            "message_thread_id": thread_id,
            "reply_markup": _markup(keyboard),
        }
        try:
            await self._call("sendMessage", {**payload, "text": md_to_html(text), "parse_mode": "HTML"})
        except TelegramError as e:
            logger.debug(f"HTML send failed, retrying as plain text: {e}")
            await self._call("sendMessage", {**payload, "text": text})

    async def send_long_message(self, chat_id: int, text: str, thread_id: int | None = None) -> None:
        for chunk in split_message(text):
            await self.send_message(chat_id, chunk, thread_id=thread_id)

    async def send_photo(
        self,
        chat_id: int,
        photo: bytes,
        caption: str | None = None,
        thread_id: int | None = None,
    ) -> None:
        data: dict[str, Any] = {"chat_id": str(chat_id)}
        if caption:
            data["caption"] = caption[:CAPTION_LIMIT]
        if thread_id is not None:
            data["message_thread_id"] = str(thread_id)
        await self._call("sendPhoto", data, files={"photo": ("image.png", photo, "image/png")})

    async def send_direct_message(
        self, user_id: int, text: str, keyboard: Keyboard | None = None
    ) -> None:
        """DM a user. Raises TelegramError if the user never started the bot."""
        await self.send_message(user_id, text, keyboard=keyboard)

    async def is_admin(self, chat_id: int, user_id: int) -> bool:
        admins = await self._call("getChatAdministrators", {"chat_id": chat_id}) or []
        return any(a.get("user", {}).get("id") == user_id for a in admins)

    async def answer_callback_query(self, callback_id: str, text: str | None = None) -> None:
        await self._call("answerCallbackQuery", {"callback_query_id": callback_id, "text": text})

    async def edit_message_text(
        self, chat_id: int, message_id: int, text: str, keyboard: Keyboard | None = None
    ) -> None:
        await self._call(
            "editMessageText",
            {
                "chat_id": chat_id,
                "message_id": message_id,
                "text": text,
                "reply_markup": _markup(keyboard),
            },
        )

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        await self._call("deleteMessage", {"chat_id": chat_id, "message_id": message_id})


# ════════════════════════════════════════════════════════════
# WEBHOOK
# ════════════════════════════════════════════════════════════

_KIND_BY_PREFIX = {PROMPT_PREFIX: ActionKind.PROMPT, PAYMENT_PREFIX: ActionKind.PAYMENT}

_START_COMMANDS = {"/scheduleprompt": ActionKind.PROMPT, "/schedulepayment": ActionKind.PAYMENT}
_LIST_COMMANDS = {"/listscheduled": ActionKind.PROMPT, "/listscheduledpayments": ActionKind.PAYMENT}


@router.post("/webhooks/telegram")
async def telegram_webhook(
    request: Request,
    secret: str | None = Header(None, alias="X-Telegram-Bot-Api-Secret-Token"),
    config: Config = Depends(get_config),
    bot: TelegramClient = Depends(get_telegram),
    wizard: Wizard = Depends(get_wizard),
    controls: ScheduleControls = Depends(get_controls),
):
    """Handle an incoming Telegram update (messages and button callbacks)."""
    expected = config.telegram.webhook_secret
    if expected and secret != expected:
        return JSONResponse({"error": "Invalid secret token"}, status_code=403)

    body = await request.json()
    try:
        if body.get("callback_query"):
            await handle_callback(body["callback_query"], bot, wizard, controls)
        elif body.get("message"):
            await handle_message(body["message"], bot, wizard, controls)
    except SchedbotError as e:
        logger.error(f"Telegram: update processing error: {e}")
    return JSONResponse({"ok": True})


async def handle_message(
    message: dict, bot: TelegramClient, wizard: Wizard, controls: ScheduleControls
) -> None:
    text = (message.get("text") or message.get("caption") or "").strip()
    sender = message.get("from") or {}
    chat = message.get("chat") or {}
    if not text or not sender or not chat:
        return

    chat_id, user_id = chat["id"], sender["id"]
    thread_id = message.get("message_thread_id")
    is_group = chat.get("type") in ("group", "supergroup")
    command = text.split()[0].split("@")[0].lower() if text.startswith("/") else None

    try:
        if command in _START_COMMANDS or command in _LIST_COMMANDS:
            if not is_group:
                await bot.send_message(chat_id, "❌ This command is only available in groups.")
                return
            if command in _START_COMMANDS:
                is_admin = await bot.is_admin(chat_id, user_id)
                reply = wizard.start(
                    _START_COMMANDS[command],
                    chat_id,
                    user_id,
                    sender.get("username"),
                    is_admin,
                    thread_id=thread_id,
                )
                await _send_reply(bot, chat_id, reply, thread_id)
            else:
                await _send_listing(bot, controls, chat_id, _LIST_COMMANDS[command], thread_id)
            return

        reply = await wizard.handle_text(chat_id, user_id, text)
        if reply is not None:
            await _send_reply(bot, chat_id, reply, thread_id)
    except ValidationError as e:
        await bot.send_message(chat_id, str(e), thread_id=thread_id)


async def handle_callback(
    query: dict, bot: TelegramClient, wizard: Wizard, controls: ScheduleControls
) -> None:
    data: str = query.get("data") or ""
    requester = (query.get("from") or {}).get("id")
    message = query.get("message") or {}
    chat_id = (message.get("chat") or {}).get("id")
    message_id = message.get("message_id")

    prefix, _, rest = data.partition("_")
    action, *args = rest.split(":")
    if prefix not in _KIND_BY_PREFIX or chat_id is None or not args:
        await bot.answer_callback_query(query["id"], "❌ Unknown action")
        return

    notice: str | None = None
    reply: WizardReply | None = None
    try:
        if action in ("hour", "min", "repeat", "confirm", "cancel"):
            creator = int(args[0])
            if action == "hour":
                reply = wizard.set_hour(chat_id, requester, creator, int(args[1]))
            elif action == "min":
                reply = wizard.set_minute(chat_id, requester, creator, int(args[1]))
            elif action == "repeat":
                reply = wizard.set_repeat(chat_id, requester, creator, args[1])
            elif action == "confirm":
                reply = wizard.confirm(chat_id, requester, creator)
            else:
                reply = wizard.cancel(chat_id, requester, creator)
                notice = reply.text
        elif action == "edit":
            reply = wizard.begin_edit(args[0], requester)
        elif action == "editfield":
            reply = wizard.edit_field(args[0], requester, args[1])
        elif action == "toggle":
            record = controls.toggle_active(args[0], requester)
            notice = "▶️ Resumed" if record.active else "⏸ Paused"
        elif action == "pause":
            controls.pause(args[0], requester)
            notice = "⏸ Paused"
        elif action == "delete":
            controls.delete(args[0], requester)
            notice = "🗑 Deleted"
            await _delete_quietly(bot, chat_id, message_id)
        elif action == "runnow":
            controls.run_now(args[0], requester)
            notice = "⚡ Queued to run"
        elif action == "close":
            controls.close(args[0], requester)
            notice = "Closed"
            await _delete_quietly(bot, chat_id, message_id)
        else:
            notice = "❌ Unknown action"
    except ValidationError as e:
        notice = str(e)
    except (ValueError, IndexError):
        notice = "❌ Malformed action"

    await bot.answer_callback_query(query["id"], notice)
    if reply is not None and message_id is not None:
        try:
            await bot.edit_message_text(chat_id, message_id, reply.text, reply.keyboard)
        except TelegramError as e:
            logger.debug(f"Telegram: edit failed, sending new message: {e}")
            await _send_reply(bot, chat_id, reply, message.get("message_thread_id"))


async def _send_reply(
    bot: TelegramClient, chat_id: int, reply: WizardReply, thread_id: int | None = None
) -> None:
    await bot.send_message(chat_id, reply.text, thread_id=thread_id, keyboard=reply.keyboard)


async def _send_listing(
    bot: TelegramClient,
    controls: ScheduleControls,
    chat_id: int,
    kind: ActionKind,
    thread_id: int | None,
) -> None:
    records = controls.list_for_group(chat_id, kind)
    if not records:
        noun = "payments" if kind is ActionKind.PAYMENT else "prompts"
        await bot.send_message(chat_id, f"📭 No active scheduled {noun} in this group.", thread_id=thread_id)
        return
    for record in records:
        await bot.send_message(
            chat_id,
            describe_record(record),
            thread_id=thread_id,
            keyboard=record_controls_keyboard(record),
        )


async def _delete_quietly(bot: TelegramClient, chat_id: int, message_id: int | None) -> None:
    if message_id is None:
        return
    try:
        await bot.delete_message(chat_id, message_id)
    except TelegramError as e:
        logger.debug(f"Telegram: could not delete message {message_id}: {e}")
