"""Tests for schedbot.core.cron.runner.ExecutionCoordinator."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from schedbot.core.config import Config
from schedbot.core.cron.runner import ExecutionCoordinator
from schedbot.core.errors import StoreError, TelegramError
from schedbot.core.schedule.types import (
    ExecutionOutcome,
    PaymentAction,
    PromptAction,
    RepeatPolicy,
    ScheduleRecord,
)
from schedbot.memory.store import BotStore

NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    return BotStore(str(tmp_path / "test.db"))


@pytest.fixture
def notifier():
    n = MagicMock()
    n.broadcast = AsyncMock()
    n.notify_success = AsyncMock()
    n.notify_failure = AsyncMock()
    return n


@pytest.fixture
def executor():
    e = MagicMock()
    e.execute = AsyncMock(return_value=ExecutionOutcome(success=True, text="hi", conversation_token="resp_1"))
    return e


@pytest.fixture
def payments():
    p = MagicMock()
    p.record_purchase = AsyncMock()
    return p


@pytest.fixture
def coordinator(store, executor, notifier, payments):
    return ExecutionCoordinator(store, executor, notifier, Config(), payments=payments)


def _save(store, **kw) -> ScheduleRecord:
    kw.setdefault("action", PromptAction(prompt="digest"))
    kw.setdefault("repeat", RepeatPolicy.DAILY)
    kw.setdefault("next_run_at", NOW)
    record = ScheduleRecord(group_id=100, creator_id=1, creator_name="alice", hour=9, minute=0, **kw)
    store.put_schedule(record)
    return record


# ── Skips ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_not_due_is_a_noop(coordinator, store, executor):
    record = _save(store, next_run_at=NOW + timedelta(minutes=1))
    assert not await coordinator.tick(record.id, NOW)
    executor.execute.assert_not_called()
    assert store.get_schedule(record.id).locked_until is None


@pytest.mark.asyncio
async def test_inactive_is_a_noop(coordinator, store, executor):
    record = _save(store, active=False)
    assert not await coordinator.tick(record.id, NOW)
    executor.execute.assert_not_called()


@pytest.mark.asyncio
async def test_live_lease_is_a_noop(coordinator, store, executor):
    record = _save(store, locked_until=NOW + timedelta(seconds=30))
    assert not await coordinator.tick(record.id, NOW)
    executor.execute.assert_not_called()


@pytest.mark.asyncio
async def test_expired_lease_does_not_block(coordinator, store, executor):
    record = _save(store, locked_until=NOW - timedelta(seconds=1))
    assert await coordinator.tick(record.id, NOW)
    executor.execute.assert_awaited_once()


@pytest.mark.asyncio
async def test_missing_record_is_a_noop(coordinator, executor):
    assert not await coordinator.tick("missing", NOW)
    executor.execute.assert_not_called()


@pytest.mark.asyncio
async def test_unset_next_run_is_seeded_not_run(coordinator, store, executor):
    record = _save(store, next_run_at=None)
    assert not await coordinator.tick(record.id, NOW + timedelta(minutes=5))
    executor.execute.assert_not_called()
    assert store.get_schedule(record.id).next_run_at == NOW + timedelta(days=1)


# ── Success / failure bookkeeping ─────────────────────────


@pytest.mark.asyncio
async def test_success_updates_bookkeeping(coordinator, store, notifier, executor):
    record = _save(store, last_error="old")

    assert await coordinator.tick(record.id, NOW)

    leased = executor.execute.call_args.args[0]
    assert leased.locked_until == NOW + timedelta(seconds=120)

    saved = store.get_schedule(record.id)
    assert saved.run_count == 1
    assert saved.last_run_at == NOW
    assert saved.last_error is None
    assert saved.last_attempt_status == "success"
    assert saved.locked_until is None
    assert saved.conversation_token == "resp_1"
    assert saved.next_run_at == NOW + timedelta(days=1)
    assert saved.active
    notifier.broadcast.assert_awaited_once()
    # prompt records stay quiet on success
    notifier.notify_success.assert_not_called()


@pytest.mark.asyncio
async def test_failure_keeps_schedule_active(coordinator, store, notifier, executor):
    executor.execute.return_value = ExecutionOutcome.failure("rate limited")
    record = _save(store)

    assert await coordinator.tick(record.id, NOW)

    saved = store.get_schedule(record.id)
    assert saved.active
    assert saved.run_count == 0
    assert saved.last_error == "rate limited"
    assert saved.last_attempt_status == "failure"
    assert saved.locked_until is None
    assert saved.next_run_at == NOW + timedelta(days=1)
    notifier.notify_failure.assert_awaited_once()
    assert notifier.notify_failure.call_args.args[1] == "rate limited"
    notifier.broadcast.assert_not_called()


@pytest.mark.asyncio
async def test_one_off_runs_exactly_once(coordinator, store, executor):
    record = _save(store, repeat=RepeatPolicy.NONE)

    assert await coordinator.tick(record.id, NOW)
    saved = store.get_schedule(record.id)
    assert not saved.active
    assert saved.next_run_at is None

    # forcing it due again changes nothing
    saved.next_run_at = NOW
    store.put_schedule(saved)
    assert not await coordinator.tick(record.id, NOW + timedelta(minutes=1))
    assert executor.execute.await_count == 1
    assert store.get_schedule(record.id).run_count == 1


@pytest.mark.asyncio
async def test_interval_reschedules_strictly_after_run(coordinator, store):
    record = _save(store, repeat=RepeatPolicy.EVERY_5M)
    await coordinator.tick(record.id, NOW)
    assert store.get_schedule(record.id).next_run_at == NOW + timedelta(minutes=5)


@pytest.mark.asyncio
async def test_pause_during_execution_is_kept(store, notifier, payments):
    record = _save(store)

    async def pause_while_running(leased):
        current = store.get_schedule(leased.id)
        current.active = False
        store.put_schedule(current)
        return ExecutionOutcome(success=True, text="done")

    executor = MagicMock()
    executor.execute = AsyncMock(side_effect=pause_while_running)
    coordinator = ExecutionCoordinator(store, executor, notifier, Config(), payments=payments)

    await coordinator.tick(record.id, NOW)

    saved = store.get_schedule(record.id)
    assert not saved.active
    assert saved.run_count == 1


# ── Lease exclusivity ─────────────────────────────────────


@pytest.mark.asyncio
async def test_overlapping_ticks_run_once(store, notifier, payments):
    record = _save(store)
    gate = asyncio.Event()

    async def slow(_record):
        await gate.wait()
        return ExecutionOutcome(success=True, text="done")

    executor = MagicMock()
    executor.execute = AsyncMock(side_effect=slow)
    coordinator = ExecutionCoordinator(store, executor, notifier, Config(), payments=payments)

    first = asyncio.create_task(coordinator.tick(record.id, NOW))
    await asyncio.sleep(0)
    second = await coordinator.tick(record.id, NOW + timedelta(seconds=30))
    gate.set()
    assert await first
    assert not second
    assert store.get_schedule(record.id).run_count == 1


# ── Store errors ──────────────────────────────────────────


@pytest.mark.asyncio
async def test_lease_write_failure_still_executes(coordinator, store, executor):
    record = _save(store)
    store.try_acquire_lease = MagicMock(side_effect=StoreError("disk full"))

    assert await coordinator.tick(record.id, NOW)
    executor.execute.assert_awaited_once()
    assert store.get_schedule(record.id).run_count == 1


@pytest.mark.asyncio
async def test_bookkeeping_write_failure_is_logged(coordinator, store, executor):
    record = _save(store)
    original_put = store.put_schedule
    store.put_schedule = MagicMock(side_effect=StoreError("disk full"))

    assert await coordinator.tick(record.id, NOW)

    store.put_schedule = original_put
    stuck = store.get_schedule(record.id)
    # lease stays until it expires; a later tick can proceed
    assert stuck.run_count == 0
    assert stuck.locked_until == NOW + timedelta(seconds=120)
    assert await coordinator.tick(record.id, NOW + timedelta(seconds=121))
    assert store.get_schedule(record.id).run_count == 1


# ── Notifications + billing ───────────────────────────────


@pytest.mark.asyncio
async def test_payment_success_notifies_creator(coordinator, store, notifier, executor):
    executor.execute.return_value = ExecutionOutcome(success=True, tx_reference="0xhash")
    record = _save(
        store,
        action=PaymentAction(amount_smallest_units=1, token_type="t", recipient_address="0xb0b"),
        notify_on_success=True,
        repeat=RepeatPolicy.WEEKLY,
        weeks=2,
    )

    await coordinator.tick(record.id, NOW)

    notifier.notify_success.assert_awaited_once()
    notifier.broadcast.assert_not_called()
    assert store.get_schedule(record.id).next_run_at == NOW + timedelta(weeks=2)


@pytest.mark.asyncio
async def test_prompt_success_bills_group(coordinator, store, executor, payments):
    store.set_group_credentials(100, "group-jwt")
    executor.execute.return_value = ExecutionOutcome(
        success=True,
        text="hi",
        model="openai/gpt-4.1",
        usage={"total_tokens": 500, "tool:web_search": 1},
    )
    record = _save(store)

    await coordinator.tick(record.id, NOW)

    jwt, request = payments.record_purchase.call_args.args
    assert jwt == "group-jwt"
    assert request.tokens_used == 500
    assert request.group_id == "100"
    assert [(t.tool, t.calls) for t in request.tools_used] == [("web_search", 1)]


@pytest.mark.asyncio
async def test_billing_disabled(store, executor, notifier, payments):
    store.set_group_credentials(100, "group-jwt")
    coordinator = ExecutionCoordinator(
        store, executor, notifier, Config(billing={"enabled": False}), payments=payments
    )
    record = _save(store)
    await coordinator.tick(record.id, NOW)
    payments.record_purchase.assert_not_called()


@pytest.mark.asyncio
async def test_credentials_read_failure_still_broadcasts(coordinator, store, notifier, payments):
    store.get_group_credentials = MagicMock(side_effect=StoreError("database is locked"))
    record = _save(store)

    assert await coordinator.tick(record.id, NOW)

    notifier.broadcast.assert_awaited_once()
    payments.record_purchase.assert_not_called()
    assert store.get_schedule(record.id).run_count == 1


@pytest.mark.asyncio
async def test_delivery_error_does_not_break_tick(coordinator, store, notifier):
    notifier.broadcast.side_effect = TelegramError("chat not found")
    record = _save(store)

    assert await coordinator.tick(record.id, NOW)
    assert store.get_schedule(record.id).run_count == 1
