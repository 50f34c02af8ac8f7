"""Next-run computation for every repeat policy.

All functions are pure: same ``now`` and anchor → same result. Times are
UTC-aware datetimes. When ``now`` lands exactly on an anchor instant the
result equals ``now`` (run-now semantics); otherwise it is strictly later.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta

from schedbot.core.schedule.types import RepeatPolicy, ScheduleRecord

MONTH = timedelta(days=30)  # fixed offset, not calendar-aware


def _anchor_today(now: datetime, hour: int, minute: int) -> datetime:
    return datetime.combine(now.date(), time(hour, minute), tzinfo=now.tzinfo)


def next_daily_at(now: datetime, hour: int, minute: int) -> datetime:
    anchor = _anchor_today(now, hour, minute)
    return anchor if now <= anchor else anchor + timedelta(days=1)


def next_every_n_minutes_at(now: datetime, n: int, start_minute: int) -> datetime:
    """Smallest minute ≥ now congruent to ``start_minute`` modulo ``n``."""
    add = (start_minute + 60 - now.minute) % n
    if add == 0 and (now.second or now.microsecond):
        add = n
    target = now + timedelta(minutes=add)
    return target.replace(second=0, microsecond=0)


def next_n_hourly_at(now: datetime, n: int, hour: int, minute: int) -> datetime:
    anchor = _anchor_today(now, hour, minute)
    if now <= anchor:
        return anchor
    step = timedelta(hours=n)
    k = -(-(now - anchor) // step)  # ceil division
    return anchor + k * step


def next_weekly_at(now: datetime, hour: int, minute: int, weeks: int = 1) -> datetime:
    anchor = _anchor_today(now, hour, minute)
    return anchor if now <= anchor else anchor + timedelta(days=7 * max(weeks, 1))


def next_monthly_at(now: datetime, hour: int, minute: int) -> datetime:
    anchor = _anchor_today(now, hour, minute)
    return anchor if now <= anchor else anchor + MONTH


def next_run(
    now: datetime,
    repeat: RepeatPolicy,
    hour: int,
    minute: int,
    weeks: int | None = None,
) -> datetime:
    """Next due instant for ``repeat`` anchored at ``hour:minute`` UTC."""
    if repeat.minutes:
        return next_every_n_minutes_at(now, repeat.minutes, minute)
    if repeat.hours:
        return next_n_hourly_at(now, repeat.hours, hour, minute)
    if repeat is RepeatPolicy.WEEKLY:
        return next_weekly_at(now, hour, minute, weeks or 1)
    if repeat is RepeatPolicy.MONTHLY:
        return next_monthly_at(now, hour, minute)
    # DAILY and NONE
    return next_daily_at(now, hour, minute)


def next_run_for(record: ScheduleRecord, now: datetime) -> datetime:
    return next_run(now, record.repeat, record.hour, record.minute, record.weeks)


def first_run_at(record: ScheduleRecord, now: datetime) -> datetime:
    """Seed value for ``next_run_at``: a configured start wins over the policy."""
    if record.start_at is not None and record.start_at >= now:
        return record.start_at
    return next_run_for(record, now)
