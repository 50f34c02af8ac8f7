"""Tests for schedbot.cli."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from schedbot.cli.commands import app
from schedbot.core.config import Config
from schedbot.core.schedule.types import PromptAction, RepeatPolicy, ScheduleRecord, utcnow
from schedbot.memory.store import BotStore

runner = CliRunner()

_PATCH_CONFIG = "schedbot.core.config.loader.load_config"


@pytest.fixture
def config(tmp_path):
    return Config(database={"path": str(tmp_path / "test.db")})


@pytest.fixture
def store(config):
    return BotStore(config.database.path)


def _invoke(config, *args):
    with patch(_PATCH_CONFIG, return_value=config):
        return runner.invoke(app, list(args), env={"COLUMNS": "200"})


def _record(store, **kw) -> ScheduleRecord:
    record = ScheduleRecord(
        group_id=42,
        creator_id=1,
        creator_name="alice",
        hour=9,
        repeat=RepeatPolicy.DAILY,
        action=PromptAction(prompt="digest"),
        **kw,
    )
    store.put_schedule(record)
    return record


def test_cli_help():
    """--help works and shows command names."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for name in ("run", "status", "schedules", "wallet", "group", "prefs"):
        assert name in result.output


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "schedbot v" in result.output


def test_status_output(config, store):
    _record(store)
    _record(store, active=False)
    result = _invoke(config, "status")
    assert result.exit_code == 0
    assert "10/50" in result.output
    assert "Schedules" in result.output


def test_schedules_list_empty(config, store):
    result = _invoke(config, "schedules", "list")
    assert result.exit_code == 0
    assert "No schedules found" in result.output


def test_schedules_list_filters_inactive(config, store):
    _record(store, active=False)
    result = _invoke(config, "schedules", "list")
    assert "No schedules found" in result.output

    result = _invoke(config, "schedules", "list", "--all")
    assert result.exit_code == 0
    assert "inactive" in result.output


def test_schedules_list_by_group(config, store):
    _record(store)
    result = _invoke(config, "schedules", "list", "--group", "7")
    assert "No schedules found" in result.output
    result = _invoke(config, "schedules", "list", "-g", "42")
    assert "Daily" in result.output


def test_pause_and_resume(config, store):
    record = _record(store, next_run_at=utcnow() - timedelta(days=2))

    result = _invoke(config, "schedules", "pause", record.id)
    assert result.exit_code == 0
    assert not store.get_schedule(record.id).active

    result = _invoke(config, "schedules", "resume", record.id)
    assert result.exit_code == 0
    resumed = store.get_schedule(record.id)
    assert resumed.active
    assert resumed.next_run_at > utcnow() - timedelta(minutes=1)


def test_resume_refuses_deleted_and_spent_records(config, store):
    deleted = _record(store, active=False, deleted=True)
    result = _invoke(config, "schedules", "resume", deleted.id)
    assert result.exit_code == 1
    assert "Schedule not found" in result.output

    spent = _record(store, active=False, run_count=1)
    spent.repeat = RepeatPolicy.NONE
    store.put_schedule(spent)
    result = _invoke(config, "schedules", "resume", spent.id)
    assert result.exit_code == 1
    assert "already ran" in result.output

    assert not store.get_schedule(deleted.id).active
    assert not store.get_schedule(spent.id).active


def test_run_now(config, store):
    record = _record(store, next_run_at=utcnow() + timedelta(days=1))
    result = _invoke(config, "schedules", "run-now", record.id)
    assert result.exit_code == 0
    assert store.get_schedule(record.id).next_run_at <= utcnow()


def test_unknown_schedule_exits_nonzero(config, store):
    result = _invoke(config, "schedules", "pause", "missing")
    assert result.exit_code == 1
    assert "Schedule not found" in result.output


def test_wallet_link(config, store):
    result = _invoke(config, "wallet", "link", "@Bob", "0xb0b")
    assert result.exit_code == 0
    assert store.resolve_wallet("bob") == "0xb0b"


def test_group_credentials(config, store):
    result = _invoke(config, "group", "credentials", "42", "jwt-token")
    assert result.exit_code == 0
    assert store.get_group_credentials(42) == "jwt-token"


def test_prefs_set(config, store):
    result = _invoke(config, "prefs", "set", "alice", "--model", "openai/gpt-4o", "-t", "0.2")
    assert result.exit_code == 0
    assert store.get_preferences("alice") == {"model": "openai/gpt-4o", "temperature": 0.2}


def test_prefs_set_requires_a_value(config):
    result = _invoke(config, "prefs", "set", "alice")
    assert result.exit_code == 1
