"""FastAPI dependency injection: pull singletons from app.state."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

from schedbot.core.config.schema import Config
from schedbot.memory.store import BotStore

if TYPE_CHECKING:
    from schedbot.core.channels.telegram import TelegramClient
    from schedbot.core.cron.scheduler import CronRegistrar
    from schedbot.wizard import ScheduleControls, Wizard


def get_config(request: Request) -> Config:
    return request.app.state.config


def get_store(request: Request) -> BotStore:
    return request.app.state.store


def get_telegram(request: Request) -> TelegramClient:
    return request.app.state.telegram


def get_wizard(request: Request) -> Wizard:
    return request.app.state.wizard


def get_controls(request: Request) -> ScheduleControls:
    return request.app.state.controls


def get_registrar(request: Request) -> CronRegistrar:
    return request.app.state.registrar
