"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from schedbot import __version__
from schedbot.api.routes import router as core_router
from schedbot.core.actions import ActionDispatcher, PaymentTransferExecutor, PromptBroadcastExecutor
from schedbot.core.channels.telegram import TelegramClient
from schedbot.core.channels.telegram import router as telegram_router
from schedbot.core.config.loader import load_config, setup_logging
from schedbot.core.config.schema import Config
from schedbot.core.cron.notifier import Notifier
from schedbot.core.cron.runner import ExecutionCoordinator
from schedbot.core.cron.scheduler import CronRegistrar, RecoveryBootstrapper
from schedbot.core.providers import (
    LiteLLMContentGenerator,
    PaymentClient,
    PromptGuard,
    TokenRegistry,
)
from schedbot.core.schedule.types import ActionKind
from schedbot.memory.store import BotStore
from schedbot.wizard import ScheduleControls, Wizard


def wire(app: FastAPI, config: Config, store: BotStore) -> None:
    """Build the engine and attach every singleton to ``app.state``."""
    telegram = TelegramClient(config.telegram.bot_token, api_base=config.telegram.api_base)
    payments = PaymentClient(config.payments.api_base)
    dispatcher = ActionDispatcher(
        {
            ActionKind.PROMPT: PromptBroadcastExecutor(
                store, LiteLLMContentGenerator(config), config.assistant
            ),
            ActionKind.PAYMENT: PaymentTransferExecutor(store, payments),
        }
    )
    coordinator = ExecutionCoordinator(
        store, dispatcher, Notifier(telegram, config.payments), config, payments=payments
    )
    registrar = CronRegistrar(coordinator)
    guard = PromptGuard(config.assistant.guard_model) if config.scheduler.prompt_guard else None

    app.state.config = config
    app.state.store = store
    app.state.telegram = telegram
    app.state.coordinator = coordinator
    app.state.registrar = registrar
    app.state.wizard = Wizard(store, registrar, config, TokenRegistry(config.payments), guard=guard)
    app.state.controls = ScheduleControls(store, registrar, config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: Config → BotStore → engine → recovery → scheduler. Shutdown: stop timers."""
    config = load_config()
    setup_logging(config)
    store = BotStore(str(config.db_path))
    wire(app, config, store)

    registrar: CronRegistrar = app.state.registrar
    if config.scheduler.enabled:
        RecoveryBootstrapper(store, registrar).recover()
        await registrar.start()
    else:
        logger.warning("Scheduler disabled; no timers will fire")

    logger.info(f"schedbot API started (model: {config.assistant.model})")
    yield

    await registrar.stop()
    logger.info("schedbot API shutting down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="schedbot API",
        description="Scheduled prompts and payments for Telegram groups",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(core_router)
    app.include_router(telegram_router)
    return app


app = create_app()
