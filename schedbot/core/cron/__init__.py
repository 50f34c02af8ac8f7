"""Cron scheduling: per-record timers, tick coordinator, notifications."""

from schedbot.core.cron.notifier import Notifier
from schedbot.core.cron.runner import ExecutionCoordinator
from schedbot.core.cron.scheduler import CronRegistrar, RecoveryBootstrapper

__all__ = ["CronRegistrar", "ExecutionCoordinator", "Notifier", "RecoveryBootstrapper"]
