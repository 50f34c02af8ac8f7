"""Persistence: SQLite store for wizard sessions and schedule records."""

from schedbot.memory.store import BotStore

__all__ = ["BotStore"]
