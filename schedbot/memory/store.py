"""SQLite-backed store for schedbot.

Two logical namespaces carry the engine state:
    wizard_sessions  (group_id, creator_id) → WizardState JSON
    schedules        schedule_id            → ScheduleRecord JSON

Group-scoped listing scans and filters; no secondary index is kept.
Supporting tables: preferences, group_credentials, wallets.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from schedbot.core.errors import StoreError
from schedbot.core.schedule.types import ActionKind, ScheduleRecord, WizardState


class BotStore:
    """SQLite store: single source of truth for wizards and schedules."""

    def __init__(self, db_path: str = "data/schedbot.db"):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        logger.info(f"BotStore initialized: {db_path}")

    @contextmanager
    def _get_conn(self):
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StoreError(f"cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def _init_db(self):
        with self._get_conn() as conn:
            conn.executescript(_SCHEMA)
            conn.commit()

    # ════════════════════════════════════════════════════════════
    # WIZARD SESSIONS
    # ════════════════════════════════════════════════════════════

    def get_wizard(self, group_id: int, creator_id: int) -> WizardState | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT data FROM wizard_sessions WHERE group_id = ? AND creator_id = ?",
                (group_id, creator_id),
            ).fetchone()
        if not row:
            return None
        try:
            return WizardState.model_validate_json(row["data"])
        except PydanticValidationError as e:
            logger.warning(f"Dropping unreadable wizard ({group_id}, {creator_id}): {e}")
            return None

    def put_wizard(self, state: WizardState) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO wizard_sessions (group_id, creator_id, data, updated_at)
                   VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                   ON CONFLICT(group_id, creator_id)
                   DO UPDATE SET data = excluded.data, updated_at = CURRENT_TIMESTAMP""",
                (state.group_id, state.creator_id, state.model_dump_json()),
            )
            conn.commit()

    def delete_wizard(self, group_id: int, creator_id: int) -> bool:
        with self._get_conn() as conn:
            cur = conn.execute(
                "DELETE FROM wizard_sessions WHERE group_id = ? AND creator_id = ?",
                (group_id, creator_id),
            )
            conn.commit()
        return cur.rowcount > 0

    # ════════════════════════════════════════════════════════════
    # SCHEDULES
    # ════════════════════════════════════════════════════════════

    def get_schedule(self, schedule_id: str) -> ScheduleRecord | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT data FROM schedules WHERE schedule_id = ?", (schedule_id,)
            ).fetchone()
        return self._decode(row["data"]) if row else None

    def put_schedule(self, record: ScheduleRecord) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO schedules (schedule_id, data) VALUES (?, ?)
                   ON CONFLICT(schedule_id) DO UPDATE SET data = excluded.data""",
                (record.id, record.model_dump_json()),
            )
            conn.commit()

    def list_schedules(self) -> list[ScheduleRecord]:
        """Every decodable record, in insertion order."""
        with self._get_conn() as conn:
            rows = conn.execute("SELECT data FROM schedules ORDER BY rowid").fetchall()
        records = (self._decode(r["data"]) for r in rows)
        return [r for r in records if r is not None]

    def list_active_for_group(
        self, group_id: int, kind: ActionKind | None = None
    ) -> list[ScheduleRecord]:
        """Active records of a group (full scan + filter)."""
        return [
            r
            for r in self.list_schedules()
            if r.group_id == group_id and r.active and (kind is None or r.kind == kind)
        ]

    def try_acquire_lease(
        self, schedule_id: str, now: datetime, until: datetime
    ) -> ScheduleRecord | None:
        """Claim the lease if the record is active and unleased (or expired).

        Compare-and-set inside one IMMEDIATE transaction, so two claimants
        cannot both succeed. Returns the leased record, or None.
        """
        with self._get_conn() as conn:
            conn.isolation_level = None
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute(
                    "SELECT data FROM schedules WHERE schedule_id = ?", (schedule_id,)
                ).fetchone()
                record = self._decode(row["data"]) if row else None
                if (
                    record is None
                    or not record.active
                    or (record.locked_until is not None and now < record.locked_until)
                ):
                    conn.execute("ROLLBACK")
                    return None
                record.locked_until = until
                conn.execute(
                    "UPDATE schedules SET data = ? WHERE schedule_id = ?",
                    (record.model_dump_json(), schedule_id),
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return record

    @staticmethod
    def _decode(data: str) -> ScheduleRecord | None:
        try:
            return ScheduleRecord.model_validate_json(data)
        except PydanticValidationError as e:
            logger.warning(f"Skipping unreadable schedule row: {e}")
            return None

    # ════════════════════════════════════════════════════════════
    # PREFERENCES (model / temperature per username)
    # ════════════════════════════════════════════════════════════

    def get_preferences(self, username: str) -> dict[str, Any]:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT data FROM preferences WHERE username = ?", (username,)
            ).fetchone()
        return json.loads(row["data"]) if row else {}

    def update_preferences(self, username: str, data: dict[str, Any]) -> None:
        """Merge ``data`` into the stored preferences."""
        current = self.get_preferences(username)
        current.update(data)
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO preferences (username, data) VALUES (?, ?)
                   ON CONFLICT(username) DO UPDATE SET data = excluded.data""",
                (username, json.dumps(current, ensure_ascii=False)),
            )
            conn.commit()

    # ════════════════════════════════════════════════════════════
    # GROUP CREDENTIALS
    # ════════════════════════════════════════════════════════════

    def set_group_credentials(self, group_id: int, jwt: str) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO group_credentials (group_id, jwt, updated_at)
                   VALUES (?, ?, CURRENT_TIMESTAMP)
                   ON CONFLICT(group_id)
                   DO UPDATE SET jwt = excluded.jwt, updated_at = CURRENT_TIMESTAMP""",
                (group_id, jwt),
            )
            conn.commit()

    def get_group_credentials(self, group_id: int) -> str | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT jwt FROM group_credentials WHERE group_id = ?", (group_id,)
            ).fetchone()
        return row["jwt"] if row else None

    # ════════════════════════════════════════════════════════════
    # WALLETS (@username → address)
    # ════════════════════════════════════════════════════════════

    def link_wallet(self, username: str, address: str) -> None:
        with self._get_conn() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO wallets (username, address) VALUES (?, ?)",
                (username.lstrip("@").lower(), address),
            )
            conn.commit()

    def resolve_wallet(self, username: str) -> str | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT address FROM wallets WHERE username = ?",
                (username.lstrip("@").lower(),),
            ).fetchone()
        return row["address"] if row else None

    def count_schedules(self) -> dict[str, int]:
        """Totals for status output."""
        records = self.list_schedules()
        return {
            "total": len(records),
            "active": sum(1 for r in records if r.active),
            "wizards": self._count("wizard_sessions"),
        }

    def _count(self, table: str) -> int:
        with self._get_conn() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


# ════════════════════════════════════════════════════════════
# SCHEMA
# ════════════════════════════════════════════════════════════

_SCHEMA = """
CREATE TABLE IF NOT EXISTS wizard_sessions (
    group_id INTEGER NOT NULL,
    creator_id INTEGER NOT NULL,
    data TEXT NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (group_id, creator_id)
);

CREATE TABLE IF NOT EXISTS schedules (
    schedule_id TEXT PRIMARY KEY,
    data TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS preferences (
    username TEXT PRIMARY KEY,
    data TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS group_credentials (
    group_id INTEGER PRIMARY KEY,
    jwt TEXT NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS wallets (
    username TEXT PRIMARY KEY,
    address TEXT NOT NULL
);
"""
