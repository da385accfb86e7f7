"""
SQLite trigger store.

Uses aiosqlite for async SQLite access.
WAL mode enabled for concurrent read support.

Tables:
    triggers     — trigger definitions, last_fired_at, webhook_token UNIQUE
    work_items   — produced tasks; idempotency_key UNIQUE (NULLs allowed)
    firing_log   — append-only audit trail
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

import aiosqlite

from cronfire.core.errors import StorageError
from cronfire.scheduler.models import (
    FiringLogEntry,
    Trigger,
    TriggerType,
    WorkItem,
    format_timestamp,
    parse_timestamp,
)
from cronfire.store.base import TriggerStore

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS triggers (
        id                        TEXT PRIMARY KEY,
        agent_id                  TEXT NOT NULL,
        workspace_id              TEXT NOT NULL,
        trigger_type              TEXT NOT NULL DEFAULT 'cron',
        cron_expression           TEXT,
        task_title_template       TEXT NOT NULL,
        task_description_template TEXT NOT NULL DEFAULT '',
        enabled                   INTEGER NOT NULL DEFAULT 1,
        last_fired_at             TEXT,
        created_at                TEXT NOT NULL,
        webhook_token             TEXT UNIQUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS work_items (
        id                TEXT PRIMARY KEY,
        workspace_id      TEXT NOT NULL,
        title             TEXT NOT NULL,
        description       TEXT NOT NULL,
        assigned_agent_id TEXT NOT NULL,
        created_by        TEXT NOT NULL,
        status            TEXT NOT NULL,
        priority          TEXT NOT NULL,
        scheduled_for     TEXT NOT NULL,
        metadata          TEXT NOT NULL DEFAULT '{}',
        idempotency_key   TEXT UNIQUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS firing_log (
        id           TEXT PRIMARY KEY,
        trigger_id   TEXT NOT NULL,
        work_item_id TEXT,
        status       TEXT NOT NULL,
        error        TEXT,
        fired_at     TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_triggers_due ON triggers(trigger_type, enabled)",
    "CREATE INDEX IF NOT EXISTS idx_firing_log_trigger ON firing_log(trigger_id, fired_at)",
)


class SQLiteTriggerStore(TriggerStore):
    """
    SQLite-backed TriggerStore.

    Usage:
        store = SQLiteTriggerStore("~/.cronfire/cronfire.db")
        await store.initialize()

        triggers = await store.list_due_candidate_triggers()
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the database and create tables."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._db = await aiosqlite.connect(str(self._db_path))
            self._db.row_factory = aiosqlite.Row

            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA synchronous=NORMAL")
            for statement in _SCHEMA:
                await self._db.execute(statement)
            await self._db.commit()
            logger.debug(f"Trigger store initialized at {self._db_path}")

        except Exception as e:
            raise StorageError(f"Failed to initialize SQLite at {self._db_path}: {e}") from e

    async def _ensure_db(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        return self._db  # type: ignore[return-value]

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    # ── Scheduler operations ────────────────────────────────────────────────

    async def list_due_candidate_triggers(self) -> list[Trigger]:
        db = await self._ensure_db()
        try:
            async with db.execute(
                """
                SELECT * FROM triggers
                WHERE trigger_type = ? AND enabled = 1 AND cron_expression IS NOT NULL
                ORDER BY created_at ASC
                """,
                (TriggerType.CRON,),
            ) as cursor:
                rows = await cursor.fetchall()
            return [Trigger.from_dict(dict(row)) for row in rows]
        except Exception as e:
            raise StorageError(f"Failed to list due candidate triggers: {e}") from e

    async def insert_work_item(self, work_item: WorkItem) -> str:
        db = await self._ensure_db()
        try:
            cursor = await db.execute(
                """
                INSERT INTO work_items (
                    id, workspace_id, title, description, assigned_agent_id,
                    created_by, status, priority, scheduled_for, metadata, idempotency_key
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(idempotency_key) DO NOTHING
                """,
                (
                    work_item.id,
                    work_item.workspace_id,
                    work_item.title,
                    work_item.description,
                    work_item.assigned_agent_id,
                    work_item.created_by,
                    work_item.status,
                    work_item.priority,
                    format_timestamp(work_item.scheduled_for),
                    json.dumps(work_item.metadata, default=str),
                    work_item.idempotency_key,
                ),
            )
            await db.commit()
            if cursor.rowcount > 0:
                return work_item.id

            async with db.execute(
                "SELECT id FROM work_items WHERE idempotency_key = ?",
                (work_item.idempotency_key,),
            ) as existing:
                row = await existing.fetchone()
            logger.info(
                f"Work item for key {work_item.idempotency_key} already exists "
                f"({row['id']}), not duplicating"
            )
            return row["id"]
        except Exception as e:
            raise StorageError(f"Failed to insert work item: {e}") from e

    async def update_trigger_last_fired(self, trigger_id: str, timestamp: datetime) -> None:
        db = await self._ensure_db()
        stamp = format_timestamp(timestamp)
        try:
            await db.execute(
                """
                UPDATE triggers SET last_fired_at = ?
                WHERE id = ? AND (last_fired_at IS NULL OR last_fired_at < ?)
                """,
                (stamp, trigger_id, stamp),
            )
            await db.commit()
        except Exception as e:
            raise StorageError(f"Failed to update last_fired_at for {trigger_id}: {e}") from e

    async def append_firing_log(
        self,
        trigger_id: str,
        work_item_id: str | None,
        status: str,
        error: str | None = None,
    ) -> None:
        db = await self._ensure_db()
        entry = FiringLogEntry(
            trigger_id=trigger_id,
            work_item_id=work_item_id,
            status=status,
            error=error,
        )
        try:
            await db.execute(
                """
                INSERT INTO firing_log (id, trigger_id, work_item_id, status, error, fired_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.trigger_id,
                    entry.work_item_id,
                    entry.status,
                    entry.error,
                    format_timestamp(entry.fired_at),
                ),
            )
            await db.commit()
        except Exception as e:
            raise StorageError(f"Failed to append firing log for {trigger_id}: {e}") from e

    # ── Management operations ───────────────────────────────────────────────

    async def save_trigger(self, trigger: Trigger) -> None:
        db = await self._ensure_db()
        try:
            await db.execute(
                """
                INSERT INTO triggers (
                    id, agent_id, workspace_id, trigger_type, cron_expression,
                    task_title_template, task_description_template, enabled,
                    last_fired_at, created_at, webhook_token
                ) VALUES (
                    :id, :agent_id, :workspace_id, :trigger_type, :cron_expression,
                    :task_title_template, :task_description_template, :enabled,
                    :last_fired_at, :created_at, :webhook_token
                )
                ON CONFLICT(id) DO UPDATE SET
                    agent_id=excluded.agent_id, workspace_id=excluded.workspace_id,
                    trigger_type=excluded.trigger_type,
                    cron_expression=excluded.cron_expression,
                    task_title_template=excluded.task_title_template,
                    task_description_template=excluded.task_description_template,
                    enabled=excluded.enabled,
                    webhook_token=excluded.webhook_token
                """,
                {**trigger.to_dict(), "enabled": int(trigger.enabled)},
            )
            await db.commit()
        except Exception as e:
            raise StorageError(f"Failed to save trigger {trigger.id}: {e}") from e

    async def get_trigger(self, trigger_id: str) -> Trigger | None:
        db = await self._ensure_db()
        try:
            async with db.execute(
                "SELECT * FROM triggers WHERE id = ?", (trigger_id,)
            ) as cursor:
                row = await cursor.fetchone()
            return Trigger.from_dict(dict(row)) if row else None
        except Exception as e:
            raise StorageError(f"Failed to get trigger {trigger_id}: {e}") from e

    async def get_trigger_by_token(self, webhook_token: str) -> Trigger | None:
        db = await self._ensure_db()
        try:
            async with db.execute(
                "SELECT * FROM triggers WHERE webhook_token = ? AND trigger_type = ?",
                (webhook_token, TriggerType.WEBHOOK),
            ) as cursor:
                row = await cursor.fetchone()
            return Trigger.from_dict(dict(row)) if row else None
        except Exception as e:
            raise StorageError(f"Failed to look up webhook trigger: {e}") from e

    async def list_triggers(self, agent_id: str | None = None) -> list[Trigger]:
        db = await self._ensure_db()
        query = "SELECT * FROM triggers"
        params: tuple = ()
        if agent_id is not None:
            query += " WHERE agent_id = ?"
            params = (agent_id,)
        query += " ORDER BY created_at DESC"
        try:
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
            return [Trigger.from_dict(dict(row)) for row in rows]
        except Exception as e:
            raise StorageError(f"Failed to list triggers: {e}") from e

    async def set_trigger_enabled(self, trigger_id: str, enabled: bool) -> bool:
        db = await self._ensure_db()
        try:
            cursor = await db.execute(
                "UPDATE triggers SET enabled = ? WHERE id = ?",
                (int(enabled), trigger_id),
            )
            await db.commit()
            return cursor.rowcount > 0
        except Exception as e:
            raise StorageError(f"Failed to update trigger {trigger_id}: {e}") from e

    async def delete_trigger(self, trigger_id: str) -> bool:
        db = await self._ensure_db()
        try:
            cursor = await db.execute("DELETE FROM triggers WHERE id = ?", (trigger_id,))
            await db.commit()
            return cursor.rowcount > 0
        except Exception as e:
            raise StorageError(f"Failed to delete trigger {trigger_id}: {e}") from e

    async def list_firing_log(self, trigger_id: str, limit: int = 20) -> list[FiringLogEntry]:
        db = await self._ensure_db()
        try:
            async with db.execute(
                """
                SELECT * FROM firing_log WHERE trigger_id = ?
                ORDER BY fired_at DESC, rowid DESC LIMIT ?
                """,
                (trigger_id, limit),
            ) as cursor:
                rows = await cursor.fetchall()
        except Exception as e:
            raise StorageError(f"Failed to list firing log for {trigger_id}: {e}") from e

        return [
            FiringLogEntry(
                id=row["id"],
                trigger_id=row["trigger_id"],
                work_item_id=row["work_item_id"],
                status=row["status"],
                error=row["error"],
                fired_at=parse_timestamp(row["fired_at"]),
            )
            for row in rows
        ]

    async def list_work_items(self, workspace_id: str | None = None) -> list[WorkItem]:
        db = await self._ensure_db()
        query = "SELECT * FROM work_items"
        params: tuple = ()
        if workspace_id is not None:
            query += " WHERE workspace_id = ?"
            params = (workspace_id,)
        query += " ORDER BY rowid ASC"
        try:
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        except Exception as e:
            raise StorageError(f"Failed to list work items: {e}") from e

        return [
            WorkItem(
                id=row["id"],
                workspace_id=row["workspace_id"],
                title=row["title"],
                description=row["description"],
                assigned_agent_id=row["assigned_agent_id"],
                created_by=row["created_by"],
                status=row["status"],
                priority=row["priority"],
                scheduled_for=parse_timestamp(row["scheduled_for"]),
                metadata=json.loads(row["metadata"]),
                idempotency_key=row["idempotency_key"],
            )
            for row in rows
        ]
