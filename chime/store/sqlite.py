"""
SQLite persistence gateway.

Uses aiosqlite for async SQLite access.
WAL mode enabled for concurrent read support.

Tables:
    agents    id PK, name, api_key, model, context, document_summaries (JSON),
              engagement_factor, linked_chat_id, is_active, created_at
    jobs      id PK, kind, payload, due_at, owner_id, active, created_at
    messages  id PK, agent_id, role, content, author_name, created_at
    media     id PK, job_id, kind, path
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import aiosqlite

from chime.core.errors import StorageError
from chime.scheduler.job import Job, JobKind
from chime.store.base import PersistenceGateway
from chime.store.records import (
    Agent,
    MediaRecord,
    StoredMessage,
    check_agent_patch,
    check_job_patch,
    check_message_role,
)

logger = logging.getLogger(__name__)

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS agents (
        id                 TEXT PRIMARY KEY,
        name               TEXT NOT NULL,
        api_key            TEXT NOT NULL DEFAULT '',
        model              TEXT NOT NULL DEFAULT '',
        context            TEXT NOT NULL DEFAULT '',
        document_summaries TEXT NOT NULL DEFAULT '[]',
        engagement_factor  REAL NOT NULL DEFAULT 0.5,
        linked_chat_id     TEXT,
        is_active          INTEGER NOT NULL DEFAULT 1,
        created_at         REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS jobs (
        id         TEXT PRIMARY KEY,
        kind       TEXT NOT NULL,
        payload    TEXT NOT NULL,
        due_at     REAL NOT NULL,
        owner_id   TEXT,
        active     INTEGER NOT NULL DEFAULT 1,
        created_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id          TEXT PRIMARY KEY,
        agent_id    TEXT NOT NULL,
        role        TEXT NOT NULL,
        content     TEXT NOT NULL,
        author_name TEXT,
        created_at  REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS media (
        id     TEXT PRIMARY KEY,
        job_id TEXT NOT NULL,
        kind   TEXT NOT NULL,
        path   TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_jobs_active ON jobs(active)",
    "CREATE INDEX IF NOT EXISTS idx_messages_agent ON messages(agent_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_media_job ON media(job_id)",
]


class SQLiteGateway(PersistenceGateway):
    """
    SQLite-backed persistence gateway.

    Usage:
        gateway = SQLiteGateway("~/.chime/chime.db")
        await gateway.initialize()

        job = await gateway.create_job(job)
        active = await gateway.find_jobs(active=True)
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Initialize the database and create tables."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._db = await aiosqlite.connect(str(self._db_path))
            self._db.row_factory = aiosqlite.Row

            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA synchronous=NORMAL")
            for statement in _SCHEMA:
                await self._db.execute(statement)
            await self._db.commit()
            logger.debug(f"SQLite gateway initialized at {self._db_path}")

        except Exception as e:
            raise StorageError(f"Failed to initialize SQLite at {self._db_path}: {e}") from e

    async def _ensure_db(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        return self._db  # type: ignore[return-value]

    async def _fetch_all(self, query: str, params: tuple = ()) -> list[aiosqlite.Row]:
        db = await self._ensure_db()
        try:
            async with db.execute(query, params) as cursor:
                return list(await cursor.fetchall())
        except Exception as e:
            raise StorageError(f"Query failed: {e}") from e

    async def _fetch_one(self, query: str, params: tuple = ()) -> aiosqlite.Row | None:
        rows = await self._fetch_all(query, params)
        return rows[0] if rows else None

    async def _write(self, query: str, params: tuple | dict = ()) -> int:
        db = await self._ensure_db()
        try:
            cursor = await db.execute(query, params)
            await db.commit()
            return cursor.rowcount
        except Exception as e:
            raise StorageError(f"Write failed: {e}") from e

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    # ━━━ Jobs ━━━

    async def find_jobs(
        self,
        active: bool | None = None,
        owner_id: str | None = None,
    ) -> list[Job]:
        clauses: list[str] = []
        params: list[Any] = []
        if active is not None:
            clauses.append("active = ?")
            params.append(int(active))
        if owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(owner_id)
        query = "SELECT * FROM jobs"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY due_at ASC"
        return [_row_to_job(r) for r in await self._fetch_all(query, tuple(params))]

    async def get_job(self, job_id: str) -> Job | None:
        row = await self._fetch_one("SELECT * FROM jobs WHERE id = ?", (job_id,))
        return _row_to_job(row) if row else None

    async def create_job(self, job: Job) -> Job:
        await self._write(
            """
            INSERT INTO jobs (id, kind, payload, due_at, owner_id, active, created_at)
            VALUES (:id, :kind, :payload, :due_at, :owner_id, :active, :created_at)
            """,
            {**job.to_dict(), "active": int(job.active)},
        )
        return job

    async def update_job(self, job_id: str, **patch: Any) -> Job:
        patch = check_job_patch(patch)
        if "kind" in patch:
            patch["kind"] = JobKind(patch["kind"]).value
        if "active" in patch:
            patch["active"] = int(bool(patch["active"]))
        await self._apply_patch("jobs", job_id, patch)
        job = await self.get_job(job_id)
        if job is None:
            raise StorageError(f"Job {job_id} not found")
        return job

    async def delete_job(self, job_id: str) -> bool:
        await self._write("DELETE FROM media WHERE job_id = ?", (job_id,))
        return await self._write("DELETE FROM jobs WHERE id = ?", (job_id,)) > 0

    # ━━━ Messages ━━━

    async def find_messages(
        self,
        agent_id: str,
        limit: int = 100,
        newest_first: bool = True,
    ) -> list[StoredMessage]:
        rows = await self._fetch_all(
            "SELECT * FROM messages WHERE agent_id = ? ORDER BY created_at DESC LIMIT ?",
            (agent_id, limit),
        )
        messages = [_row_to_message(r) for r in rows]
        if not newest_first:
            messages.reverse()
        return messages

    async def create_message(self, message: StoredMessage) -> StoredMessage:
        check_message_role(message.role)
        await self._write(
            """
            INSERT INTO messages (id, agent_id, role, content, author_name, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                message.id,
                message.agent_id,
                message.role,
                message.content,
                message.author_name,
                message.created_at,
            ),
        )
        return message

    async def delete_message(self, message_id: str) -> bool:
        return await self._write("DELETE FROM messages WHERE id = ?", (message_id,)) > 0

    # ━━━ Agents ━━━

    async def get_agent(self, agent_id: str) -> Agent | None:
        row = await self._fetch_one("SELECT * FROM agents WHERE id = ?", (agent_id,))
        return _row_to_agent(row) if row else None

    async def find_agents(
        self,
        linked_only: bool = False,
        active_only: bool = False,
    ) -> list[Agent]:
        query = "SELECT * FROM agents WHERE 1 = 1"
        if linked_only:
            query += " AND linked_chat_id IS NOT NULL AND linked_chat_id != ''"
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY created_at ASC"
        return [_row_to_agent(r) for r in await self._fetch_all(query)]

    async def find_agent_by_chat(self, chat_id: str) -> Agent | None:
        row = await self._fetch_one(
            "SELECT * FROM agents WHERE linked_chat_id = ? AND is_active = 1 "
            "ORDER BY created_at ASC LIMIT 1",
            (chat_id,),
        )
        return _row_to_agent(row) if row else None

    async def create_agent(self, agent: Agent) -> Agent:
        await self._write(
            """
            INSERT INTO agents (id, name, api_key, model, context, document_summaries,
                                engagement_factor, linked_chat_id, is_active, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                agent.id,
                agent.name,
                agent.api_key,
                agent.model,
                agent.context,
                json.dumps(agent.document_summaries),
                agent.engagement_factor,
                agent.linked_chat_id,
                int(agent.is_active),
                agent.created_at,
            ),
        )
        return agent

    async def update_agent(self, agent_id: str, **patch: Any) -> Agent:
        patch = check_agent_patch(patch)
        if "document_summaries" in patch:
            patch["document_summaries"] = json.dumps(list(patch["document_summaries"]))
        if "is_active" in patch:
            patch["is_active"] = int(bool(patch["is_active"]))
        await self._apply_patch("agents", agent_id, patch)
        agent = await self.get_agent(agent_id)
        if agent is None:
            raise StorageError(f"Agent {agent_id} not found")
        return agent

    # ━━━ Media ━━━

    async def find_media(self, job_id: str, kind: str) -> MediaRecord | None:
        row = await self._fetch_one(
            "SELECT * FROM media WHERE job_id = ? AND kind = ? LIMIT 1",
            (job_id, kind),
        )
        return MediaRecord(**dict(row)) if row else None

    async def create_media(self, media: MediaRecord) -> MediaRecord:
        await self._write(
            "INSERT INTO media (id, job_id, kind, path) VALUES (?, ?, ?, ?)",
            (media.id, media.job_id, media.kind, media.path),
        )
        return media

    # ━━━ Helpers ━━━

    async def _apply_patch(self, table: str, row_id: str, patch: dict[str, Any]) -> None:
        # Column names come from the checked field whitelists, never from callers
        if not patch:
            return
        assignments = ", ".join(f"{column} = :{column}" for column in patch)
        await self._write(
            f"UPDATE {table} SET {assignments} WHERE id = :row_id",
            {**patch, "row_id": row_id},
        )


def _row_to_job(row: aiosqlite.Row) -> Job:
    return Job.from_dict(dict(row))


def _row_to_message(row: aiosqlite.Row) -> StoredMessage:
    return StoredMessage(**dict(row))


def _row_to_agent(row: aiosqlite.Row) -> Agent:
    d = dict(row)
    d["document_summaries"] = json.loads(d["document_summaries"] or "[]")
    d["is_active"] = bool(d["is_active"])
    return Agent(**d)
