"""PostgreSQL implementation of the checkpoint repository."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

import asyncpg

from ..contracts import utcnow
from .models import RunCheckpoint
from .repository import CheckpointRepository


def _json(value: Any) -> Any:
    # asyncpg hands JSONB back as text unless a codec is registered
    return json.loads(value) if isinstance(value, str) else value


class PostgresCheckpointRepository(CheckpointRepository):
    """Persist checkpoints using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
                run_id TEXT PRIMARY KEY,
                descriptor JSONB NOT NULL,
                status TEXT NOT NULL,
                error JSONB,
                retry_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS step_checkpoints (
                run_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                output JSONB,
                completed_at TIMESTAMPTZ,
                PRIMARY KEY (run_id, step_id)
            )
            """
        )

    async def _load(self, conn: asyncpg.Connection, row: asyncpg.Record) -> RunCheckpoint:
        step_rows = await conn.fetch(
            "SELECT step_id, attempts, output FROM step_checkpoints WHERE run_id = $1",
            row["run_id"],
        )
        return RunCheckpoint(
            run_id=row["run_id"],
            descriptor=_json(row["descriptor"]),
            outputs={r["step_id"]: _json(r["output"]) for r in step_rows if r["output"]},
            attempts={r["step_id"]: r["attempts"] for r in step_rows if r["attempts"]},
            retry_at=row["retry_at"],
            status=row["status"],
            error=_json(row["error"]) if row["error"] else None,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ------------------------------------------------------------------
    async def create_run(self, run_id: str, descriptor: dict) -> None:
        conn = await self._connect()
        try:
            now = utcnow()
            await conn.execute(
                """
                INSERT INTO runs (run_id, descriptor, status, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5) ON CONFLICT (run_id) DO NOTHING
                """,
                run_id,
                json.dumps(descriptor),
                "running",
                now,
                now,
            )
        finally:
            await conn.close()

    async def record_attempt(
        self, run_id: str, step_id: str, attempt: int, retry_at: datetime | None = None
    ) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO step_checkpoints (run_id, step_id, attempts) VALUES ($1, $2, $3)
                    ON CONFLICT (run_id, step_id) DO UPDATE SET attempts = EXCLUDED.attempts
                    """,
                    run_id,
                    step_id,
                    attempt,
                )
                await conn.execute(
                    "UPDATE runs SET retry_at = $1, updated_at = $2 WHERE run_id = $3",
                    retry_at,
                    utcnow(),
                    run_id,
                )
        finally:
            await conn.close()

    async def record_step_output(self, run_id: str, step_id: str, output: dict) -> None:
        conn = await self._connect()
        try:
            now = utcnow()
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO step_checkpoints (run_id, step_id, output, completed_at)
                    VALUES ($1, $2, $3, $4)
                    ON CONFLICT (run_id, step_id) DO UPDATE SET
                        output = COALESCE(step_checkpoints.output, EXCLUDED.output),
                        completed_at = COALESCE(step_checkpoints.completed_at, EXCLUDED.completed_at)
                    """,
                    run_id,
                    step_id,
                    json.dumps(output),
                    now,
                )
                await conn.execute(
                    "UPDATE runs SET retry_at = NULL, updated_at = $1 WHERE run_id = $2",
                    now,
                    run_id,
                )
        finally:
            await conn.close()

    async def mark_run_finished(
        self, run_id: str, status: str, error: dict | None = None
    ) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                UPDATE runs SET status = $1, error = $2, retry_at = NULL, updated_at = $3
                WHERE run_id = $4 AND status = 'running'
                """,
                status,
                json.dumps(error) if error else None,
                utcnow(),
                run_id,
            )
        finally:
            await conn.close()

    async def get_run(self, run_id: str) -> RunCheckpoint | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow("SELECT * FROM runs WHERE run_id = $1", run_id)
            if not row:
                return None
            return await self._load(conn, row)
        finally:
            await conn.close()

    async def list_runs(self, status: str | None = None) -> list[RunCheckpoint]:
        conn = await self._connect()
        try:
            if status is None:
                rows = await conn.fetch("SELECT * FROM runs ORDER BY created_at")
            else:
                rows = await conn.fetch(
                    "SELECT * FROM runs WHERE status = $1 ORDER BY created_at", status
                )
            return [await self._load(conn, row) for row in rows]
        finally:
            await conn.close()
