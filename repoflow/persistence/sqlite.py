"""SQLite implementation of the checkpoint repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from ..contracts import utcnow
from .models import RunCheckpoint
from .repository import CheckpointRepository


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteCheckpointRepository(CheckpointRepository):
    """Persist checkpoints using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
                run_id TEXT PRIMARY KEY,
                descriptor TEXT NOT NULL,
                status TEXT NOT NULL,
                error TEXT,
                retry_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS step_checkpoints (
                run_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                output TEXT,
                completed_at TEXT,
                PRIMARY KEY (run_id, step_id)
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()

    def _execute_many(self, statements: list[tuple[str, tuple]]) -> None:
        with self._lock:
            cur = self._conn.cursor()
            for query, params in statements:
                cur.execute(query, params)
            self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def _load(self, row: sqlite3.Row) -> RunCheckpoint:
        step_rows = self._fetchall(
            "SELECT step_id, attempts, output FROM step_checkpoints WHERE run_id = ?",
            row["run_id"],
        )
        return RunCheckpoint(
            run_id=row["run_id"],
            descriptor=json.loads(row["descriptor"]),
            outputs={
                r["step_id"]: json.loads(r["output"]) for r in step_rows if r["output"]
            },
            attempts={r["step_id"]: r["attempts"] for r in step_rows if r["attempts"]},
            retry_at=_parse_ts(row["retry_at"]),
            status=row["status"],
            error=json.loads(row["error"]) if row["error"] else None,
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # Repository API
    async def create_run(self, run_id: str, descriptor: dict) -> None:
        now = utcnow().isoformat()
        await asyncio.to_thread(
            self._execute,
            "INSERT OR IGNORE INTO runs (run_id, descriptor, status, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            run_id,
            json.dumps(descriptor),
            "running",
            now,
            now,
        )

    async def record_attempt(
        self, run_id: str, step_id: str, attempt: int, retry_at: datetime | None = None
    ) -> None:
        now = utcnow().isoformat()
        await asyncio.to_thread(
            self._execute_many,
            [
                (
                    """
                    INSERT INTO step_checkpoints (run_id, step_id, attempts) VALUES (?, ?, ?)
                    ON CONFLICT (run_id, step_id) DO UPDATE SET attempts = excluded.attempts
                    """,
                    (run_id, step_id, attempt),
                ),
                (
                    "UPDATE runs SET retry_at = ?, updated_at = ? WHERE run_id = ?",
                    (retry_at.isoformat() if retry_at else None, now, run_id),
                ),
            ],
        )

    async def record_step_output(self, run_id: str, step_id: str, output: dict) -> None:
        now = utcnow().isoformat()
        await asyncio.to_thread(
            self._execute_many,
            [
                (
                    """
                    INSERT INTO step_checkpoints (run_id, step_id, output, completed_at) VALUES (?, ?, ?, ?)
                    ON CONFLICT (run_id, step_id) DO UPDATE SET
                        output = COALESCE(step_checkpoints.output, excluded.output),
                        completed_at = COALESCE(step_checkpoints.completed_at, excluded.completed_at)
                    """,
                    (run_id, step_id, json.dumps(output), now),
                ),
                (
                    "UPDATE runs SET retry_at = NULL, updated_at = ? WHERE run_id = ?",
                    (now, run_id),
                ),
            ],
        )

    async def mark_run_finished(
        self, run_id: str, status: str, error: dict | None = None
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE runs SET status = ?, error = ?, retry_at = NULL, updated_at = ?
            WHERE run_id = ? AND status = 'running'
            """,
            status,
            json.dumps(error) if error else None,
            utcnow().isoformat(),
            run_id,
        )

    async def get_run(self, run_id: str) -> RunCheckpoint | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM runs WHERE run_id = ?", run_id
        )
        if not row:
            return None
        return await asyncio.to_thread(self._load, row)

    async def list_runs(self, status: str | None = None) -> list[RunCheckpoint]:
        if status is None:
            rows = await asyncio.to_thread(
                self._fetchall, "SELECT * FROM runs ORDER BY created_at"
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT * FROM runs WHERE status = ? ORDER BY created_at",
                status,
            )
        return [await asyncio.to_thread(self._load, row) for row in rows]
