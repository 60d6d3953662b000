"""In-memory implementation of the checkpoint repository."""

from __future__ import annotations

from datetime import datetime
from typing import Dict

from ..contracts import utcnow
from .models import RunCheckpoint
from .repository import CheckpointRepository


class InMemoryCheckpointRepository(CheckpointRepository):
    """Store checkpoints in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._runs: Dict[str, RunCheckpoint] = {}

    # ------------------------------------------------------------------
    async def create_run(self, run_id: str, descriptor: dict) -> None:
        if run_id in self._runs:
            return
        self._runs[run_id] = RunCheckpoint(run_id=run_id, descriptor=dict(descriptor))

    async def record_attempt(
        self, run_id: str, step_id: str, attempt: int, retry_at: datetime | None = None
    ) -> None:
        run = self._runs.get(run_id)
        if run:
            run.attempts[step_id] = attempt
            run.retry_at = retry_at
            run.updated_at = utcnow()

    async def record_step_output(self, run_id: str, step_id: str, output: dict) -> None:
        run = self._runs.get(run_id)
        if not run:
            return
        # first recorded output wins
        run.outputs.setdefault(step_id, dict(output))
        run.retry_at = None
        run.updated_at = utcnow()

    async def mark_run_finished(
        self, run_id: str, status: str, error: dict | None = None
    ) -> None:
        run = self._runs.get(run_id)
        if run and not run.is_finished:
            run.status = status
            run.error = error
            run.retry_at = None
            run.updated_at = utcnow()

    async def get_run(self, run_id: str) -> RunCheckpoint | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def list_runs(self, status: str | None = None) -> list[RunCheckpoint]:
        return [
            run.model_copy(deep=True)
            for run in self._runs.values()
            if status is None or run.status == status
        ]
