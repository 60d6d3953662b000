"""Repository abstraction for the checkpoint log."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from .models import RunCheckpoint


class CheckpointRepository(Protocol):
    """Protocol for checkpoint persistence backends."""

    async def create_run(self, run_id: str, descriptor: dict) -> None:
        """Persist a new run. Creating an existing run is a no-op."""

    async def record_attempt(
        self, run_id: str, step_id: str, attempt: int, retry_at: datetime | None = None
    ) -> None:
        """Persist the attempt counter of a step and when it may run again."""

    async def record_step_output(self, run_id: str, step_id: str, output: dict) -> None:
        """Checkpoint the plain output of a completed step."""

    async def mark_run_finished(
        self, run_id: str, status: str, error: dict | None = None
    ) -> None:
        """Mark the run as completed or failed."""

    async def get_run(self, run_id: str) -> RunCheckpoint | None:
        """Retrieve the checkpoint of a run."""

    async def list_runs(self, status: str | None = None) -> list[RunCheckpoint]:
        """Return persisted runs, optionally filtered by status."""
