"""Keyed store of run progress documents.

Writes for one run are serialized with a per-run lock and never mutate a
stored document in place: each write stores a fresh copy. Reads therefore
need no lock and always observe a complete document.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional, Protocol

from ..constants import CORE_STEP_IDS
from ..contracts import utcnow
from .models import TERMINAL_STEP_STATUSES, Run, RunError, StepRecord, can_transition

logger = logging.getLogger(__name__)


class StatusSink(Protocol):
    """Write side of the status store, shared by local and remote stores."""

    async def create_run(self, run_id: str, step_ids: Iterable[str] | None = None) -> Run:
        """Create a run document; a no-op if one exists."""

    async def update_step(
        self, run_id: str, step_id: str, status: str, error: str | None = None
    ) -> Run | None:
        """Move a step forward; regressions are ignored."""

    async def set_run_error(
        self,
        run_id: str,
        message: str,
        step_id: str | None = None,
        category: str | None = None,
        verdict: str | None = None,
        attempts: int | None = None,
    ) -> Run | None:
        """Fail and freeze the run."""

    async def complete_run(self, run_id: str, result: dict | None = None) -> Run | None:
        """Mark the run completed."""

    async def attach_result(self, run_id: str, result: dict) -> Run | None:
        """Merge plain result data into the run document."""

    async def get(self, run_id: str) -> Run | None:
        """Return a snapshot of the run document."""


class RunStatusStore(StatusSink):
    """In-process status store with optional expiry of finished runs."""

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._runs: Dict[str, Run] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    def _expired(self, run: Run, now: datetime) -> bool:
        if self.ttl_seconds is None or run.completed_at is None:
            return False
        return (now - run.completed_at).total_seconds() > self.ttl_seconds

    def _live(self, run_id: str) -> Optional[Run]:
        run = self._runs.get(run_id)
        if run is not None and self._expired(run, self._clock()):
            self._drop(run_id)
            return None
        return run

    def _lock(self, run_id: str) -> Optional[asyncio.Lock]:
        """Lock of a stored run; unknown runs never get one."""
        if self._live(run_id) is None:
            return None
        return self._locks.setdefault(run_id, asyncio.Lock())

    def _drop(self, run_id: str) -> None:
        self._runs.pop(run_id, None)
        self._locks.pop(run_id, None)

    def _store(self, run: Run) -> Run:
        self._runs[run.run_id] = run
        return run.model_copy(deep=True)

    # ------------------------------------------------------------------
    async def create_run(self, run_id: str, step_ids: Iterable[str] | None = None) -> Run:
        async with self._locks.setdefault(run_id, asyncio.Lock()):
            existing = self._live(run_id)
            if existing is not None:
                return existing.model_copy(deep=True)
            now = self._clock()
            run = Run(
                run_id=run_id,
                steps=[StepRecord(id=step_id) for step_id in (step_ids or CORE_STEP_IDS)],
                created_at=now,
                updated_at=now,
            )
            return self._store(run)

    async def update_step(
        self, run_id: str, step_id: str, status: str, error: str | None = None
    ) -> Run | None:
        lock = self._lock(run_id)
        if lock is None:
            return None
        async with lock:
            current = self._live(run_id)
            if current is None:
                self._drop(run_id)
                return None
            record = current.step(step_id)
            if current.status != "running" or record is None:
                return current.model_copy(deep=True)
            if not can_transition(record.status, status):
                if record.status != status:
                    logger.debug(
                        f"Ignoring {step_id} update {record.status} -> {status} for run {run_id}"
                    )
                return current.model_copy(deep=True)

            now = self._clock()
            updated = current.model_copy(deep=True)
            record = updated.step(step_id)
            record.status = status
            if record.started_at is None:
                record.started_at = now
            if status in TERMINAL_STEP_STATUSES:
                record.completed_at = now
            if error:
                record.error = error
            updated.updated_at = now
            return self._store(updated)

    async def set_run_error(
        self,
        run_id: str,
        message: str,
        step_id: str | None = None,
        category: str | None = None,
        verdict: str | None = None,
        attempts: int | None = None,
    ) -> Run | None:
        lock = self._lock(run_id)
        if lock is None:
            return None
        async with lock:
            current = self._live(run_id)
            if current is None:
                self._drop(run_id)
                return None
            if current.status != "running":
                return current.model_copy(deep=True)

            now = self._clock()
            updated = current.model_copy(deep=True)
            updated.status = "failed"
            updated.error = RunError(
                message=message,
                step_id=step_id,
                category=category,
                verdict=verdict,
                attempts=attempts,
            )
            updated.updated_at = now
            updated.completed_at = now
            record = updated.step(step_id) if step_id else None
            if record is not None and record.status != "completed":
                record.status = "failed"
                record.error = record.error or message
                record.started_at = record.started_at or now
                record.completed_at = record.completed_at or now
            return self._store(updated)

    async def complete_run(self, run_id: str, result: dict | None = None) -> Run | None:
        lock = self._lock(run_id)
        if lock is None:
            return None
        async with lock:
            current = self._live(run_id)
            if current is None:
                self._drop(run_id)
                return None
            if current.status != "running":
                return current.model_copy(deep=True)
            if any(step.status == "failed" for step in current.steps):
                logger.warning(f"Refusing to complete run {run_id} with a failed step")
                return current.model_copy(deep=True)

            now = self._clock()
            updated = current.model_copy(deep=True)
            updated.status = "completed"
            updated.updated_at = now
            updated.completed_at = now
            # Backfill: steps never reported as finished are shown completed.
            # This smooths the UI; it does not prove that the step ran.
            for record in updated.steps:
                if record.status not in TERMINAL_STEP_STATUSES:
                    record.status = "completed"
                    record.completed_at = record.completed_at or now
            if result:
                updated.result = {**(updated.result or {}), **result}
            return self._store(updated)

    async def attach_result(self, run_id: str, result: dict) -> Run | None:
        lock = self._lock(run_id)
        if lock is None:
            return None
        async with lock:
            current = self._live(run_id)
            if current is None:
                self._drop(run_id)
                return None
            updated = current.model_copy(deep=True)
            updated.result = {**(updated.result or {}), **result}
            updated.updated_at = self._clock()
            return self._store(updated)

    async def get(self, run_id: str) -> Run | None:
        run = self._live(run_id)
        return run.model_copy(deep=True) if run is not None else None

    async def list_runs(self) -> list[Run]:
        now = self._clock()
        return [
            run.model_copy(deep=True)
            for run in list(self._runs.values())
            if not self._expired(run, now)
        ]

    async def purge_expired(self) -> int:
        """Drop finished runs older than the TTL; return how many were dropped."""
        now = self._clock()
        expired = [run_id for run_id, run in list(self._runs.items()) if self._expired(run, now)]
        for run_id in expired:
            self._drop(run_id)
        if expired:
            logger.info(f"Purged {len(expired)} expired run(s)")
        return len(expired)
