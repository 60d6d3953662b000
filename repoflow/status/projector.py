"""Best-effort projection of step progress for polling clients.

The checkpoint log owned by the engine is authoritative. The projector only
mirrors progress into a status store so that pollers see it quickly; a
failed projection is logged and never fails the step that reported it.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set, Tuple

from ..contracts import utcnow
from .models import Run
from .store import RunStatusStore, StatusSink

logger = logging.getLogger(__name__)

StallCallback = Callable[[str, str, float], Optional[Awaitable[None]]]


class StatusProjector:
    """Side channel through which steps report their own progress."""

    def __init__(self, sink: StatusSink) -> None:
        self.sink = sink

    async def _project(self, action: str, run_id: str, call: Awaitable[Run | None]) -> Run | None:
        try:
            return await call
        except Exception as exc:
            logger.warning(
                f"Status projection '{action}' failed for run {run_id}: {exc}",
                exc_info=True,
            )
            return None

    async def ensure_run(self, run_id: str, step_ids: Iterable[str]) -> Run | None:
        return await self._project("create", run_id, self.sink.create_run(run_id, list(step_ids)))

    async def step_started(self, run_id: str, step_id: str) -> Run | None:
        return await self._project(
            "start", run_id, self.sink.update_step(run_id, step_id, "running")
        )

    async def step_completed(self, run_id: str, step_id: str) -> Run | None:
        return await self._project(
            "complete", run_id, self.sink.update_step(run_id, step_id, "completed")
        )

    async def step_failed(self, run_id: str, step_id: str, message: str) -> Run | None:
        return await self._project(
            "fail", run_id, self.sink.update_step(run_id, step_id, "failed", message)
        )

    async def publish_result(self, run_id: str, result: Dict[str, Any]) -> Run | None:
        return await self._project("result", run_id, self.sink.attach_result(run_id, result))

    async def fail_run(
        self,
        run_id: str,
        message: str,
        step_id: Optional[str] = None,
        category: Optional[str] = None,
        verdict: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> Run | None:
        return await self._project(
            "set-error",
            run_id,
            self.sink.set_run_error(
                run_id,
                message,
                step_id=step_id,
                category=category,
                verdict=verdict,
                attempts=attempts,
            ),
        )

    async def complete_run(
        self, run_id: str, result: Optional[Dict[str, Any]] = None
    ) -> Run | None:
        return await self._project("finish", run_id, self.sink.complete_run(run_id, result))


class StepWatchdog:
    """Flags steps that have been running longer than expected.

    The watchdog cannot tell a slow step from a crashed one, so it only
    emits a diagnostic; it never changes a status.
    """

    def __init__(
        self,
        store: RunStatusStore,
        step_bounds: Dict[str, float],
        interval: float = 5.0,
        on_stall: Optional[StallCallback] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.step_bounds = dict(step_bounds)
        self.interval = interval
        self.on_stall = on_stall
        self._clock = clock
        self.flagged: Set[Tuple[str, str]] = set()
        self._task: Optional[asyncio.Task] = None

    async def check_once(self) -> list[Tuple[str, str]]:
        """Inspect running steps once; return the (run, step) pairs newly flagged."""
        now = self._clock()
        newly_flagged: list[Tuple[str, str]] = []
        running: Set[Tuple[str, str]] = set()
        for run in await self.store.list_runs():
            if run.status != "running":
                continue
            for step in run.steps:
                bound = self.step_bounds.get(step.id)
                if step.status != "running" or step.started_at is None or bound is None:
                    continue
                key = (run.run_id, step.id)
                running.add(key)
                elapsed = (now - step.started_at).total_seconds()
                if elapsed <= bound or key in self.flagged:
                    continue
                self.flagged.add(key)
                newly_flagged.append(key)
                logger.warning(
                    f"Step {step.id} of run {run.run_id} has been running for "
                    f"{elapsed:.0f}s (expected under {bound:.0f}s); it may have stalled"
                )
                if self.on_stall is not None:
                    outcome = self.on_stall(run.run_id, step.id, elapsed)
                    if inspect.isawaitable(outcome):
                        await outcome
        # steps that finished or whose run is gone no longer need a mark
        self.flagged &= running
        return newly_flagged

    async def run_forever(self) -> None:
        while True:
            try:
                await self.check_once()
            except Exception:
                logger.exception("Watchdog check failed")
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever())
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
