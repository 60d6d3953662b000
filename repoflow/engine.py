"""Durable execution of the step pipeline.

The engine owns the checkpoint log. After every step it records the step's
plain output; a restarted engine replays recorded outputs instead of running
those steps again, so only the step that was in flight at the time of a
crash is executed a second time.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel

from .classifier import ErrorClassifier, Verdict, categorize
from .contracts import RunDescriptor, parse_repo_locator, utcnow
from .errors import StepAborted
from .persistence import CheckpointRepository, RunCheckpoint
from .status import StatusProjector
from .steps import PIPELINE, Step, StepContext, StepServices
from .utils.retry import RetryPolicy, schedule_retry

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Runs the fixed pipeline for each run, one asyncio task per run."""

    def __init__(
        self,
        repository: CheckpointRepository,
        projector: StatusProjector,
        services: StepServices,
        retry_policy: Optional[RetryPolicy] = None,
        steps: Sequence[Step] = PIPELINE,
    ) -> None:
        self.repository = repository
        self.projector = projector
        self.services = services
        self.retry_policy = retry_policy or RetryPolicy()
        self.steps = tuple(steps)
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def classifier(self) -> ErrorClassifier:
        return self.services.classifier

    def pipeline_for(self, descriptor: RunDescriptor) -> List[Step]:
        return [step for step in self.steps if step.applies_to(descriptor)]

    # ------------------------------------------------------------------
    async def start(self, descriptor: Union[RunDescriptor, Dict[str, Any]]) -> str:
        """Validate ``descriptor``, persist the run and execute it in the background.

        Raises:
            ValidationError: If the request is missing or has malformed fields.
        """
        if not isinstance(descriptor, RunDescriptor):
            descriptor = RunDescriptor.from_request(descriptor)
        parse_repo_locator(descriptor.repo_locator)

        run_id = str(uuid.uuid4())
        await self.repository.create_run(run_id, descriptor.to_checkpoint())
        await self.projector.ensure_run(
            run_id, [step.id for step in self.pipeline_for(descriptor)]
        )
        logger.info(f"Started run {run_id} for {descriptor.repo_locator}")
        self._spawn(run_id)
        return run_id

    async def resume(self, run_id: str) -> Optional[asyncio.Task]:
        """Re-attach to an unfinished run; return ``None`` if it already finished."""
        checkpoint = await self.repository.get_run(run_id)
        if checkpoint is None:
            raise KeyError(f"Unknown run {run_id}")
        if checkpoint.is_finished:
            return None
        logger.info(f"Resuming run {run_id}")
        return self._spawn(run_id)

    async def resume_pending(self) -> List[str]:
        """Resume every run the checkpoint log still shows as running."""
        resumed = []
        for checkpoint in await self.repository.list_runs(status="running"):
            self._spawn(checkpoint.run_id)
            resumed.append(checkpoint.run_id)
        if resumed:
            logger.info(f"Resumed {len(resumed)} unfinished run(s)")
        return resumed

    async def restore_finished(self) -> List[str]:
        """Project finished runs from the checkpoint log into the status sink.

        A restarted process starts with an empty status store; this keeps
        completed and failed runs pollable.
        """
        restored = []
        for checkpoint in await self.repository.list_runs():
            if not checkpoint.is_finished:
                continue
            await self._project_finished(checkpoint)
            restored.append(checkpoint.run_id)
        if restored:
            logger.info(f"Restored status of {len(restored)} finished run(s)")
        return restored

    async def _project_finished(self, checkpoint: RunCheckpoint) -> None:
        run_id = checkpoint.run_id
        descriptor = RunDescriptor.model_validate(checkpoint.descriptor)
        steps = self.pipeline_for(descriptor)
        await self.projector.ensure_run(run_id, [step.id for step in steps])

        result: Dict[str, Any] = {}
        for step in steps:
            recorded = checkpoint.outputs.get(step.id)
            if recorded is None:
                continue
            await self.projector.step_completed(run_id, step.id)
            public = step.public_result(step.output_model.model_validate(recorded))
            if public:
                result.update(public)

        if checkpoint.status == "completed":
            await self.projector.complete_run(run_id, result or None)
            return
        if result:
            await self.projector.publish_result(run_id, result)
        error = checkpoint.error or {}
        await self.projector.fail_run(
            run_id,
            error.get("message") or "Run failed",
            step_id=error.get("step_id"),
            category=error.get("category"),
            verdict=error.get("verdict"),
            attempts=error.get("attempts"),
        )

    async def wait(self, run_id: str) -> Optional[RunCheckpoint]:
        """Wait for the background task of ``run_id`` and return its checkpoint."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.wait([task])
        return await self.repository.get_run(run_id)

    def _spawn(self, run_id: str) -> asyncio.Task:
        task = self._tasks.get(run_id)
        if task is not None and not task.done():
            return task
        task = asyncio.create_task(self.execute(run_id), name=f"repoflow-run-{run_id}")
        self._tasks[run_id] = task
        task.add_done_callback(lambda done: self._on_task_done(run_id, done))
        return task

    def _on_task_done(self, run_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(run_id) is task:
            del self._tasks[run_id]
        if task.cancelled():
            logger.info(f"Run {run_id} was interrupted; it can be resumed")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Run {run_id} stopped unexpectedly: {exc}", exc_info=exc)

    # ------------------------------------------------------------------
    async def execute(self, run_id: str) -> RunCheckpoint:
        """Run, or continue, the pipeline of ``run_id`` to a terminal state."""
        checkpoint = await self.repository.get_run(run_id)
        if checkpoint is None:
            raise KeyError(f"Unknown run {run_id}")
        if checkpoint.is_finished:
            return checkpoint

        descriptor = RunDescriptor.model_validate(checkpoint.descriptor)
        steps = self.pipeline_for(descriptor)
        await self.projector.ensure_run(run_id, [step.id for step in steps])

        outputs: Dict[str, BaseModel] = {}
        result: Dict[str, Any] = {}
        try:
            for step in steps:
                recorded = checkpoint.outputs.get(step.id)
                if recorded is not None:
                    logger.info(f"Replaying recorded output of {step.id} for run {run_id}")
                    output = step.output_model.model_validate(recorded)
                    await self.projector.step_completed(run_id, step.id)
                else:
                    output = await self._run_step(run_id, step, descriptor, outputs, checkpoint)
                    await self.repository.record_step_output(
                        run_id, step.id, output.model_dump(mode="json")
                    )
                outputs[step.id] = output

                public = step.public_result(output)
                if public:
                    result.update(public)
                    await self.projector.publish_result(run_id, public)
        except StepAborted as aborted:
            return await self._abort(run_id, aborted)

        await self.repository.mark_run_finished(run_id, "completed")
        await self.projector.complete_run(run_id, result or None)
        logger.info(f"Run {run_id} completed")
        return await self.repository.get_run(run_id)

    async def _run_step(
        self,
        run_id: str,
        step: Step,
        descriptor: RunDescriptor,
        outputs: Dict[str, BaseModel],
        checkpoint: RunCheckpoint,
    ) -> BaseModel:
        attempt = checkpoint.attempts.get(step.id, 0)
        if attempt and checkpoint.retry_at is None:
            # interrupted mid-attempt: run it again under the same number
            logger.info(f"Run {run_id} was interrupted during attempt {attempt} of {step.id}")
            attempt -= 1
        elif attempt:
            remaining = (checkpoint.retry_at - utcnow()).total_seconds()
            if remaining > 0:
                logger.info(
                    f"Run {run_id} was waiting to retry {step.id}; "
                    f"sleeping the remaining {remaining:.1f}s"
                )
                await schedule_retry(remaining)

        while True:
            attempt += 1
            await self.repository.record_attempt(run_id, step.id, attempt)
            ctx = StepContext(run_id=run_id, attempt=attempt, services=self.services)
            try:
                return await step.execute(ctx, step.build_input(descriptor, outputs))
            except Exception as exc:
                category = categorize(exc)
                verdict = self.classifier.verdict_for(category)
                if verdict is Verdict.FATAL:
                    raise StepAborted(
                        step.id, exc, category, Verdict.FATAL.value, attempt
                    ) from exc
                if attempt >= self.retry_policy.attempt_limit(category):
                    logger.error(
                        f"Step {step.id} of run {run_id} exhausted {attempt} attempt(s)"
                    )
                    raise StepAborted(
                        step.id, exc, category, Verdict.FATAL.value, attempt
                    ) from exc

                delay = self.retry_policy.delay_for(attempt)
                await self.repository.record_attempt(
                    run_id, step.id, attempt, utcnow() + timedelta(seconds=delay)
                )
                logger.warning(
                    f"Step {step.id} of run {run_id} failed on attempt {attempt} "
                    f"({category.value}): {exc}; retrying in {delay:.1f}s"
                )
                await schedule_retry(delay)

    async def _abort(self, run_id: str, aborted: StepAborted) -> RunCheckpoint:
        message = str(aborted.cause) or type(aborted.cause).__name__
        error = {
            "message": message,
            "step_id": aborted.step_id,
            "category": aborted.category.value,
            "verdict": aborted.verdict,
            "attempts": aborted.attempts,
        }
        await self.repository.mark_run_finished(run_id, "failed", error)
        await self.projector.fail_run(
            run_id,
            message,
            step_id=aborted.step_id,
            category=aborted.category.value,
            verdict=aborted.verdict,
            attempts=aborted.attempts,
        )
        logger.error(f"Run {run_id} failed at {aborted.step_id}: {message}")
        return await self.repository.get_run(run_id)
