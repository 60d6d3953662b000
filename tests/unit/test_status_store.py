"""Tests for the run status store."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from repoflow.constants import CORE_STEP_IDS
from repoflow.status import RunStatusStore


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.mark.asyncio
async def test_create_run_is_idempotent():
    store = RunStatusStore()
    first = await store.create_run("r1")
    await store.update_step("r1", "initializeSandbox", "running")
    again = await store.create_run("r1")

    assert [s.id for s in first.steps] == list(CORE_STEP_IDS)
    assert again.step("initializeSandbox").status == "running"


@pytest.mark.asyncio
async def test_step_transitions_are_monotonic():
    store = RunStatusStore()
    await store.create_run("r1")
    await store.update_step("r1", "initializeSandbox", "running")
    await store.update_step("r1", "initializeSandbox", "completed")

    # stale and out-of-order updates are ignored
    run = await store.update_step("r1", "initializeSandbox", "running")
    assert run.step("initializeSandbox").status == "completed"
    run = await store.update_step("r1", "initializeSandbox", "failed", "late")
    assert run.step("initializeSandbox").status == "completed"
    assert run.step("initializeSandbox").error is None


@pytest.mark.asyncio
async def test_update_step_is_idempotent():
    clock = FakeClock()
    store = RunStatusStore(clock=clock)
    await store.create_run("r1")
    first = await store.update_step("r1", "analyzeRepository", "completed")
    clock.advance(5)
    second = await store.update_step("r1", "analyzeRepository", "completed")
    assert first == second


@pytest.mark.asyncio
async def test_pending_may_jump_to_completed():
    store = RunStatusStore()
    await store.create_run("r1")
    run = await store.update_step("r1", "analyzeRepository", "completed")
    record = run.step("analyzeRepository")
    assert record.status == "completed"
    assert record.started_at is not None
    assert record.completed_at is not None


@pytest.mark.asyncio
async def test_unknown_run_and_step():
    store = RunStatusStore()
    assert await store.update_step("missing", "initializeSandbox", "running") is None
    assert await store.set_run_error("missing", "boom") is None
    assert await store.complete_run("missing") is None
    assert await store.get("missing") is None

    await store.create_run("r1")
    run = await store.update_step("r1", "noSuchStep", "running")
    assert all(s.status == "pending" for s in run.steps)


@pytest.mark.asyncio
async def test_set_run_error_freezes_run():
    store = RunStatusStore()
    await store.create_run("r1")
    await store.update_step("r1", "initializeSandbox", "running")
    run = await store.set_run_error(
        "r1", "Bad credentials", step_id="initializeSandbox", category="auth", verdict="fatal", attempts=1
    )
    assert run.status == "failed"
    assert run.error.step_id == "initializeSandbox"
    assert run.error.category == "auth"
    assert run.step("initializeSandbox").status == "failed"
    assert run.step("initializeSandbox").error == "Bad credentials"

    # terminal: nothing moves any more
    again = await store.set_run_error("r1", "second", step_id="analyzeRepository")
    assert again.error.message == "Bad credentials"
    after = await store.update_step("r1", "analyzeRepository", "running")
    assert after.step("analyzeRepository").status == "pending"
    assert (await store.complete_run("r1")).status == "failed"


@pytest.mark.asyncio
async def test_complete_run_backfills_unreported_steps():
    store = RunStatusStore()
    await store.create_run("r1")
    await store.update_step("r1", "initializeSandbox", "completed")
    await store.update_step("r1", "analyzeRepository", "running")

    run = await store.complete_run("r1", {"prUrl": "https://github.com/acme/widgets/pull/1"})
    assert run.status == "completed"
    assert all(s.status == "completed" for s in run.steps)
    assert run.result == {"prUrl": "https://github.com/acme/widgets/pull/1"}


@pytest.mark.asyncio
async def test_complete_run_refuses_with_failed_step():
    store = RunStatusStore()
    await store.create_run("r1")
    await store.update_step("r1", "initializeSandbox", "failed", "boom")
    run = await store.complete_run("r1")
    assert run.status == "running"


@pytest.mark.asyncio
async def test_attach_result_merges():
    store = RunStatusStore()
    await store.create_run("r1")
    await store.attach_result("r1", {"prUrl": "u"})
    run = await store.attach_result("r1", {"prNumber": 3})
    assert run.result == {"prUrl": "u", "prNumber": 3}


@pytest.mark.asyncio
async def test_snapshots_are_isolated():
    store = RunStatusStore()
    await store.create_run("r1")
    snapshot = await store.get("r1")
    snapshot.steps[0].status = "failed"
    assert (await store.get("r1")).steps[0].status == "pending"


@pytest.mark.asyncio
async def test_concurrent_updates_are_serialized():
    store = RunStatusStore()
    await store.create_run("r1")
    await asyncio.gather(
        *(store.update_step("r1", step_id, "completed") for step_id in CORE_STEP_IDS),
        *(store.update_step("r1", step_id, "running") for step_id in CORE_STEP_IDS),
    )
    run = await store.get("r1")
    assert all(s.status == "completed" for s in run.steps)


@pytest.mark.asyncio
async def test_ttl_expires_finished_runs():
    clock = FakeClock()
    store = RunStatusStore(ttl_seconds=60, clock=clock)
    await store.create_run("done")
    await store.create_run("active")
    await store.complete_run("done")

    clock.advance(30)
    assert await store.get("done") is not None
    clock.advance(31)
    assert await store.get("done") is None
    assert await store.get("active") is not None

    await store.complete_run("active")
    clock.advance(61)
    assert await store.purge_expired() == 1
    assert await store.list_runs() == []


@pytest.mark.asyncio
async def test_document_uses_camel_case():
    store = RunStatusStore()
    await store.create_run("r1", ["initializeSandbox"])
    run = await store.set_run_error("r1", "boom", step_id="initializeSandbox")
    document = run.to_document()
    assert document["runId"] == "r1"
    assert document["error"]["stepId"] == "initializeSandbox"
    assert "completedAt" in document


@pytest.mark.asyncio
async def test_writes_to_unknown_runs_leave_nothing_behind():
    store = RunStatusStore()
    for i in range(50):
        run_id = f"missing-{i}"
        assert await store.update_step(run_id, "initializeSandbox", "running") is None
        assert await store.set_run_error(run_id, "boom") is None
        assert await store.complete_run(run_id) is None
        assert await store.attach_result(run_id, {"prUrl": "x"}) is None
    assert store._locks == {}
    assert await store.list_runs() == []


@pytest.mark.asyncio
async def test_expired_runs_release_their_lock():
    clock = FakeClock()
    store = RunStatusStore(ttl_seconds=60, clock=clock)
    await store.create_run("r1")
    await store.complete_run("r1")
    clock.advance(61)

    assert await store.update_step("r1", "initializeSandbox", "running") is None
    assert "r1" not in store._locks
