"""Crash, restart and durable backoff behaviour of the engine."""

import asyncio
import time
from datetime import timedelta

import pytest

from repoflow.agents import AgentReport, CodeAgent
from repoflow.constants import ANALYZE_REPOSITORY, EXECUTE_CHANGES, INITIALIZE_SANDBOX
from repoflow.contracts import RunDescriptor, utcnow
from repoflow.errors import TransientServiceError
from repoflow.persistence import SQLiteCheckpointRepository
from repoflow.status import RunStatusStore


class BlockingAgent(CodeAgent):
    """Never returns, standing in for a process that dies mid-step."""

    def __init__(self):
        self.started = asyncio.Event()

    async def modify(self, prompt, session, candidate_files):
        self.started.set()
        await asyncio.Event().wait()
        return AgentReport(response="unreachable")


async def _checkpointed_run(repo, start_request, outputs, attempts=None, retry_at=None):
    descriptor = RunDescriptor.from_request(start_request)
    await repo.create_run("run-1", descriptor.to_checkpoint())
    for step_id, output in outputs.items():
        await repo.record_step_output("run-1", step_id, output)
    for step_id, attempt in (attempts or {}).items():
        await repo.record_attempt("run-1", step_id, attempt, retry_at)
    return "run-1"


INITIALIZED = {
    "repo_locator": "https://github.com/acme/widgets",
    "repo_info": "origin\thttps://github.com/acme/widgets.git (fetch)",
    "default_branch": "develop",
}
ANALYZED = {
    "files_to_modify": ["app/page.tsx"],
    "analysis": {
        "prompt": "Add a footer to the homepage",
        "repo_info": "origin",
        "root_structure": "app\nREADME.md",
        "suggested_files": ["app/page.tsx"],
    },
}


@pytest.mark.asyncio
async def test_interrupted_run_resumes_at_inflight_step(make_harness, start_request):
    blocking = BlockingAgent()
    first = make_harness(agent=blocking)
    run_id = await first.engine.start(start_request)
    await asyncio.wait_for(blocking.started.wait(), timeout=5)

    # the process goes away while Execute is in flight
    first.engine._tasks[run_id].cancel()
    checkpoint = await first.engine.wait(run_id)
    assert checkpoint.status == "running"
    assert set(checkpoint.outputs) == {INITIALIZE_SANDBOX, ANALYZE_REPOSITORY}
    assert first.sessions.open_sessions == []

    second = make_harness(repository=first.repository, store=first.store)
    await second.engine.resume(run_id)
    checkpoint = await second.engine.wait(run_id)

    assert checkpoint.status == "completed"
    assert second.host.calls == ["open"]
    assert "git remote -v" not in second.sessions.commands
    assert "ls -la ." not in second.sessions.commands
    run = await second.store.get(run_id)
    assert all(s.status == "completed" for s in run.steps)


@pytest.mark.asyncio
async def test_restart_replays_recorded_outputs(make_harness, start_request, tmp_path):
    repo = SQLiteCheckpointRepository(tmp_path / "runs.db")
    run_id = await _checkpointed_run(
        repo, start_request, {INITIALIZE_SANDBOX: INITIALIZED, ANALYZE_REPOSITORY: ANALYZED}
    )

    # fresh process: new repository handle, empty status store
    harness = make_harness(repository=SQLiteCheckpointRepository(tmp_path / "runs.db"))
    resumed = await harness.engine.resume_pending()
    assert resumed == [run_id]
    checkpoint = await harness.engine.wait(run_id)

    assert checkpoint.status == "completed"
    assert harness.host.calls == ["open"]
    assert harness.host.change_requests[harness.sessions.pushed_branches[0]].branch
    run = await harness.store.get(run_id)
    assert run.step(INITIALIZE_SANDBOX).status == "completed"
    assert run.step(ANALYZE_REPOSITORY).status == "completed"
    assert run.status == "completed"


@pytest.mark.asyncio
async def test_resume_uses_recorded_default_branch(make_harness, start_request):
    harness = make_harness()
    run_id = await _checkpointed_run(
        harness.repository, start_request, {INITIALIZE_SANDBOX: INITIALIZED, ANALYZE_REPOSITORY: ANALYZED}
    )
    opened = []
    original = harness.host.open_change_request

    async def recording_open(locator, credential, head, base, title, body):
        opened.append(base)
        return await original(locator, credential, head=head, base=base, title=title, body=body)

    harness.host.open_change_request = recording_open
    await harness.engine.resume(run_id)
    await harness.engine.wait(run_id)
    assert opened == ["develop"]


@pytest.mark.asyncio
async def test_backoff_remainder_and_attempt_count_survive_restart(make_harness, start_request):
    harness = make_harness()
    run_id = await _checkpointed_run(
        harness.repository,
        start_request,
        {},
        attempts={INITIALIZE_SANDBOX: 2},
        retry_at=utcnow() + timedelta(seconds=0.3),
    )

    started = time.monotonic()
    await harness.engine.resume(run_id)
    checkpoint = await harness.engine.wait(run_id)

    assert time.monotonic() - started >= 0.2
    assert checkpoint.status == "completed"
    assert checkpoint.attempts[INITIALIZE_SANDBOX] == 3


@pytest.mark.asyncio
async def test_attempt_budget_is_shared_across_restarts(make_harness, start_request):
    harness = make_harness()
    harness.host.fail_next("describe", TransientServiceError("api flapping"))
    # attempt 3 failed and the engine went down while backing off
    run_id = await _checkpointed_run(
        harness.repository, start_request, {}, attempts={INITIALIZE_SANDBOX: 3}, retry_at=utcnow()
    )

    await harness.engine.resume(run_id)
    checkpoint = await harness.engine.wait(run_id)

    assert checkpoint.status == "failed"
    assert checkpoint.error["attempts"] == 4
    assert checkpoint.error["step_id"] == INITIALIZE_SANDBOX


@pytest.mark.asyncio
async def test_interrupted_attempt_is_rerun_under_the_same_number(make_harness, start_request):
    harness = make_harness()
    run_id = await _checkpointed_run(
        harness.repository, start_request, {}, attempts={INITIALIZE_SANDBOX: 4}
    )

    await harness.engine.resume(run_id)
    checkpoint = await harness.engine.wait(run_id)

    assert checkpoint.status == "completed"
    assert checkpoint.attempts[INITIALIZE_SANDBOX] == 4


@pytest.mark.asyncio
async def test_interrupted_last_attempt_does_not_extend_the_budget(make_harness, start_request):
    harness = make_harness()
    harness.host.fail_next("describe", *[TransientServiceError("api flapping")] * 3)
    run_id = await _checkpointed_run(
        harness.repository, start_request, {}, attempts={INITIALIZE_SANDBOX: 4}
    )

    await harness.engine.resume(run_id)
    checkpoint = await harness.engine.wait(run_id)

    assert checkpoint.status == "failed"
    assert checkpoint.error["attempts"] == 4
    assert harness.host.calls == ["describe"]


@pytest.mark.asyncio
async def test_finished_and_unknown_runs(harness, start_request):
    run_id = await harness.engine.start(start_request)
    await harness.engine.wait(run_id)

    assert await harness.engine.resume(run_id) is None
    assert await harness.engine.resume_pending() == []
    with pytest.raises(KeyError):
        await harness.engine.resume("missing")


@pytest.mark.asyncio
async def test_replayed_execute_is_not_repeated(make_harness, start_request):
    harness = make_harness(store=RunStatusStore())
    run_id = await harness.engine.start(start_request)
    await harness.engine.wait(run_id)
    branches = list(harness.sessions.pushed_branches)

    # executing a finished run is a no-op
    await harness.engine.execute(run_id)
    assert harness.sessions.pushed_branches == branches
    assert EXECUTE_CHANGES in (await harness.repository.get_run(run_id)).outputs
