"""End-to-end pipeline runs against in-memory collaborators."""

import asyncio

import pytest

from repoflow.agents import AgentReport, CodeAgent
from repoflow.constants import (
    ANALYZE_REPOSITORY,
    CORE_STEP_IDS,
    CREATE_PULL_REQUEST,
    EXECUTE_CHANGES,
    INITIALIZE_SANDBOX,
    NOTIFY_USER,
)
from repoflow.errors import AuthError, TransientServiceError, ValidationError
from repoflow.hosts import InMemoryHost
from repoflow.notify import Notifier
from repoflow.sessions import CommandResult, InMemorySessionFactory
from repoflow.status import RunStatusStore


class RecordingStore(RunStatusStore):
    """Remembers every step update it was asked to apply."""

    def __init__(self):
        super().__init__()
        self.updates = []

    async def update_step(self, run_id, step_id, status, error=None):
        self.updates.append((step_id, status))
        return await super().update_step(run_id, step_id, status, error)


class FailingNotifier(Notifier):
    async def send(self, data):
        raise AuthError("mail relay rejected credentials")


@pytest.mark.asyncio
async def test_run_completes(harness, start_request):
    run_id = await harness.engine.start(start_request)
    checkpoint = await harness.engine.wait(run_id)

    assert checkpoint.status == "completed"
    assert set(checkpoint.outputs) == set(CORE_STEP_IDS)

    run = await harness.store.get(run_id)
    assert run.status == "completed"
    assert [s.id for s in run.steps] == list(CORE_STEP_IDS)
    assert all(s.status == "completed" for s in run.steps)
    assert run.result == {"prUrl": "https://github.com/acme/widgets/pull/1", "prNumber": 1}

    assert harness.sessions.open_sessions == []
    assert len(harness.sessions.pushed_branches) == 1
    assert list(harness.host.change_requests) == harness.sessions.pushed_branches


@pytest.mark.asyncio
async def test_run_with_recipient_notifies(harness, start_request):
    run_id = await harness.engine.start({**start_request, "recipient": "dev@example.com"})
    checkpoint = await harness.engine.wait(run_id)

    assert checkpoint.status == "completed"
    assert checkpoint.outputs[NOTIFY_USER]["status"] == "sent"
    run = await harness.store.get(run_id)
    assert run.step(NOTIFY_USER).status == "completed"
    assert harness.notifier.sent[0]["to"] == "dev@example.com"


@pytest.mark.asyncio
async def test_invalid_credential_fails_initialize(harness, start_request):
    run_id = await harness.engine.start({**start_request, "credential": "ghp_revoked"})
    checkpoint = await harness.engine.wait(run_id)

    assert checkpoint.status == "failed"
    assert checkpoint.error["step_id"] == INITIALIZE_SANDBOX
    run = await harness.store.get(run_id)
    assert run.status == "failed"
    assert run.error.step_id == INITIALIZE_SANDBOX
    assert run.error.category == "auth"
    assert run.error.verdict == "fatal"
    assert run.error.attempts == 1
    assert run.step(INITIALIZE_SANDBOX).status == "failed"
    assert all(s.status == "pending" for s in run.steps[1:])
    assert harness.agent.calls == []


@pytest.mark.asyncio
async def test_transient_failure_is_retried_silently(make_harness, start_request):
    store = RecordingStore()
    harness = make_harness(store=store)
    harness.sessions.fail_command("ls", TransientServiceError("sandbox hiccup"))

    run_id = await harness.engine.start(start_request)
    checkpoint = await harness.engine.wait(run_id)

    assert checkpoint.status == "completed"
    assert checkpoint.attempts[ANALYZE_REPOSITORY] == 2
    assert ("analyzeRepository", "failed") not in store.updates
    run = await store.get(run_id)
    assert run.error is None
    assert run.step(ANALYZE_REPOSITORY).status == "completed"


@pytest.mark.asyncio
async def test_retries_are_bounded(make_harness, start_request):
    harness = make_harness()
    harness.sessions.fail_command("ls", *[TransientServiceError("sandbox down")] * 4)

    run_id = await harness.engine.start(start_request)
    checkpoint = await harness.engine.wait(run_id)

    assert checkpoint.status == "failed"
    run = await harness.store.get(run_id)
    assert run.error.step_id == ANALYZE_REPOSITORY
    assert run.error.category == "transient_service"
    assert run.error.attempts == 4
    assert run.step(ANALYZE_REPOSITORY).status == "failed"
    assert run.step(EXECUTE_CHANGES).status == "pending"


@pytest.mark.asyncio
@pytest.mark.parametrize("policy, attempts", [("retry_once", 2), ("fatal", 1)])
async def test_unknown_failures_follow_policy(make_harness, start_request, policy, attempts):
    harness = make_harness(
        unknown_policy=policy,
        agent_failures=[RuntimeError("model confused")] * 3,
    )

    run_id = await harness.engine.start(start_request)
    await harness.engine.wait(run_id)

    run = await harness.store.get(run_id)
    assert run.status == "failed"
    assert run.error.step_id == EXECUTE_CHANGES
    assert run.error.category == "unknown"
    assert run.error.attempts == attempts
    assert len(harness.agent.calls) == attempts
    assert run.step(CREATE_PULL_REQUEST).status == "pending"


@pytest.mark.asyncio
async def test_notify_failure_keeps_published_change_request(make_harness, start_request):
    harness = make_harness(notifier=FailingNotifier())
    run_id = await harness.engine.start({**start_request, "recipient": "dev@example.com"})
    checkpoint = await harness.engine.wait(run_id)

    assert checkpoint.status == "failed"
    assert CREATE_PULL_REQUEST in checkpoint.outputs
    run = await harness.store.get(run_id)
    assert run.error.step_id == NOTIFY_USER
    assert run.step(CREATE_PULL_REQUEST).status == "completed"
    assert run.step(NOTIFY_USER).status == "failed"
    assert run.result["prUrl"] == "https://github.com/acme/widgets/pull/1"


@pytest.mark.asyncio
async def test_start_rejects_invalid_request(harness):
    with pytest.raises(ValidationError) as exc:
        await harness.engine.start({"repoLocator": "https://github.com/acme/widgets", "credential": "x"})
    assert exc.value.error_code == "MISSING_PROMPT"
    assert await harness.repository.list_runs() == []
    assert await harness.store.list_runs() == []


@pytest.mark.asyncio
async def test_concurrent_runs_are_independent(harness, start_request):
    run_ids = [await harness.engine.start(start_request) for _ in range(3)]
    checkpoints = await asyncio.gather(*(harness.engine.wait(r) for r in run_ids))

    assert [c.status for c in checkpoints] == ["completed"] * 3
    assert len(set(harness.sessions.pushed_branches)) == 3
    assert len(harness.host.change_requests) == 3


@pytest.mark.asyncio
async def test_read_only_credential_fails_before_any_change(make_harness, start_request):
    harness = make_harness(
        host=InMemoryHost(valid_credentials={"ghp_valid"}, read_only_credentials={"ghp_readonly"})
    )
    run_id = await harness.engine.start({**start_request, "credential": "ghp_readonly"})
    checkpoint = await harness.engine.wait(run_id)

    assert checkpoint.status == "failed"
    assert checkpoint.error["step_id"] == INITIALIZE_SANDBOX
    assert checkpoint.error["category"] == "auth"
    assert checkpoint.error["attempts"] == 1
    assert harness.agent.calls == []


class RevokingAgent(CodeAgent):
    """Loses push permission while it works, as when a token is downgraded."""

    def __init__(self, host):
        self.host = host
        self.calls = 0

    async def modify(self, prompt, session, candidate_files):
        self.calls += 1
        self.host.read_only_credentials.add("ghp_valid")
        await session.write_file("app/page.tsx", "<footer />\n")
        return AgentReport(response="done", files_touched=["app/page.tsx"])


@pytest.mark.asyncio
async def test_denied_push_is_not_retried(make_harness, start_request):
    host = InMemoryHost(valid_credentials={"ghp_valid"})
    sessions = InMemorySessionFactory(
        responses={
            "git push": CommandResult(
                command="git push", exit_code=128, stderr="remote: Permission denied. 403"
            )
        }
    )
    agent = RevokingAgent(host)
    harness = make_harness(host=host, sessions=sessions, agent=agent)

    run_id = await harness.engine.start(start_request)
    checkpoint = await harness.engine.wait(run_id)

    assert checkpoint.status == "failed"
    assert checkpoint.error["step_id"] == EXECUTE_CHANGES
    assert checkpoint.error["category"] == "auth"
    assert checkpoint.error["attempts"] == 1
    assert agent.calls == 1
