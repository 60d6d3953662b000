"""Shared fixtures: an engine wired entirely to in-memory collaborators."""

from collections import deque
from dataclasses import dataclass
from typing import Optional

import pytest

from repoflow.agents import AgentReport, CodeAgent
from repoflow.classifier import ErrorClassifier
from repoflow.engine import WorkflowEngine
from repoflow.hosts import InMemoryHost
from repoflow.notify import LoggingNotifier
from repoflow.persistence import InMemoryCheckpointRepository
from repoflow.sessions import InMemorySessionFactory
from repoflow.status import RunStatusStore, StatusProjector
from repoflow.steps import StepServices
from repoflow.utils.retry import RetryPolicy

START_REQUEST = {
    "prompt": "Add a footer to the homepage",
    "repoLocator": "https://github.com/acme/widgets",
    "credential": "ghp_valid",
}


class ScriptedAgent(CodeAgent):
    """Writes a fixed set of files, optionally failing first."""

    def __init__(self, edits=None, failures=()):
        self.edits = (
            edits
            if edits is not None
            else {"app/page.tsx": "export default function Page() { return <footer /> }\n"}
        )
        self.failures = deque(failures)
        self.calls = []

    async def modify(self, prompt, session, candidate_files):
        self.calls.append(prompt)
        if self.failures:
            raise self.failures.popleft()
        for path, content in self.edits.items():
            await session.write_file(path, content)
        return AgentReport(response=f"Applied: {prompt}", files_touched=list(self.edits))


@dataclass
class Harness:
    engine: WorkflowEngine
    repository: InMemoryCheckpointRepository
    store: RunStatusStore
    sessions: InMemorySessionFactory
    host: InMemoryHost
    agent: ScriptedAgent
    notifier: LoggingNotifier


def build_harness(
    repository=None,
    store: Optional[RunStatusStore] = None,
    sessions=None,
    host=None,
    agent=None,
    notifier=None,
    agent_edits=None,
    agent_failures=(),
    retry_policy: Optional[RetryPolicy] = None,
    unknown_policy: str = "retry_once",
) -> Harness:
    repository = repository or InMemoryCheckpointRepository()
    store = store or RunStatusStore()
    sessions = sessions or InMemorySessionFactory()
    host = host or InMemoryHost(valid_credentials={"ghp_valid"})
    agent = agent or ScriptedAgent(edits=agent_edits, failures=agent_failures)
    notifier = notifier or LoggingNotifier()
    # zero delay between attempts
    retry_policy = retry_policy or RetryPolicy(
        base_delay=0.0, multiplier=1.0, max_delay=0.0, jitter=0.0, unknown_policy=unknown_policy
    )
    services = StepServices(
        session_factory=sessions,
        agent=agent,
        host=host,
        notifier=notifier,
        projector=StatusProjector(store),
        classifier=ErrorClassifier(unknown_policy),
    )
    engine = WorkflowEngine(repository, services.projector, services, retry_policy=retry_policy)
    return Harness(engine, repository, store, sessions, host, agent, notifier)


@pytest.fixture
def harness() -> Harness:
    return build_harness()


@pytest.fixture
def make_harness():
    return build_harness


@pytest.fixture
def start_request() -> dict:
    return dict(START_REQUEST)
