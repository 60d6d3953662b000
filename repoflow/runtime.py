"""Wire the engine to its configured collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .agents import CodeAgent, get_agent
from .classifier import ErrorClassifier
from .config import RepoflowConfig, load_config
from .engine import WorkflowEngine
from .hosts import ChangeRequestHost, get_host
from .notify import Notifier, get_notifier
from .persistence import CheckpointRepository, get_repository
from .sessions import SessionFactory, get_session_factory
from .status import RunStatusStore, StatusProjector, StepWatchdog, get_status_sink
from .steps import StepServices
from .utils.retry import RetryPolicy


@dataclass
class Runtime:
    config: RepoflowConfig
    engine: WorkflowEngine
    repository: CheckpointRepository
    store: Optional[RunStatusStore]
    watchdog: Optional[StepWatchdog]


def build_runtime(
    config: Optional[RepoflowConfig] = None,
    *,
    store: Optional[RunStatusStore] = None,
    repository: Optional[CheckpointRepository] = None,
    session_factory: Optional[SessionFactory] = None,
    agent: Optional[CodeAgent] = None,
    host: Optional[ChangeRequestHost] = None,
    notifier: Optional[Notifier] = None,
) -> Runtime:
    """Build an engine from ``config``; explicit collaborators take precedence."""

    config = config or load_config()
    sink = get_status_sink(config, store)
    local_store = sink if isinstance(sink, RunStatusStore) else None

    services = StepServices(
        session_factory=session_factory or get_session_factory(config=config),
        agent=agent or get_agent(config),
        host=host or get_host(config=config),
        notifier=notifier or get_notifier(config),
        projector=StatusProjector(sink),
        classifier=ErrorClassifier(config.retry.unknown_policy),
    )
    repository = repository or get_repository(config=config)
    engine = WorkflowEngine(
        repository,
        services.projector,
        services,
        retry_policy=RetryPolicy.from_config(config.retry),
    )

    watchdog = None
    if local_store is not None and config.watchdog.enabled:
        watchdog = StepWatchdog(
            local_store,
            step_bounds=config.watchdog.step_bounds,
            interval=config.watchdog.interval,
        )
    return Runtime(
        config=config,
        engine=engine,
        repository=repository,
        store=local_store,
        watchdog=watchdog,
    )
