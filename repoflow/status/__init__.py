"""Run status projection for polling clients."""

from __future__ import annotations

from typing import Optional

from ..config import RepoflowConfig, load_config
from .client import HttpStatusClient
from .models import Run, RunError, StepRecord
from .projector import StatusProjector, StepWatchdog
from .store import RunStatusStore, StatusSink


def get_status_sink(
    config: Optional[RepoflowConfig] = None, store: Optional[RunStatusStore] = None
) -> StatusSink:
    """Return the sink step progress is projected into."""

    config = config or load_config()
    if config.status.backend == "http":
        if not config.status.url:
            raise ValueError("status.url is required for the http status backend")
        return HttpStatusClient(config.status.url)
    return store or RunStatusStore(ttl_seconds=config.status.ttl_seconds)


__all__ = [
    "HttpStatusClient",
    "Run",
    "RunError",
    "RunStatusStore",
    "StatusProjector",
    "StatusSink",
    "StepRecord",
    "StepWatchdog",
    "get_status_sink",
]
