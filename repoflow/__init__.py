"""repoflow: durable, step-checkpointed pipelines that turn a prompt into a pull request."""

__version__ = "0.1.0"

from .config import RepoflowConfig, load_config
from .contracts import RunDescriptor
from .engine import WorkflowEngine
from .persistence import get_repository
from .runtime import Runtime, build_runtime
from .status import RunStatusStore, StatusProjector

__all__ = [
    "RepoflowConfig",
    "RunDescriptor",
    "RunStatusStore",
    "Runtime",
    "StatusProjector",
    "WorkflowEngine",
    "build_runtime",
    "get_repository",
    "load_config",
]
