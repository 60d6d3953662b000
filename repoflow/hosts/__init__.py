"""Repository host factory."""

from __future__ import annotations

from typing import Optional

from ..config import RepoflowConfig, load_config
from .base import ChangeRequest, ChangeRequestHost, RepositoryInfo
from .github import GitHubHost
from .inmemory import InMemoryHost


def get_host(
    backend: Optional[str] = None, config: Optional[RepoflowConfig] = None
) -> ChangeRequestHost:
    """Factory function to get the configured repository host."""

    config = config or load_config()
    backend = (backend or config.host.backend).lower()

    if backend == "github":
        return GitHubHost(api_url=config.host.api_url, timeout=config.host.timeout)
    elif backend == "inmemory":
        return InMemoryHost()
    else:
        raise ValueError(f"Unsupported host backend: {backend}")


__all__ = [
    "ChangeRequest",
    "ChangeRequestHost",
    "RepositoryInfo",
    "GitHubHost",
    "InMemoryHost",
    "get_host",
]
