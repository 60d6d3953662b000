"""Session provider factory and initialization."""

from __future__ import annotations

from typing import Optional

from ..config import RepoflowConfig, load_config
from .base import CommandResult, Session, SessionFactory
from .inmemory import InMemorySessionFactory
from .local import LocalGitSessionFactory


def get_session_factory(
    backend: Optional[str] = None, config: Optional[RepoflowConfig] = None
) -> SessionFactory:
    """Factory function to get the configured session provider."""

    config = config or load_config()
    backend = (backend or config.session.backend).lower()

    if backend == "local":
        return LocalGitSessionFactory(
            workdir=config.session.workdir,
            command_timeout=config.session.command_timeout,
            git_user_name=config.session.git_user_name,
            git_user_email=config.session.git_user_email,
        )
    elif backend == "inmemory":
        return InMemorySessionFactory()
    else:
        raise ValueError(f"Unsupported session backend: {backend}")


__all__ = [
    "CommandResult",
    "Session",
    "SessionFactory",
    "InMemorySessionFactory",
    "LocalGitSessionFactory",
    "get_session_factory",
]
