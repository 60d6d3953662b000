"""Checkpoint persistence for repoflow runs."""

from __future__ import annotations

import os
from typing import Optional

from ..config import RepoflowConfig, load_config
from .inmemory import InMemoryCheckpointRepository
from .models import RunCheckpoint
from .repository import CheckpointRepository
from .sqlite import SQLiteCheckpointRepository

_repository_instance: CheckpointRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[RepoflowConfig] = None
) -> CheckpointRepository:
    """Factory function to obtain a checkpoint repository.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``REPOFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("REPOFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        _repository_instance = InMemoryCheckpointRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteCheckpointRepository(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        from .postgres import PostgresCheckpointRepository

        _repository_instance = PostgresCheckpointRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "RunCheckpoint",
    "CheckpointRepository",
    "SQLiteCheckpointRepository",
    "InMemoryCheckpointRepository",
    "get_repository",
]
