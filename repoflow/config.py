from __future__ import annotations

import os
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import DEFAULT_STEP_BOUNDS


class RetryConfig(BaseModel):
    """Bounded exponential backoff applied to retryable step failures."""

    max_attempts: int = Field(default=4, ge=1)
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.5
    unknown_policy: Literal["retry_once", "fatal", "retry"] = "retry_once"


class WatchdogConfig(BaseModel):
    enabled: bool = True
    interval: float = 5.0
    step_bounds: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_STEP_BOUNDS)
    )


class StatusConfig(BaseModel):
    """Where step progress is projected for polling clients."""

    backend: Literal["inmemory", "http"] = "inmemory"
    url: Optional[str] = None
    ttl_seconds: Optional[float] = None


class SessionConfig(BaseModel):
    backend: Literal["local", "inmemory"] = "local"
    workdir: Optional[str] = None
    command_timeout: float = 300.0
    git_user_name: str = "AI Coding Agent"
    git_user_email: str = "ai-agent@example.com"


class HostConfig(BaseModel):
    backend: Literal["github", "inmemory"] = "github"
    api_url: str = "https://api.github.com"
    timeout: float = 30.0


class AgentConfig(BaseModel):
    model: str = "openai:gpt-4o"
    max_requests: int = 25


class NotifyConfig(BaseModel):
    webhook_url: Optional[str] = None
    timeout: float = 10.0


class RepoflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    log_level: str = "INFO"
    retry: RetryConfig = RetryConfig()
    watchdog: WatchdogConfig = WatchdogConfig()
    status: StatusConfig = StatusConfig()
    session: SessionConfig = SessionConfig()
    host: HostConfig = HostConfig()
    agent: AgentConfig = AgentConfig()
    notify: NotifyConfig = NotifyConfig()


def load_config(path: Optional[str] = None) -> RepoflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to REPOFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("REPOFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = RepoflowConfig(**data)
    else:
        config = RepoflowConfig()

    env_db_url = os.getenv("REPOFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
