"""Code-modification agents."""

from __future__ import annotations

from typing import Optional

from ..config import RepoflowConfig, load_config
from .base import AgentReport, CodeAgent


def get_agent(config: Optional[RepoflowConfig] = None) -> CodeAgent:
    """Return the pydantic-ai backed agent for the configured model."""
    from .pydantic_agent import PydanticAICodeAgent

    config = config or load_config()
    return PydanticAICodeAgent(
        model=config.agent.model, max_requests=config.agent.max_requests
    )


__all__ = ["AgentReport", "CodeAgent", "get_agent"]
