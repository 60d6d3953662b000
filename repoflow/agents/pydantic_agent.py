"""Code agent driven by a pydantic-ai model with session-bound file tools."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union

from pydantic_ai import Agent, RunContext
from pydantic_ai.exceptions import ModelHTTPError, UsageLimitExceeded
from pydantic_ai.models import Model
from pydantic_ai.usage import UsageLimits

from ..errors import CommandError, PathEscapeError, QuotaError, error_for_status
from ..sessions import Session
from .base import AgentReport, CodeAgent

logger = logging.getLogger(__name__)

INSTRUCTIONS = """\
You are a coding agent working inside a checkout of a git repository.
Use the tools to inspect the repository and edit files so that the user's
request is fulfilled. Prefer small, focused edits. Do not commit; the
pipeline commits and pushes your changes. Finish with a short summary of
what you changed.
"""


@dataclass
class AgentDeps:
    session: Session
    candidate_files: List[str]
    touched: List[str] = field(default_factory=list)


# problems with a single path are reported to the model, not raised
_FILE_ERRORS = (
    FileNotFoundError,
    IsADirectoryError,
    NotADirectoryError,
    PermissionError,
    UnicodeDecodeError,
    PathEscapeError,
    CommandError,
)


def _tool_failure(path: str, exc: Exception) -> str:
    """Describe a failed file operation to the model."""
    if isinstance(exc, FileNotFoundError):
        return f"File not found: {path}"
    if isinstance(exc, IsADirectoryError):
        return f"{path} is a directory; use list_files to see its entries"
    if isinstance(exc, UnicodeDecodeError):
        return f"{path} is not a UTF-8 text file and cannot be read"
    if isinstance(exc, PathEscapeError):
        return f"{path} is outside the repository"
    return f"Cannot access {path}: {exc}"


async def list_files(ctx: RunContext[AgentDeps], path: Optional[str] = None) -> str:
    """List the entries of a directory in the repository."""
    try:
        return await ctx.deps.session.list_files(path)
    except _FILE_ERRORS as exc:
        return _tool_failure(path or ".", exc)


async def read_file(ctx: RunContext[AgentDeps], path: str) -> str:
    """Return the content of a file in the repository."""
    try:
        return await ctx.deps.session.read_file(path)
    except _FILE_ERRORS as exc:
        return _tool_failure(path, exc)


async def write_file(ctx: RunContext[AgentDeps], path: str, content: str) -> str:
    """Create or overwrite a file in the repository."""
    try:
        await ctx.deps.session.write_file(path, content)
    except _FILE_ERRORS as exc:
        return _tool_failure(path, exc)
    if path not in ctx.deps.touched:
        ctx.deps.touched.append(path)
    return f"Wrote {path}"


async def edit_file(
    ctx: RunContext[AgentDeps], path: str, old_str: str, new_str: str
) -> str:
    """Replace the first occurrence of ``old_str`` with ``new_str`` in a file."""
    try:
        content = await ctx.deps.session.read_file(path)
    except FileNotFoundError:
        content = ""
    except _FILE_ERRORS as exc:
        return _tool_failure(path, exc)
    updated = content.replace(old_str, new_str, 1)
    if updated == content and old_str != new_str:
        return f'String "{old_str}" not found in file {path}'
    return await write_file(ctx, path, updated)


def suggested_files_prompt(ctx: RunContext[AgentDeps]) -> str:
    if not ctx.deps.candidate_files:
        return ""
    return "Files likely relevant to the request: " + ", ".join(ctx.deps.candidate_files)


class PydanticAICodeAgent(CodeAgent):
    """Wraps a pydantic-ai ``Agent`` equipped with file tools."""

    def __init__(self, model: Union[str, Model], max_requests: int = 25) -> None:
        self.model = model
        self.max_requests = max_requests
        self._agent: Agent[AgentDeps, str] | None = None

    @property
    def agent(self) -> Agent[AgentDeps, str]:
        # built lazily so that importing repoflow does not need model credentials
        if self._agent is None:
            agent = Agent(
                self.model,
                deps_type=AgentDeps,
                output_type=str,
                instructions=INSTRUCTIONS,
                tools=[list_files, read_file, write_file, edit_file],
            )
            agent.instructions(suggested_files_prompt)
            self._agent = agent
        return self._agent

    async def modify(
        self, prompt: str, session: Session, candidate_files: List[str]
    ) -> AgentReport:
        deps = AgentDeps(session=session, candidate_files=list(candidate_files))
        try:
            result = await self.agent.run(
                prompt,
                deps=deps,
                usage_limits=UsageLimits(request_limit=self.max_requests),
            )
        except ModelHTTPError as exc:
            raise error_for_status(exc.status_code, f"Model request failed: {exc}") from exc
        except UsageLimitExceeded as exc:
            raise QuotaError(f"Agent usage limit reached: {exc}") from exc

        logger.info(f"Agent touched {len(deps.touched)} file(s): {deps.touched}")
        return AgentReport(response=result.output, files_touched=deps.touched)
