"""Code-modification agent interface."""

from __future__ import annotations

import abc
from typing import List

from pydantic import BaseModel, Field

from ..sessions import Session


class AgentReport(BaseModel):
    """What the agent says it did."""

    response: str
    files_touched: List[str] = Field(default_factory=list)


class CodeAgent(metaclass=abc.ABCMeta):
    """Black box: prompt in, change summary out.

    The agent edits the working copy of ``session``; it never commits.
    """

    @abc.abstractmethod
    async def modify(
        self, prompt: str, session: Session, candidate_files: List[str]
    ) -> AgentReport:
        raise NotImplementedError
