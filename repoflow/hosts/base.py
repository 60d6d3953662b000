"""Repository host interface for opening change-requests."""

from __future__ import annotations

import abc

from pydantic import BaseModel, SecretStr

from ..contracts import RepoLocator


class RepositoryInfo(BaseModel):
    full_name: str
    default_branch: str = "main"
    # whether the credential may push branches
    can_push: bool = True


class ChangeRequest(BaseModel):
    url: str
    number: int
    branch: str


class ChangeRequestHost(metaclass=abc.ABCMeta):
    """Abstract repository host (pull/merge request API)."""

    @abc.abstractmethod
    async def describe_repository(
        self, locator: RepoLocator, credential: SecretStr
    ) -> RepositoryInfo:
        """Check access to the repository and return its metadata."""
        raise NotImplementedError

    @abc.abstractmethod
    async def open_change_request(
        self,
        locator: RepoLocator,
        credential: SecretStr,
        head: str,
        base: str,
        title: str,
        body: str,
    ) -> ChangeRequest:
        """Open a change-request for ``head`` against ``base``.

        Opening a change-request for a branch that already has one returns
        the existing change-request.
        """
        raise NotImplementedError
