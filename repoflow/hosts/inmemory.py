"""In-memory repository host for testing."""

from __future__ import annotations

from collections import deque
from typing import Deque, Dict, List, Optional, Set

from pydantic import SecretStr

from ..contracts import RepoLocator
from ..errors import AuthError
from .base import ChangeRequest, ChangeRequestHost, RepositoryInfo


class InMemoryHost(ChangeRequestHost):
    """Keeps change-requests in a dict keyed by head branch."""

    def __init__(
        self,
        default_branch: str = "main",
        valid_credentials: Optional[Set[str]] = None,
        read_only_credentials: Optional[Set[str]] = None,
    ) -> None:
        self.default_branch = default_branch
        self.valid_credentials = valid_credentials
        self.read_only_credentials = set(read_only_credentials or ())
        self.change_requests: Dict[str, ChangeRequest] = {}
        self.calls: List[str] = []
        self._failures: Dict[str, Deque[BaseException]] = {
            "describe": deque(),
            "open": deque(),
        }

    def fail_next(self, operation: str, *failures: BaseException) -> None:
        """Queue failures for ``describe`` or ``open``."""
        self._failures[operation].extend(failures)

    def _check(self, operation: str, credential: SecretStr) -> None:
        self.calls.append(operation)
        if self._failures[operation]:
            raise self._failures[operation].popleft()
        if (
            self.valid_credentials is not None
            and credential.get_secret_value() not in self.valid_credentials
            and credential.get_secret_value() not in self.read_only_credentials
        ):
            raise AuthError("Bad credentials")

    async def describe_repository(
        self, locator: RepoLocator, credential: SecretStr
    ) -> RepositoryInfo:
        self._check("describe", credential)
        return RepositoryInfo(
            full_name=locator.full_name,
            default_branch=self.default_branch,
            can_push=credential.get_secret_value() not in self.read_only_credentials,
        )

    async def open_change_request(
        self,
        locator: RepoLocator,
        credential: SecretStr,
        head: str,
        base: str,
        title: str,
        body: str,
    ) -> ChangeRequest:
        self._check("open", credential)
        existing = self.change_requests.get(head)
        if existing is not None:
            return existing
        number = len(self.change_requests) + 1
        request = ChangeRequest(
            url=f"{locator.url}/pull/{number}", number=number, branch=head
        )
        self.change_requests[head] = request
        return request
