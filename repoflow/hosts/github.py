"""GitHub pull request client built on httpx."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import SecretStr

from ..contracts import RepoLocator
from ..errors import NetworkTimeout, TransientServiceError, error_for_status
from .base import ChangeRequest, ChangeRequestHost, RepositoryInfo

logger = logging.getLogger(__name__)


class GitHubHost(ChangeRequestHost):
    """Talks to the GitHub REST API (v3)."""

    def __init__(
        self,
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self, credential: SecretStr) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "Authorization": f"token {credential.get_secret_value()}",
                "Accept": "application/vnd.github.v3+json",
            },
        )

    async def _request(
        self,
        credential: SecretStr,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            async with self._client(credential) as client:
                return await client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise NetworkTimeout(f"GitHub API {method} {path} timed out") from exc
        except httpx.TransportError as exc:
            raise TransientServiceError(f"GitHub API {method} {path} failed: {exc}") from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        try:
            detail = response.json().get("message", response.text)
        except ValueError:
            detail = response.text
        raise error_for_status(
            response.status_code,
            f"Failed to {action}: GitHub API returned {response.status_code}: {detail}",
        )

    async def describe_repository(
        self, locator: RepoLocator, credential: SecretStr
    ) -> RepositoryInfo:
        response = await self._request(credential, "GET", f"/repos/{locator.full_name}")
        self._raise_for_status(response, f"access repository {locator.full_name}")
        data = response.json()
        permissions = data.get("permissions") or {}
        return RepositoryInfo(
            full_name=data.get("full_name", locator.full_name),
            default_branch=data.get("default_branch") or "main",
            can_push=bool(permissions.get("push", True)),
        )

    async def _find_open(
        self, locator: RepoLocator, credential: SecretStr, head: str
    ) -> Optional[ChangeRequest]:
        response = await self._request(
            credential,
            "GET",
            f"/repos/{locator.full_name}/pulls",
            params={"head": f"{locator.owner}:{head}", "state": "open"},
        )
        self._raise_for_status(response, f"list pull requests for {head}")
        pulls = response.json()
        if not pulls:
            return None
        return ChangeRequest(url=pulls[0]["html_url"], number=pulls[0]["number"], branch=head)

    async def open_change_request(
        self,
        locator: RepoLocator,
        credential: SecretStr,
        head: str,
        base: str,
        title: str,
        body: str,
    ) -> ChangeRequest:
        logger.info(f"Creating pull request for {locator.full_name}: {head} -> {base}")
        response = await self._request(
            credential,
            "POST",
            f"/repos/{locator.full_name}/pulls",
            json={"title": title, "body": body, "head": head, "base": base},
        )
        if response.status_code == 422:
            # A retried step may find its own pull request already open.
            existing = await self._find_open(locator, credential, head)
            if existing is not None:
                logger.info(f"Reusing open pull request {existing.url} for {head}")
                return existing
        self._raise_for_status(response, "create pull request")
        data = response.json()
        return ChangeRequest(url=data["html_url"], number=data["number"], branch=head)
