"""Plain data contracts that cross durable checkpoint boundaries."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from .errors import ValidationError

_HTTPS_LOCATOR = re.compile(
    r"^https?://(?P<host>[\w.-]+(?::\d+)?)/(?P<owner>[\w.-]+)/(?P<name>[\w.-]+?)(?:\.git)?/?$"
)
_SSH_LOCATOR = re.compile(
    r"^git@(?P<host>[\w.-]+):(?P<owner>[\w.-]+)/(?P<name>[\w.-]+?)(?:\.git)?$"
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RepoLocator(BaseModel):
    """Parsed repository location on a repository host."""

    host: str
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def url(self) -> str:
        return f"https://{self.host}/{self.owner}/{self.name}"

    def clone_url(self, credential: Optional[SecretStr] = None) -> str:
        """HTTPS clone URL, authenticated with ``credential`` when given."""
        if credential is None or not credential.get_secret_value():
            return f"{self.url}.git"
        token = credential.get_secret_value()
        return f"https://{token}@{self.host}/{self.owner}/{self.name}.git"


def parse_repo_locator(value: str) -> RepoLocator:
    """Parse an HTTPS or SSH repository URL.

    Raises:
        ValidationError: If ``value`` is not a recognizable repository URL.
    """
    candidate = (value or "").strip()
    match = _HTTPS_LOCATOR.match(candidate) or _SSH_LOCATOR.match(candidate)
    if not match:
        raise ValidationError(
            f"Invalid repository locator: {value!r}",
            error_code="INVALID_REPO_LOCATOR",
            field="repoLocator",
            suggestions=[
                "Use a repository URL such as https://github.com/<owner>/<repo>",
                "SSH locators of the form git@github.com:<owner>/<repo>.git are also accepted",
            ],
        )
    return RepoLocator(
        host=match.group("host"), owner=match.group("owner"), name=match.group("name")
    )


class RunDescriptor(BaseModel):
    """Everything needed to start, and later resume, one run."""

    model_config = ConfigDict(populate_by_name=True)

    prompt: str
    repo_locator: str = Field(alias="repoLocator")
    credential: SecretStr
    recipient: Optional[str] = None

    @classmethod
    def from_request(cls, data: Dict[str, Any]) -> "RunDescriptor":
        """Validate a start request and build a descriptor.

        Raises:
            ValidationError: If a required field is missing or malformed.
        """
        if not isinstance(data, dict):
            raise ValidationError(
                "Request body must be a JSON object",
                error_code="INVALID_BODY",
                suggestions=["Send {prompt, repoLocator, credential, recipient?}"],
            )

        prompt = data.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValidationError(
                "prompt is required",
                error_code="MISSING_PROMPT",
                field="prompt",
                suggestions=["Describe the change to make, e.g. 'Add a footer to the homepage'"],
            )

        repo_locator = data.get("repoLocator", data.get("repo_locator"))
        if not isinstance(repo_locator, str) or not repo_locator.strip():
            raise ValidationError(
                "repoLocator is required",
                error_code="MISSING_REPO_LOCATOR",
                field="repoLocator",
                suggestions=["Provide the repository URL, e.g. https://github.com/<owner>/<repo>"],
            )
        locator = parse_repo_locator(repo_locator)

        credential = data.get("credential")
        if not isinstance(credential, str) or not credential.strip():
            raise ValidationError(
                "credential is required for pushing changes and opening change-requests",
                error_code="MISSING_CREDENTIAL",
                field="credential",
                suggestions=[
                    "Generate a token with 'repo' scope on the repository host",
                    "Pass it as the 'credential' field of the request",
                ],
            )

        recipient = data.get("recipient")
        if recipient is not None and not isinstance(recipient, str):
            raise ValidationError(
                "recipient must be a string",
                error_code="INVALID_RECIPIENT",
                field="recipient",
            )

        return cls(
            prompt=prompt.strip(),
            repo_locator=locator.url,
            credential=credential.strip(),
            recipient=recipient.strip() if recipient and recipient.strip() else None,
        )

    @property
    def locator(self) -> RepoLocator:
        return parse_repo_locator(self.repo_locator)

    def to_checkpoint(self) -> Dict[str, Any]:
        """Serialize for the checkpoint log; the credential is kept readable."""
        data = self.model_dump(mode="json")
        data["credential"] = self.credential.get_secret_value()
        return data


class SessionDescriptor(BaseModel):
    """Small serializable descriptor a step re-opens its session from."""

    repo_locator: str
    credential: SecretStr


class RepositoryAnalysis(BaseModel):
    prompt: str
    repo_info: str
    root_structure: str
    suggested_files: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)


class ChangeSummary(BaseModel):
    prompt: str
    files_modified: List[str] = Field(default_factory=list)
    branch: str
    timestamp: datetime = Field(default_factory=utcnow)
    agent_response: str = ""


class InitializeInput(BaseModel):
    repo_locator: str
    credential: SecretStr


class InitializeOutput(BaseModel):
    repo_locator: str
    repo_info: str
    default_branch: str = "main"


class AnalyzeInput(BaseModel):
    repo_locator: str
    credential: SecretStr
    prompt: str
    repo_info: str


class AnalyzeOutput(BaseModel):
    files_to_modify: List[str]
    analysis: RepositoryAnalysis


class ExecuteInput(BaseModel):
    repo_locator: str
    credential: SecretStr
    prompt: str
    files_to_modify: List[str]


class ExecuteOutput(BaseModel):
    changes: ChangeSummary
    branch: str


class PublishInput(BaseModel):
    repo_locator: str
    credential: SecretStr
    branch: str
    base_branch: str
    changes: ChangeSummary


class PublishOutput(BaseModel):
    pr_url: str
    pr_number: int


class NotifyInput(BaseModel):
    recipient: str
    pr_url: str
    changes: ChangeSummary
    status: str = "completed"


class NotifyOutput(BaseModel):
    status: str
    notification_id: str
