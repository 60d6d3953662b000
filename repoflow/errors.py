"""Failure taxonomy shared by the engine and its collaborators."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional


class FailureCategory(str, Enum):
    """Closed set of failure categories understood by the classifier."""

    VALIDATION = "validation"
    AUTH = "auth"
    QUOTA = "quota"
    CONFIG = "config"
    NETWORK_TIMEOUT = "network_timeout"
    TRANSIENT_SERVICE = "transient_service"
    UNKNOWN = "unknown"


class RepoflowError(Exception):
    """Base class for failures raised by repoflow and its adapters."""

    category: FailureCategory = FailureCategory.UNKNOWN

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(RepoflowError):
    """Malformed or missing request fields. Never retried."""

    category = FailureCategory.VALIDATION

    def __init__(
        self,
        message: str,
        error_code: str = "INVALID_REQUEST",
        field: Optional[str] = None,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.field = field
        self.suggestions = suggestions or []


class AuthError(RepoflowError):
    """Invalid or expired credential."""

    category = FailureCategory.AUTH


class QuotaError(RepoflowError):
    """A resource or rate limit has been reached."""

    category = FailureCategory.QUOTA


class ConfigError(RepoflowError):
    """Environment, platform or repository misconfiguration."""

    category = FailureCategory.CONFIG


class PathEscapeError(ConfigError):
    """A session path resolves outside the checkout."""


class NetworkTimeout(RepoflowError):
    category = FailureCategory.NETWORK_TIMEOUT


class TransientServiceError(RepoflowError):
    category = FailureCategory.TRANSIENT_SERVICE


class UnknownError(RepoflowError):
    category = FailureCategory.UNKNOWN


class CommandError(UnknownError):
    """A command run inside a session exited with a non-zero status."""

    def __init__(self, command: str, exit_code: int, stderr: str = "") -> None:
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"Command '{command}' exited with status {exit_code}{detail}")
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


class StepAborted(Exception):
    """Raised by the engine when a step ends the run."""

    def __init__(
        self,
        step_id: str,
        cause: BaseException,
        category: FailureCategory,
        verdict: str,
        attempts: int,
    ) -> None:
        super().__init__(f"Step {step_id} aborted after {attempts} attempt(s): {cause}")
        self.step_id = step_id
        self.cause = cause
        self.category = category
        self.verdict = verdict
        self.attempts = attempts


def error_for_status(status_code: int, message: str) -> RepoflowError:
    """Translate an HTTP status code returned by a collaborator."""
    if status_code == 401:
        return AuthError(message)
    if status_code in (403, 429):
        return QuotaError(message)
    if status_code in (400, 404, 409, 422):
        return ConfigError(message)
    if status_code == 408:
        return NetworkTimeout(message)
    if status_code >= 500:
        return TransientServiceError(message)
    return UnknownError(message)
