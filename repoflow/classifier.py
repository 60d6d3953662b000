"""Map raised failures to retry verdicts.

Classification only looks at the failure's type (and, for HTTP errors, the
status code carried by the response). The message text is never consulted,
so two unrelated failures that happen to share a substring cannot be routed
the same way by accident.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Literal

import httpx

from .errors import FailureCategory, RepoflowError, error_for_status


class Verdict(str, Enum):
    RETRYABLE = "retryable"
    FATAL = "fatal"


UnknownPolicy = Literal["retry_once", "fatal", "retry"]

_VERDICTS = {
    FailureCategory.VALIDATION: Verdict.FATAL,
    FailureCategory.AUTH: Verdict.FATAL,
    FailureCategory.QUOTA: Verdict.FATAL,
    FailureCategory.CONFIG: Verdict.FATAL,
    FailureCategory.NETWORK_TIMEOUT: Verdict.RETRYABLE,
    FailureCategory.TRANSIENT_SERVICE: Verdict.RETRYABLE,
}


def categorize(failure: BaseException) -> FailureCategory:
    """Return the failure category of ``failure``."""
    if isinstance(failure, RepoflowError):
        return failure.category
    if isinstance(failure, httpx.HTTPStatusError):
        return error_for_status(failure.response.status_code, str(failure)).category
    if isinstance(failure, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return FailureCategory.NETWORK_TIMEOUT
    if isinstance(failure, (httpx.TransportError, ConnectionError)):
        return FailureCategory.TRANSIENT_SERVICE
    return FailureCategory.UNKNOWN


class ErrorClassifier:
    """Deterministic ``failure -> verdict`` mapping."""

    def __init__(self, unknown_policy: UnknownPolicy = "retry_once") -> None:
        self.unknown_policy = unknown_policy

    def verdict_for(self, category: FailureCategory) -> Verdict:
        if category is FailureCategory.UNKNOWN:
            return Verdict.FATAL if self.unknown_policy == "fatal" else Verdict.RETRYABLE
        return _VERDICTS[category]

    def classify(self, failure: BaseException) -> Verdict:
        return self.verdict_for(categorize(failure))


_default_classifier = ErrorClassifier()


def classify(failure: BaseException) -> Verdict:
    """Classify ``failure`` with the default policy."""
    return _default_classifier.classify(failure)
