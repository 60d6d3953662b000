"""Request and response bodies of the HTTP API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StartRunResponse(_Body):
    run_id: str
    message: str


class ErrorResponse(_Body):
    error: str
    error_type: str
    error_code: str
    field: Optional[str] = None
    suggestions: List[str] = Field(default_factory=list)


class StatusUpdate(_Body):
    """Body of ``POST /runs/{runId}/status``; which fields apply depends on ``action``."""

    action: Optional[str] = None
    step_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None
    category: Optional[str] = None
    verdict: Optional[str] = None
    attempts: Optional[int] = None
    result: Optional[Dict[str, Any]] = None
    steps: Optional[List[str]] = None
