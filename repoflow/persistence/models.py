"""Data models for the durable checkpoint log."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..contracts import utcnow


class RunCheckpoint(BaseModel):
    """Persisted engine state for one run.

    Only plain values live here: the run descriptor, the recorded output of
    every completed step and the retry bookkeeping of the step in flight.
    """

    run_id: str
    descriptor: dict[str, Any]
    outputs: dict[str, dict[str, Any]] = Field(default_factory=dict)
    attempts: dict[str, int] = Field(default_factory=dict)
    retry_at: Optional[datetime] = None
    status: str = "running"
    error: Optional[dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_finished(self) -> bool:
        return self.status in ("completed", "failed")
