"""Run and step progress documents served to polling clients."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

StepStatus = Literal["pending", "running", "completed", "failed"]
RunStatus = Literal["running", "completed", "failed"]

TERMINAL_STEP_STATUSES = ("completed", "failed")

# completed and failed share a rank: neither may follow the other
_STEP_RANK = {"pending": 0, "running": 1, "completed": 2, "failed": 2}


def can_transition(current: str, new: str) -> bool:
    """Return ``True`` if a step may move from ``current`` to ``new``."""
    return _STEP_RANK[new] > _STEP_RANK[current]


class _Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StepRecord(_Document):
    id: str
    status: StepStatus = "pending"
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class RunError(_Document):
    message: str
    step_id: Optional[str] = None
    category: Optional[str] = None
    verdict: Optional[str] = None
    attempts: Optional[int] = None


class Run(_Document):
    run_id: str
    status: RunStatus = "running"
    steps: List[StepRecord] = Field(default_factory=list)
    error: Optional[RunError] = None
    result: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    def step(self, step_id: str) -> Optional[StepRecord]:
        for record in self.steps:
            if record.id == step_id:
                return record
        return None

    def to_document(self) -> Dict[str, Any]:
        """JSON-ready camelCase document."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
