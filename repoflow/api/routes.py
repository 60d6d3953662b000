"""Routes for starting runs and polling their progress."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from ..engine import WorkflowEngine
from ..errors import ValidationError
from ..status import RunStatusStore
from .models import StartRunResponse, StatusUpdate

logger = logging.getLogger(__name__)

router = APIRouter()

_STEP_STATUSES = ("pending", "running", "completed", "failed")


def get_engine(request: Request) -> WorkflowEngine:
    return request.app.state.engine


def get_store(request: Request) -> RunStatusStore:
    return request.app.state.store


@router.get("/health")
async def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@router.post("/runs", status_code=202, response_model=StartRunResponse)
async def start_run(
    request: Request, engine: WorkflowEngine = Depends(get_engine)
) -> JSONResponse:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError(
            "Request body must be valid JSON",
            error_code="INVALID_BODY",
            suggestions=["Send {prompt, repoLocator, credential, recipient?} as JSON"],
        )

    run_id = await engine.start(payload)
    body = StartRunResponse(
        run_id=run_id,
        message=f"Workflow started. Poll /runs/{run_id} for status.",
    )
    return JSONResponse(status_code=202, content=body.model_dump(by_alias=True))


@router.get("/runs/{run_id}")
async def get_run(run_id: str, store: RunStatusStore = Depends(get_store)) -> Dict[str, Any]:
    run = await store.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return run.to_document()


@router.post("/runs/{run_id}/status")
async def update_status(
    run_id: str, update: StatusUpdate, store: RunStatusStore = Depends(get_store)
) -> Dict[str, Any]:
    """Apply one status write; used by processes projecting progress remotely."""
    action = update.action
    if action == "create":
        run = await store.create_run(run_id, update.steps)
        return run.to_document()

    if action == "updateStep":
        if not update.step_id or not update.status:
            raise HTTPException(status_code=400, detail="stepId and status are required")
        if update.status not in _STEP_STATUSES:
            raise HTTPException(status_code=400, detail=f"Invalid step status: {update.status}")
        run = await store.update_step(run_id, update.step_id, update.status, update.error)
    elif action == "setError":
        if not update.error:
            raise HTTPException(status_code=400, detail="error is required")
        run = await store.set_run_error(
            run_id,
            update.error,
            step_id=update.step_id,
            category=update.category,
            verdict=update.verdict,
            attempts=update.attempts,
        )
    elif action == "complete":
        run = await store.complete_run(run_id, update.result)
    elif action == "attachResult":
        if not update.result:
            raise HTTPException(status_code=400, detail="result is required")
        run = await store.attach_result(run_id, update.result)
    else:
        raise HTTPException(status_code=400, detail=f"Invalid action: {action}")

    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return run.to_document()
