"""FastAPI application exposing runs to clients."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .. import __version__
from ..engine import WorkflowEngine
from ..errors import ValidationError
from ..status import RunStatusStore, StepWatchdog
from .models import ErrorResponse
from .routes import router

logger = logging.getLogger(__name__)


def create_app(
    engine: WorkflowEngine,
    store: RunStatusStore,
    watchdog: Optional[StepWatchdog] = None,
    resume_pending: bool = False,
) -> FastAPI:
    """Build the API around an engine and the status store it projects into.

    With ``resume_pending`` the app restores the status of finished runs and
    re-attaches to unfinished ones on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if resume_pending:
            await engine.restore_finished()
            await engine.resume_pending()
        if watchdog is not None:
            watchdog.start()
        try:
            yield
        finally:
            if watchdog is not None:
                await watchdog.stop()

    app = FastAPI(title="repoflow", version=__version__, lifespan=lifespan)
    app.state.engine = engine
    app.state.store = store

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        logger.info(f"Rejected {request.method} {request.url.path}: {exc.message}")
        body = ErrorResponse(
            error=exc.message,
            error_type="validation_error",
            error_code=exc.error_code,
            field=exc.field,
            suggestions=exc.suggestions,
        )
        return JSONResponse(
            status_code=400, content=body.model_dump(by_alias=True, exclude_none=True)
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    app.include_router(router)
    return app
