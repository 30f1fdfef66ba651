import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.exceptions import (
    ConcurrencyConflictError,
    InvariantViolationError,
    NotFoundError,
    ProgressTreeError,
    UnauthorizedError,
    ValidationError,
)
from core.logger import get_logger
from core.progress_engine.repository import ProgressRepository
from web.backend.routers import progress_bars

logger = get_logger("api")


def _status_for(exc: ProgressTreeError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, UnauthorizedError):
        return exc.status_code
    if isinstance(exc, ConcurrencyConflictError):
        return 409
    if isinstance(exc, (InvariantViolationError, ValidationError)):
        return 400
    return 500


def create_app(repository: Optional[ProgressRepository] = None) -> FastAPI:
    app = FastAPI(title="Progress Tree API", version="1.0")
    app.state.repository = repository or ProgressRepository()

    raw_origins = os.getenv("PROGRESS_TREE_ALLOWED_ORIGINS", "*")
    allow_origins = [o.strip() for o in raw_origins.split(",") if o.strip()]
    allow_credentials = "*" not in allow_origins

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ProgressTreeError)
    async def progress_error_handler(request: Request, exc: ProgressTreeError):
        status = _status_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status, content={"detail": exc.message})

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "service": "Progress Tree"}

    app.include_router(progress_bars.router, prefix="/api", tags=["progress"])

    return app
