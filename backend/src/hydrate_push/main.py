from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import api
from .config import get_settings, runtime_config_issues
from .scheduler import start_background_scheduler
from .store import PersistenceError

logger = logging.getLogger(__name__)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = str(first.get("msg", "invalid value"))
    return f"{location}: {message}" if location else message


def create_app() -> FastAPI:
    settings = get_settings()
    config_issues = runtime_config_issues(settings)
    if config_issues:
        if settings.runtime_config_guard_mode == "enforce":
            raise RuntimeError("runtime config guard blocked startup: " + "; ".join(config_issues))
        if settings.runtime_config_guard_mode == "warn":
            for issue in config_issues:
                logger.warning("runtime config guard warning: %s", issue)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        scheduler = None
        if settings.scheduler_enabled:
            scheduler = start_background_scheduler(
                api.run_scheduled_tick,
                interval_seconds=settings.scheduler_interval_seconds,
            )
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown(wait=False)
                logger.info("reminder scheduler stopped")

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

    allow_origins = list(settings.cors_allow_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials="*" not in allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(400, _validation_message(exc))

    @app.exception_handler(PersistenceError)
    async def _persistence_error(_: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("store write failed: %s", exc)
        return _error_response(500, "failed to save state")

    app.include_router(api.router)
    return app


app = create_app()
