"""FastAPI application entry point."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from docflow.api.v1 import queue, runs, workflows
from docflow.bootstrap import Services, build_services
from docflow.core.config import settings
from docflow.core.errors import (
    CycleError,
    ExecutionNotFoundError,
    OrchestrationError,
    UnknownJobTypeError,
    ValidationError,
    WorkflowNotFoundError,
)
from docflow.core.logging import get_logger, setup_logging

API_PREFIX = "/api/v1"


def _status_for(exc: OrchestrationError) -> int:
    if isinstance(exc, (WorkflowNotFoundError, ExecutionNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (ValidationError, CycleError, UnknownJobTypeError)):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def orchestration_error_handler(request: Request, exc: OrchestrationError) -> JSONResponse:
    code = _status_for(exc)
    if code >= 500:
        get_logger("api").error("Unhandled orchestration error", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=code, content=exc.to_dict())


def create_app(services: Services | None = None) -> FastAPI:
    """
    Build the API.  Tests pass prebuilt ``services``; otherwise they are
    built from settings at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown lifecycle hooks."""
        setup_logging(settings.LOG_LEVEL, json_logs=settings.LOG_JSON)
        logger = get_logger("startup")

        built = services or build_services(settings)
        await built.service.initialize()
        if built.queue is not None:
            available = await asyncio.to_thread(built.queue.check_connection)
            logger.info("Job queue probed", available=available)
        app.state.services = built
        logger.info("Application starting", env=settings.APP_ENV, store=type(built.service.store).__name__)
        yield
        logger.info("Application shutting down")
        await built.service.close()

    app = FastAPI(
        title="Docflow Orchestration API",
        description="Workflow graphs of document operations: analysis, planning and execution",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(OrchestrationError, orchestration_error_handler)

    app.include_router(workflows.router, prefix=API_PREFIX)
    app.include_router(runs.router, prefix=API_PREFIX)
    app.include_router(queue.router, prefix=API_PREFIX)

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, str]:
        """Public health-check endpoint."""
        return {"status": "ok", "env": settings.APP_ENV}

    return app


app = create_app()
