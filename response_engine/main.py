"""FastAPI application entry point for the Incident Response Engine."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from response_engine import __version__
from response_engine.api.v1 import health, incidents, metrics, workflows
from response_engine.engine import build_engine
from response_engine.errors import (
    ExecutionNotFoundError,
    ExecutionStateError,
    ValidationError,
    WorkflowNotFoundError,
)
from response_engine.utils.config import load_config
from response_engine.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown.

    An engine already placed on ``app.state`` (tests do this) is used as-is.
    """
    config = load_config()
    configure_logging(log_level=config.log_level)
    logger.info("response_engine_starting", version=__version__)

    owned = getattr(app.state, "engine", None) is None
    if owned:
        app.state.engine = build_engine(config)
    logger.info(
        "engine_initialized",
        workflows=len(app.state.engine.registry),
        trigger_threshold=config.trigger_threshold,
    )

    yield

    logger.info("response_engine_shutting_down")
    await app.state.engine.close()
    if owned:
        app.state.engine = None


def _error(status_code: int, detail: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, **extra})


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        logger.warning("workflow_rejected", path=request.url.path, problems=exc.problems)
        return _error(
            status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc), problems=exc.problems
        )

    @app.exception_handler(WorkflowNotFoundError)
    @app.exception_handler(ExecutionNotFoundError)
    async def _not_found(request: Request, exc: LookupError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(ExecutionStateError)
    async def _conflict(request: Request, exc: ExecutionStateError) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, str(exc))


def create_app() -> FastAPI:
    app = FastAPI(
        title="Incident Response Engine",
        version=__version__,
        description="Trigger, run and track automated security incident response workflows.",
        docs_url="/docs",
        lifespan=lifespan,
    )
    app.state.engine = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost",
            "http://localhost:3000",
            "http://localhost:8000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_exception_handlers(app)

    app.include_router(workflows.router, prefix="/api/v1/workflows", tags=["Workflows"])
    app.include_router(incidents.router, prefix="/api/v1/incidents", tags=["Incidents"])
    app.include_router(metrics.router, prefix="/api/v1/metrics", tags=["Metrics"])
    app.include_router(health.router, prefix="/api/v1", tags=["Health"])
    return app


app = create_app()
