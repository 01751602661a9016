from pathlib import Path
from contextlib import asynccontextmanager

from alembic import command
from alembic.config import Config
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fxpipe.api.routes import health_router, jobs_router, stats_router, ticks_router
from fxpipe.core.config import settings
from fxpipe.core.errors import FetchError, PipelineError
from fxpipe.core.logging import get_logger
from fxpipe.jobs.runtime import PipelineRuntime


log = get_logger("app")


def run_migrations() -> None:
    """Execute Alembic migrations programmatically on startup."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
    log.info("Running Alembic migrations to head")
    command.upgrade(alembic_cfg, "head")
    log.info("Alembic migrations applied")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Log environment mode
    log.info(f"Starting application in {settings.ENV.upper()} mode")
    if settings.is_production:
        log.info("Production mode: Debug disabled, docs disabled, stricter logging")
    else:
        log.info("Development mode: Debug enabled, docs available")

    # Startup
    try:
        run_migrations()
    except Exception:
        log.exception("Failed to apply migrations on startup")
        raise

    # Queue pool lives exactly as long as the app; routes reach it via app.state
    runtime = PipelineRuntime()
    app.state.pipeline = runtime
    runtime.start(workers=settings.WORKERS_ENABLED, scheduler=settings.SCHEDULER_ENABLED)
    if not settings.WORKERS_ENABLED:
        log.info("Queue workers are disabled (WORKERS_ENABLED=false)")
    if not settings.SCHEDULER_ENABLED:
        log.info("Crawl scheduler is disabled (SCHEDULER_ENABLED=false)")

    yield

    # Shutdown
    log.info("Shutting down pipeline runtime...")
    await runtime.stop()
    app.state.pipeline = None
    log.info("Application shutdown complete")


# Configure FastAPI based on environment
app = FastAPI(
    title="FX Tick Pipeline",
    description="Ingests, normalizes and upserts FX ticks from VietcomBank, XE, Yahoo Finance and Reuters",
    version="1.0.0",
    lifespan=lifespan,
    # Disable docs in production for security
    docs_url="/docs" if settings.docs_enabled else None,
    redoc_url="/redoc" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.docs_enabled else None,
    # Debug mode only in development
    debug=settings.debug_enabled,
)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    log.error(f"{request.method} {request.url.path} failed: {exc.message}")
    status = 502 if isinstance(exc, FetchError) else 422
    return JSONResponse(status_code=status, content=exc.to_dict())


app.include_router(health_router)
app.include_router(jobs_router)
app.include_router(stats_router)
app.include_router(ticks_router)
