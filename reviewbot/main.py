import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reviewbot.config.logging import get_logger, setup_logging
from reviewbot.config.settings import Settings, settings
from reviewbot.infra.database import Database
from reviewbot.v1.core.exceptions import RequestContextMiddleware, install_exception_handlers
from reviewbot.v1.core.registries import generator_registry
from reviewbot.v1.gen.registry_init import init_generator_registry
from reviewbot.v1.healthz import router as health_router
from reviewbot.v1.infra.github import GitHubClient
from reviewbot.v1.infra.jobs.backoff import RetryPolicy
from reviewbot.v1.infra.jobs.handlers import ReviewJobHandler
from reviewbot.v1.infra.jobs.pipeline import ReviewPipeline
from reviewbot.v1.infra.jobs.routes import router as jobs_router
from reviewbot.v1.infra.jobs.service import ReviewQueue
from reviewbot.v1.infra.jobs.status import CheckRunReporter
from reviewbot.v1.infra.jobs.store import JobStore
from reviewbot.v1.infra.tenants import StaticTenantConfigProvider, load_tenant_configs

logger = get_logger(__name__)


def build_review_queue(
    settings: Settings, database: Database, github: GitHubClient
) -> ReviewQueue:
    """Wire store, handler and scheduler for a worker process."""

    store = JobStore(database.SessionLocal, default_max_attempts=settings.job_max_attempts)

    tenants = StaticTenantConfigProvider()
    if settings.tenants_file:
        for config in load_tenant_configs(settings.tenants_file):
            tenants.put(config)

    handler = ReviewJobHandler(
        store=store,
        tenants=tenants,
        executor=ReviewPipeline(github, retry_policy=RetryPolicy.from_settings(settings)),
        reporter=CheckRunReporter(github, check_name=settings.check_run_name),
    )
    return ReviewQueue.from_settings(settings, store, handler)


def create_app(
    queue: ReviewQueue | None = None,
    database: Database | None = None,
    github: GitHubClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    # Initialize structured logging
    setup_logging()

    if database is None:
        database = Database(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if queue is not None:
            await queue.start()
        try:
            yield
        finally:
            if queue is not None:
                await queue.stop()
            if github is not None:
                await github.aclose()
            await database.close()

    app = FastAPI(
        title=settings.app_name,
        description="Durable queue for automated pull request reviews",
        version=settings.version,
        debug=settings.debug,
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.state.database = database
    app.state.queue = queue
    app.state.started_monotonic = time.monotonic()

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    install_exception_handlers(app)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")

    # Register generators, then lock the registry outside development
    init_generator_registry(timeout=settings.llm_timeout_s)
    if settings.environment != "development":
        generator_registry.freeze()

    return app


def create_worker_app() -> FastAPI:
    """Application factory that also runs the review queue in-process."""

    database = Database(settings)
    github = GitHubClient.from_settings(settings)
    queue = build_review_queue(settings, database, github)
    app = create_app(queue=queue, database=database, github=github)
    logger.info(
        "Worker configured",
        concurrency=settings.queue_concurrency,
        max_per_tenant=settings.queue_max_per_tenant,
        providers=generator_registry.list(),
    )
    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "reviewbot.main:create_worker_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
