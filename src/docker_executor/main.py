"""Docker Executor API - FastAPI front end for the deployment orchestrator."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
import time

from fastapi import FastAPI, Request
import structlog

from docker_executor import __version__, routers
from docker_executor.config import get_settings
from docker_executor.correlation import (
    CORRELATION_HEADER,
    bind_request_context,
    clear_context,
    new_correlation_id,
)
from docker_executor.deployer import Deployer
from docker_executor.docker_ops import DockerClientWrapper
from docker_executor.logging_config import setup_logging
from docker_executor.templates import TemplateCatalog

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the docker client, template catalog and deployer; tear them down on exit."""
    settings = get_settings()
    setup_logging(
        service_name=settings.service_name,
        log_format=settings.log_format,
        log_level=settings.log_level,
    )

    docker = DockerClientWrapper(
        base_url=settings.docker_base_url, max_workers=settings.docker_max_workers
    )
    app.state.templates = TemplateCatalog.load(settings.templates_file)
    app.state.deployer = Deployer.from_settings(settings, docker)
    logger.info(
        "docker_executor_started",
        local_state_directory=str(settings.resolved_local_state_directory),
        host_state_directory=str(settings.resolved_host_state_directory),
        completion_strategy=settings.completion_strategy,
        templates=len(app.state.templates.list()),
    )

    try:
        yield
    finally:
        # In-flight deployments remove their containers before the client goes away.
        await app.state.deployer.shutdown()
        docker.close()
        logger.info("docker_executor_stopped")


app = FastAPI(
    title="Docker Executor API",
    description="Runs deployment templates as ephemeral Docker containers",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def correlation_middleware(request: Request, call_next):
    correlation_id = request.headers.get(CORRELATION_HEADER) or new_correlation_id()
    bind_request_context(correlation_id, method=request.method, path=request.url.path)
    started = time.perf_counter()

    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(
            "http_request_exception",
            error=str(e),
            error_type=type(e).__name__,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            exc_info=True,
        )
        raise
    else:
        log = logger.error if response.status_code >= 500 else logger.info  # noqa: PLR2004
        log(
            "http_request",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
    finally:
        clear_context()


@app.get("/health", tags=["health"])
async def health() -> dict:
    """Liveness probe."""
    return {"status": "ok"}


app.include_router(routers.templates.router)
app.include_router(routers.deployments.router)
