#!/usr/bin/env python3
"""
Deckhand Backend - Git-driven container deployments behind Traefik

Startup wires the project store, source sync, runtime adapters, orchestrator
and change watcher together, repairs deploys interrupted by a previous
process, and starts the watcher. Shutdown stops the watcher and cancels
background deploys.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

import docker
import uvicorn
from docker.errors import DockerException
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from config.paths import ensure_data_dirs
from config.settings import AppConfig, HealthCheckFilter, setup_logging
from database import DatabaseManager
from deployment import routes as project_routes
from deployment.compose_runtime import ComposeRuntime
from deployment.image_runtime import ImageRuntime
from deployment.orchestrator import ProjectOrchestrator
from git_sync.git_service import GitService
from watcher.change_watcher import ChangeWatcher

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    # Startup
    config = AppConfig()
    # Validate configuration early to fail fast on misconfiguration
    config.validate()

    ensure_data_dirs(config.DATA_DIR, config.DEPLOYMENTS_DIR)
    setup_logging(config.DATA_DIR, config.LOG_LEVEL)
    logger.info("Starting Deckhand backend...")
    config.log_summary()

    # Reapply health check filter to uvicorn access logger (must be done after uvicorn starts)
    logging.getLogger("uvicorn.access").addFilter(HealthCheckFilter())

    db = DatabaseManager(config.DATABASE_PATH)
    git_service = GitService(repos_dir=config.DEPLOYMENTS_DIR, ssh_key_path=config.SSH_KEY_PATH)

    try:
        docker_client = await asyncio.to_thread(docker.from_env)
    except DockerException as e:
        logger.critical(f"Cannot connect to Docker: {e}")
        raise

    image_runtime = ImageRuntime(docker_client, config.BASE_DOMAIN)
    compose_runtime = ComposeRuntime(config.DEPLOYMENTS_DIR, config.BASE_DOMAIN)

    try:
        await image_runtime.ensure_network()
    except DockerException as e:
        logger.warning(f"Could not ensure shared network: {e}")

    orchestrator = ProjectOrchestrator(
        db=db,
        git_service=git_service,
        image_runtime=image_runtime,
        compose_runtime=compose_runtime,
        base_domain=config.BASE_DOMAIN,
        health_timeout=config.HEALTH_TIMEOUT,
    )
    orchestrator.recover_interrupted_deploys()

    watcher = ChangeWatcher(db, git_service, orchestrator, interval=config.WATCH_INTERVAL)

    project_routes.set_orchestrator(orchestrator)
    project_routes.set_watcher(watcher)
    project_routes.set_docker_client(docker_client)

    watcher.start()
    logger.info("Deckhand backend started")

    yield

    # Shutdown
    logger.info("Shutting down Deckhand backend...")

    try:
        await watcher.stop()
    except Exception as e:
        logger.error(f"Error stopping change watcher: {e}")

    try:
        await orchestrator.shutdown()
    except Exception as e:
        logger.error(f"Error cancelling background deployments: {e}")

    try:
        await asyncio.to_thread(docker_client.close)
    except Exception as e:
        logger.error(f"Error closing docker client: {e}")

    # Dispose SQLAlchemy engine (run in thread pool to avoid blocking event loop)
    try:
        await asyncio.to_thread(db.close)
        logger.info("SQLAlchemy engine disposed")
    except Exception as e:
        logger.error(f"Error disposing database engine: {e}")


app = FastAPI(
    title="Deckhand API",
    version="1.0.0",
    lifespan=lifespan
)


# Custom exception handler for Pydantic validation errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Custom handler for Pydantic validation errors.
    Returns user-friendly error messages with field-level details.
    """
    errors = []
    for error in exc.errors():
        field = " -> ".join(str(x) for x in error['loc'])
        errors.append({
            "field": field,
            "message": error['msg'],
            "type": error['type']
        })

    logger.warning(f"Validation failed for {request.url.path}: {errors}")

    return JSONResponse(
        status_code=422,
        content={
            "detail": "Invalid request data",
            "errors": errors
        }
    )


# ==================== API Routes ====================

app.include_router(project_routes.router)
app.include_router(project_routes.health_router)


if __name__ == "__main__":
    _config = AppConfig()
    uvicorn.run(app, host=_config.HOST, port=_config.PORT, log_level=_config.LOG_LEVEL.lower())
