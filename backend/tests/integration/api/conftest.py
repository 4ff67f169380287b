"""
Pytest configuration for API integration tests.

These tests hit the real project endpoints with TestClient. The
orchestrator runs over the per-test database with git and Docker mocked,
and the app is built without the production lifespan so no daemon is
needed.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from deployment import routes as project_routes
from deployment.orchestrator import ProjectOrchestrator
from watcher.change_watcher import ChangeWatcher


def _runtime():
    runtime = MagicMock()
    runtime.bring_up = AsyncMock(return_value=["c" * 64])
    runtime.tear_down = AsyncMock()
    runtime.restart = AsyncMock(return_value=["c" * 64])
    return runtime


@pytest.fixture
def image_runtime():
    return _runtime()


@pytest.fixture
def compose_runtime():
    return _runtime()


@pytest.fixture
def orchestrator(db_manager, mock_git_service, image_runtime, compose_runtime):
    return ProjectOrchestrator(
        db=db_manager,
        git_service=mock_git_service,
        image_runtime=image_runtime,
        compose_runtime=compose_runtime,
        base_domain="example.com",
    )


@pytest.fixture
def client(db_manager, mock_git_service, mock_docker_client, orchestrator):
    """TestClient with module-level route references pointing at test objects."""
    app = FastAPI()
    app.include_router(project_routes.router)
    app.include_router(project_routes.health_router)

    project_routes.set_orchestrator(orchestrator)
    project_routes.set_watcher(ChangeWatcher(db_manager, mock_git_service, orchestrator, interval=3600))
    project_routes.set_docker_client(mock_docker_client)

    with TestClient(app) as test_client:
        yield test_client

    project_routes.set_orchestrator(None)
    project_routes.set_watcher(None)
    project_routes.set_docker_client(None)
