"""
Shared pytest fixtures for Deckhand tests.

Fixtures provided:
- db_manager: DatabaseManager over a temporary SQLite file
- make_project: Factory for Project objects with sensible defaults
- mock_docker_client: Mock Docker SDK client
- mock_git_service: Mock GitService with async methods stubbed
"""

import os
import sys
import uuid

import pytest
from unittest.mock import AsyncMock, MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from database import DatabaseManager
from git_sync.git_service import SyncResult
from models.project import DeployKind, Project, ProjectStatus


@pytest.fixture(scope="function")
def db_manager(tmp_path):
    """
    Create a DatabaseManager backed by a temporary SQLite database.

    Each test gets its own file so tests don't affect each other.
    """
    manager = DatabaseManager(str(tmp_path / "data" / "deckhand-test.db"))
    yield manager
    manager.close()


@pytest.fixture
def make_project():
    """Factory building Project instances; keyword arguments override defaults."""
    def _make(**overrides) -> Project:
        fields = dict(
            id=str(uuid.uuid4()),
            name="webapp",
            git_url="",
            branch="main",
            deploy_kind=DeployKind.IMAGE,
            image="nginx:alpine",
            domain="",
            use_subdomain=False,
            port=80,
            env_vars={},
            auto_deploy=False,
            status=ProjectStatus.PENDING,
        )
        fields.update(overrides)
        return Project(**fields)
    return _make


@pytest.fixture
def mock_docker_client():
    """
    Mock Docker SDK client for testing without real Docker daemon.

    Returns a MagicMock with common Docker SDK methods stubbed.
    """
    client = MagicMock()

    client.containers.list = MagicMock(return_value=[])

    mock_container = MagicMock()
    mock_container.id = "abc123def456789012345678901234567890123456789012345678901234"
    mock_container.name = "deckhand-webapp"
    mock_container.attrs = {'State': {'Status': 'running'}}
    client.containers.get = MagicMock(return_value=mock_container)
    client.containers.create = MagicMock(return_value=mock_container)

    client.images.pull = MagicMock()
    client.networks.list = MagicMock(return_value=[])
    client.ping = MagicMock(return_value=True)

    return client


@pytest.fixture
def mock_git_service():
    """Mock GitService: checkouts exist, remote unchanged, syncs succeed."""
    git = MagicMock()
    git.ensure = AsyncMock(return_value=SyncResult(success=True, updated=False, commit="a" * 40))
    git.has_update = AsyncMock(return_value=(False, "a" * 40))
    git.current_commit = AsyncMock(return_value="a" * 40)
    git.remote_commit = AsyncMock(return_value="a" * 40)
    git.default_branch = AsyncMock(return_value="main")
    git.repo_exists = MagicMock(return_value=True)
    git.remove = MagicMock()
    git.get_repo_path = MagicMock()
    return git
