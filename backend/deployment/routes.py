"""
Project API routes for Deckhand

Provides REST endpoints for:
- Project CRUD
- Deploy / stop / restart / manual update check
- Container logs (plain text, or server-sent events when following)
- Routing label preview
- Docker health
"""

import logging
from typing import AsyncIterator, List, Optional

import docker
from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse, StreamingResponse

from database import DuplicateProjectError, ProjectNotFoundError
from deployment.orchestrator import DeployInProgressError, ProjectOrchestrator
from deployment.runtime import RuntimeAdapterError
from deployment.state_machine import InvalidTransitionError
from deployment.traefik_labels import effective_domain
from git_sync.git_service import SourceSyncError
from models.project_models import (
    CheckResponse,
    LabelsResponse,
    ProjectCreate,
    ProjectResponse,
    ProjectUpdate,
)
from utils.async_docker import async_docker_call
from watcher.change_watcher import ChangeWatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])
health_router = APIRouter(tags=["health"])

# Module-level references, set at startup
_orchestrator: Optional[ProjectOrchestrator] = None
_watcher: Optional[ChangeWatcher] = None
_docker_client: Optional[docker.DockerClient] = None


def set_orchestrator(orchestrator: ProjectOrchestrator) -> None:
    """Set the orchestrator reference."""
    global _orchestrator
    _orchestrator = orchestrator


def set_watcher(watcher: ChangeWatcher) -> None:
    """Set the change watcher reference."""
    global _watcher
    _watcher = watcher


def set_docker_client(client: Optional[docker.DockerClient]) -> None:
    """Set the docker client used by the health endpoint."""
    global _docker_client
    _docker_client = client


def get_orchestrator() -> ProjectOrchestrator:
    """Get orchestrator, raising 503 if not initialized."""
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Deployment engine not initialized")
    return _orchestrator


def get_watcher() -> ChangeWatcher:
    if _watcher is None:
        raise HTTPException(status_code=503, detail="Change watcher not initialized")
    return _watcher


# =============================================================================
# Helper Functions
# =============================================================================


def _to_http_error(e: Exception) -> HTTPException:
    """Map engine exceptions to HTTP errors."""
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, ProjectNotFoundError):
        return HTTPException(status_code=404, detail="Project not found")
    if isinstance(e, (DuplicateProjectError, DeployInProgressError, InvalidTransitionError)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (RuntimeAdapterError, SourceSyncError)):
        return HTTPException(status_code=500, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"Unexpected error in project API: {e}", exc_info=True)
    return HTTPException(status_code=500, detail="Internal server error")


def _response(project) -> ProjectResponse:
    return ProjectResponse.from_project(project, get_orchestrator().base_domain)


# =============================================================================
# Project Endpoints
# =============================================================================


@router.get("", response_model=List[ProjectResponse])
async def list_projects():
    """List all projects."""
    orchestrator = get_orchestrator()
    return [_response(p) for p in orchestrator.db.list_projects()]


@router.post("", response_model=ProjectResponse, status_code=201)
async def create_project(request: ProjectCreate):
    """Create a project (status 'pending', nothing deployed yet)."""
    try:
        project = await get_orchestrator().create_project(request.to_fields())
    except Exception as e:
        raise _to_http_error(e)
    logger.info(f"Project created via API: {project.name}")
    return _response(project)


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: str):
    """Get a single project."""
    try:
        return _response(get_orchestrator().db.get_project(project_id))
    except Exception as e:
        raise _to_http_error(e)


@router.put("/{project_id}", response_model=ProjectResponse)
async def update_project(project_id: str, request: ProjectUpdate):
    """Update a project definition. Takes effect on the next deploy."""
    try:
        return _response(await get_orchestrator().update_project(project_id, request.to_updates()))
    except Exception as e:
        raise _to_http_error(e)


@router.delete("/{project_id}")
async def delete_project(project_id: str):
    """Tear down and delete a project."""
    try:
        await get_orchestrator().delete(project_id)
    except Exception as e:
        raise _to_http_error(e)
    return {"success": True, "id": project_id}


# =============================================================================
# Lifecycle Endpoints
# =============================================================================


@router.post("/{project_id}/deploy", response_model=ProjectResponse, status_code=202)
async def deploy_project(project_id: str):
    """Start a deploy in the background. Poll the project for its outcome."""
    try:
        return _response(await get_orchestrator().trigger_deploy(project_id))
    except Exception as e:
        raise _to_http_error(e)


@router.post("/{project_id}/stop", response_model=ProjectResponse)
async def stop_project(project_id: str):
    """Stop and remove the project's containers."""
    try:
        return _response(await get_orchestrator().stop(project_id))
    except Exception as e:
        raise _to_http_error(e)


@router.post("/{project_id}/restart", response_model=ProjectResponse)
async def restart_project(project_id: str):
    """Restart the project's containers."""
    try:
        return _response(await get_orchestrator().restart(project_id))
    except Exception as e:
        raise _to_http_error(e)


@router.post("/{project_id}/check", response_model=CheckResponse)
async def check_project(project_id: str):
    """Check the project's remote for new commits now and deploy if there are any."""
    watcher = get_watcher()
    try:
        updated = await watcher.check_project(project_id)
        project = get_orchestrator().db.get_project(project_id)
    except Exception as e:
        raise _to_http_error(e)
    return CheckResponse(updated=updated, project=_response(project))


# =============================================================================
# Inspection Endpoints
# =============================================================================


async def _sse_stream(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    try:
        async for line in lines:
            yield f"data: {line}\n\n"
    except RuntimeAdapterError as e:
        yield f"event: error\ndata: {e}\n\n"


@router.get("/{project_id}/logs")
async def get_project_logs(
    project_id: str,
    tail: int = Query(100, ge=0, le=10000, description="Lines to return (0 = all)"),
    follow: bool = Query(False, description="Stream new lines as server-sent events"),
):
    """Get container logs of a project."""
    try:
        lines = get_orchestrator().fetch_logs(project_id, tail=tail, follow=follow)
    except Exception as e:
        raise _to_http_error(e)

    if follow:
        return StreamingResponse(
            _sse_stream(lines),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    try:
        collected = [line async for line in lines]
    except Exception as e:
        raise _to_http_error(e)
    return PlainTextResponse("\n".join(collected) + ("\n" if collected else ""))


@router.get("/{project_id}/labels", response_model=LabelsResponse)
async def get_project_labels(project_id: str):
    """Preview the routing labels the project gets on its next deploy."""
    orchestrator = get_orchestrator()
    try:
        project = orchestrator.db.get_project(project_id)
        labels = orchestrator.preview_labels(project_id)
    except Exception as e:
        raise _to_http_error(e)
    return LabelsResponse(domain=effective_domain(project, orchestrator.base_domain), labels=labels)


# =============================================================================
# Health
# =============================================================================


@health_router.get("/health")
async def health_check():
    """Report whether the Docker daemon is reachable."""
    if _docker_client is None:
        raise HTTPException(status_code=503, detail="Docker client not initialized")
    try:
        await async_docker_call(_docker_client.ping)
    except docker.errors.DockerException as e:
        logger.warning(f"Docker health check failed: {e}")
        raise HTTPException(status_code=503, detail="Docker daemon unreachable")
    return {"status": "healthy", "docker": "connected"}
