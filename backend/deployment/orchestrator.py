"""
Project orchestrator for Deckhand

Owns the deploy pipeline and every other lifecycle operation on a project:

    deploy:  mark deploying -> sync source -> bring up runtime -> persist
             handles -> mark running   (any failure -> mark error)

Manual deploys (API) and automatic deploys (change watcher) run the exact
same pipeline. At most one deploy per project is in flight inside the
process; while one is, further deploys and stop/restart/delete requests for
that project are rejected with DeployInProgressError. The change watcher
holds the same claim across its remote check and pull.
"""

import asyncio
import logging
import uuid
from contextlib import contextmanager
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional, Set

from database import DatabaseManager
from deployment.compose_runtime import ComposeRuntime
from deployment.image_runtime import ImageRuntime
from deployment.runtime import DEFAULT_HEALTH_TIMEOUT, RuntimeAdapter
from deployment.state_machine import ProjectStateMachine
from deployment.traefik_labels import generate_traefik_labels
from git_sync.git_service import GitService, SourceSyncError
from models.project import DeployKind, Project, ProjectStatus

logger = logging.getLogger(__name__)

FALLBACK_BRANCH = "main"


class DeployInProgressError(Exception):
    """Raised when a project already has a deploy run in flight."""

    def __init__(self, project_id: str):
        super().__init__(f"A deployment is already in progress for project {project_id}")
        self.project_id = project_id


class ProjectOrchestrator:
    """
    Coordinates source sync, runtime adapters and the project store.

    The orchestrator never holds a Project beyond one operation; every
    operation re-reads the record it needs.
    """

    def __init__(
        self,
        db: DatabaseManager,
        git_service: GitService,
        image_runtime: ImageRuntime,
        compose_runtime: ComposeRuntime,
        base_domain: str,
        health_timeout: float = DEFAULT_HEALTH_TIMEOUT,
    ):
        self.db = db
        self.git = git_service
        self.image_runtime = image_runtime
        self.compose_runtime = compose_runtime
        self.base_domain = base_domain
        self.health_timeout = health_timeout
        self.state_machine = ProjectStateMachine()

        self._in_flight: Set[str] = set()
        self._tasks: Dict[str, asyncio.Task] = {}

    # ==================== In-flight registry ====================

    def is_deploying(self, project_id: str) -> bool:
        return project_id in self._in_flight

    def _claim(self, project_id: str) -> None:
        if project_id in self._in_flight:
            raise DeployInProgressError(project_id)
        self._in_flight.add(project_id)

    def _release(self, project_id: str) -> None:
        self._in_flight.discard(project_id)

    @contextmanager
    def claim(self, project_id: str) -> Iterator[None]:
        """
        Hold the project's deploy slot for the duration of the block.

        Callers that sync the source themselves before deploying (the change
        watcher) take the slot first, so no other deploy touches the checkout
        in between. Inside the block, deploy with deploy_claimed().

        Raises:
            DeployInProgressError: If the slot is already taken
        """
        self._claim(project_id)
        try:
            yield
        finally:
            self._release(project_id)

    def _ensure_idle(self, project_id: str) -> None:
        if project_id in self._in_flight:
            raise DeployInProgressError(project_id)

    # ==================== Status helpers ====================

    def _set_status(self, project_id: str, status: ProjectStatus, message: str = "") -> None:
        """Validate the transition against the stored status, then write it."""
        current = self.db.get_project(project_id).status
        self.state_machine.check(current, status)
        self.db.update_status(project_id, status, message)

    def _mark_error(self, project_id: str, message: str) -> None:
        logger.error(f"Project {project_id[:8]} failed: {message}")
        self._set_status(project_id, ProjectStatus.ERROR, message)

    def select_runtime(self, project: Project) -> RuntimeAdapter:
        """Map a project's deploy kind to its runtime adapter."""
        if project.deploy_kind == DeployKind.COMPOSE:
            return self.compose_runtime
        return self.image_runtime

    # ==================== Deploy ====================

    async def deploy(self, project: Project) -> List[str]:
        """
        Run one full deploy of a project and wait for it to finish.

        Returns:
            Container handles recorded for the project

        Raises:
            DeployInProgressError: If a deploy of this project is in flight
            Exception: Whatever made the run fail (the project is in 'error')
        """
        with self.claim(project.id):
            return await self.deploy_claimed(project)

    async def deploy_claimed(self, project: Project) -> List[str]:
        """Same as deploy(), for a caller already holding the project's claim."""
        return await self._run_deploy(project, mark_deploying=True)

    async def _run_deploy(self, project: Project, mark_deploying: bool) -> List[str]:
        if mark_deploying:
            self._set_status(project.id, ProjectStatus.DEPLOYING, "Deploying...")

        logger.info(f"Deploying project {project.name} ({project.deploy_kind.value})")
        try:
            if project.git_url:
                result = await self.git.ensure(project.git_url, project.branch, project.name)
                if not result.success:
                    raise SourceSyncError(f"Failed to sync repository: {result.error or 'unknown error'}")
                if result.commit:
                    self.db.update_last_commit(project.id, result.commit)
                    project.last_commit = result.commit

            runtime = self.select_runtime(project)
            handles = await runtime.bring_up(project, self.health_timeout)

            self.db.update_container_ids(project.id, handles)
            self._set_status(project.id, ProjectStatus.RUNNING, "")
            logger.info(f"Project {project.name} deployed successfully")
            return handles
        except asyncio.CancelledError:
            self._mark_error(project.id, "Deployment cancelled")
            raise
        except Exception as e:
            self._mark_error(project.id, str(e) or type(e).__name__)
            raise

    async def trigger_deploy(self, project_id: str) -> Project:
        """
        Start a deploy in the background and return immediately.

        The project is already in 'deploying' when this returns.

        Raises:
            ProjectNotFoundError: If the project does not exist
            DeployInProgressError: If a deploy of this project is in flight
        """
        project = self.db.get_project(project_id)
        self._claim(project_id)
        try:
            self._set_status(project_id, ProjectStatus.DEPLOYING, "Starting deployment...")
        except Exception:
            self._release(project_id)
            raise

        task = asyncio.create_task(
            self._run_deploy(project, mark_deploying=False),
            name=f"deploy-{project.name}",
        )
        self._tasks[project_id] = task
        task.add_done_callback(lambda t: self._on_deploy_done(project_id, t))
        return self.db.get_project(project_id)

    def _on_deploy_done(self, project_id: str, task: asyncio.Task) -> None:
        self._release(project_id)
        if self._tasks.get(project_id) is task:
            del self._tasks[project_id]

        if task.cancelled():
            logger.warning(f"Background deploy of {project_id[:8]} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background deploy of {project_id[:8]} failed: {exc}")

    # ==================== Lifecycle operations ====================

    async def stop(self, project_id: str) -> Project:
        """
        Tear down the project's containers and mark it stopped.

        A failed tear-down leaves the project 'error' with the failure message.
        """
        self._ensure_idle(project_id)
        project = self.db.get_project(project_id)
        self.state_machine.check(project.status, ProjectStatus.STOPPED)

        try:
            await self.select_runtime(project).tear_down(project)
        except Exception as e:
            self._mark_error(project_id, f"Failed to stop: {str(e) or type(e).__name__}")
            raise

        self.db.update_container_ids(project_id, [])
        self._set_status(project_id, ProjectStatus.STOPPED, "")
        logger.info(f"Stopped project {project.name}")
        return self.db.get_project(project_id)

    async def restart(self, project_id: str) -> Project:
        """
        Restart the project's containers.

        Success leaves the project 'running' and failure 'error', whatever
        the previous status was.
        """
        self._ensure_idle(project_id)
        project = self.db.get_project(project_id)
        self.state_machine.check(project.status, ProjectStatus.RUNNING)

        try:
            handles = await self.select_runtime(project).restart(project, self.health_timeout)
        except Exception as e:
            self._mark_error(project_id, str(e) or type(e).__name__)
            raise

        self.db.update_container_ids(project_id, handles)
        self._set_status(project_id, ProjectStatus.RUNNING, "")
        logger.info(f"Restarted project {project.name}")
        return self.db.get_project(project_id)

    async def delete(self, project_id: str) -> None:
        """
        Remove a project: runtime resources, checkout, then the record.

        Tear-down failures are logged and do not block the delete.

        Raises:
            ProjectNotFoundError: If the project does not exist
        """
        self._ensure_idle(project_id)
        project = self.db.get_project(project_id)

        try:
            await self.select_runtime(project).tear_down(project)
        except Exception as e:
            logger.warning(f"Failed to tear down {project.name} during delete: {e}")

        try:
            self.git.remove(project.name)
        except OSError as e:
            logger.warning(f"Failed to remove checkout of {project.name}: {e}")

        self.db.delete_project(project_id)

    # ==================== Definitions ====================

    async def _resolve_branch(self, git_url: str, branch: str) -> str:
        if branch:
            return branch
        if not git_url:
            return FALLBACK_BRANCH
        try:
            detected = await self.git.default_branch(git_url)
            logger.info(f"Detected default branch for {git_url}: {detected}")
            return detected
        except SourceSyncError as e:
            logger.warning(f"Failed to detect default branch for {git_url}, using '{FALLBACK_BRANCH}': {e}")
            return FALLBACK_BRANCH

    async def create_project(self, data: Dict[str, Any]) -> Project:
        """
        Create a project in 'pending' status.

        Args:
            data: Project definition fields (name required)

        Raises:
            DuplicateProjectError: If the name is taken
        """
        fields = dict(data)
        fields["git_url"] = (fields.get("git_url") or "").strip()
        fields["branch"] = await self._resolve_branch(fields["git_url"], (fields.get("branch") or "").strip())

        project = Project(
            id=str(uuid.uuid4()),
            status=ProjectStatus.PENDING,
            **fields,
        )
        # Fails early on names that cannot be used as a checkout directory
        self.git.get_repo_path(project.name)
        return self.db.create_project(project)

    async def update_project(self, project_id: str, data: Dict[str, Any]) -> Project:
        """
        Update a project's definition.

        Raises:
            ProjectNotFoundError: If the project does not exist
            ValueError: If the update tries to rename the project
        """
        current = self.db.get_project(project_id)
        updates = dict(data)

        name = updates.pop("name", None)
        if name is not None and name != current.name:
            raise ValueError("Project name cannot be changed")

        if "git_url" in updates or "branch" in updates:
            git_url = (updates.get("git_url", current.git_url) or "").strip()
            branch = (updates.get("branch", current.branch) or "").strip()
            updates["git_url"] = git_url
            updates["branch"] = await self._resolve_branch(git_url, branch)

        return self.db.update_project(project_id, updates)

    # ==================== Inspection ====================

    def fetch_logs(self, project_id: str, tail: Optional[int] = 100,
                   follow: bool = False) -> AsyncIterator[str]:
        """Log lines of the project's containers, from its runtime adapter."""
        project = self.db.get_project(project_id)
        return self.select_runtime(project).fetch_logs(project, tail=tail, follow=follow)

    def preview_labels(self, project_id: str) -> Dict[str, str]:
        """Routing labels the project would get (empty when it has no domain)."""
        project = self.db.get_project(project_id)
        return generate_traefik_labels(project, self.base_domain)

    # ==================== Process lifecycle ====================

    def recover_interrupted_deploys(self) -> int:
        """
        Mark projects left in 'deploying' by a previous process as failed.

        Returns:
            Number of projects repaired
        """
        repaired = 0
        for project in self.db.list_by_status(ProjectStatus.DEPLOYING):
            if self.is_deploying(project.id):
                continue
            self._mark_error(project.id, "Deployment interrupted by a restart")
            repaired += 1
        if repaired:
            logger.warning(f"Marked {repaired} interrupted deployment(s) as failed")
        return repaired

    async def shutdown(self) -> None:
        """Cancel background deploys and wait for them to settle."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} background deployment(s)")
