"""
Change watcher for auto-deploy projects.

Periodically compares each auto-deploy project's checkout with its remote
branch and redeploys when the remote moved. Runs as a single background
task: one scan immediately on start, then one scan per interval.
"""

import asyncio
import logging
from typing import Optional

from database import DatabaseManager, ProjectNotFoundError
from deployment.orchestrator import DeployInProgressError, ProjectOrchestrator
from git_sync.git_service import GitService, SourceSyncError
from models.project import Project, ProjectStatus

logger = logging.getLogger(__name__)

DEFAULT_DEPLOY_TIMEOUT = 300  # 5 minutes


class ChangeWatcher:
    """Polls git remotes of auto-deploy projects and triggers redeploys."""

    def __init__(
        self,
        db: DatabaseManager,
        git_service: GitService,
        orchestrator: ProjectOrchestrator,
        interval: float,
        deploy_timeout: float = DEFAULT_DEPLOY_TIMEOUT,
    ):
        self.db = db
        self.git = git_service
        self.orchestrator = orchestrator
        self.interval = interval
        self.deploy_timeout = deploy_timeout
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the watch loop (no-op when already running)."""
        if self.is_running:
            logger.debug("Change watcher already running")
            return
        self._task = asyncio.create_task(self._run(), name="change-watcher")
        logger.info(f"Change watcher started (interval: {self.interval:g}s)")

    async def stop(self) -> None:
        """Stop the watch loop and wait for it to exit."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Change watcher stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.scan_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # A failed scan (e.g. store unavailable) must not kill the loop
                logger.error(f"Change watcher scan failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval)

    async def scan_once(self) -> int:
        """
        Check every auto-deploy project once.

        Returns:
            Number of deploys triggered
        """
        projects = self.db.list_auto_deploy_enabled()
        logger.debug(f"Checking {len(projects)} auto-deploy project(s) for updates")

        deployed = 0
        for project in projects:
            try:
                if await self._check(project):
                    deployed += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error checking project {project.name} for updates: {e}")
        return deployed

    async def check_project(self, project_id: str) -> bool:
        """
        Check one project now, regardless of its auto-deploy setting.

        Returns:
            True if an update was found and deployed

        Raises:
            ProjectNotFoundError: If the project does not exist
        """
        project = self.db.get_project(project_id)
        return await self._check(project)

    def _should_skip(self, project: Project) -> Optional[str]:
        if not project.git_url:
            return "no git URL"
        if project.status == ProjectStatus.DEPLOYING or self.orchestrator.is_deploying(project.id):
            return "deployment in progress"
        if not self.git.repo_exists(project.name):
            return "not cloned yet"
        return None

    async def _check(self, project: Project) -> bool:
        reason = self._should_skip(project)
        if reason:
            logger.debug(f"Skipping {project.name}: {reason}")
            return False

        # The claim covers the remote check, the pull and the deploy
        try:
            with self.orchestrator.claim(project.id):
                return await self._update(project)
        except DeployInProgressError:
            logger.info(f"Skipping {project.name}: deployment already in progress")
            return False

    async def _update(self, project: Project) -> bool:
        has_update, remote_commit = await self.git.has_update(project.git_url, project.branch, project.name)
        if not has_update:
            return False

        logger.info(f"Update detected for {project.name}: {remote_commit[:8]}")

        result = await self.git.ensure(project.git_url, project.branch, project.name)
        if not result.success:
            raise SourceSyncError(f"Failed to pull {project.name}: {result.error}")

        self.db.update_last_commit(project.id, result.commit or remote_commit)
        project.last_commit = result.commit or remote_commit

        try:
            await asyncio.wait_for(self.orchestrator.deploy_claimed(project), timeout=self.deploy_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Auto-deploy of {project.name} timed out after {self.deploy_timeout:g}s")
            self._record_timeout(project)
            return False
        except Exception as e:
            # Already recorded on the project by the orchestrator
            logger.error(f"Auto-deploy of {project.name} failed: {e}")
            return False

        logger.info(f"Auto-deployed {project.name} at {project.last_commit[:8]}")
        return True

    def _record_timeout(self, project: Project) -> None:
        try:
            self.db.update_status(
                project.id,
                ProjectStatus.ERROR,
                f"Deployment timed out after {self.deploy_timeout:g}s",
            )
        except ProjectNotFoundError:
            logger.debug(f"Project {project.name} deleted during timed-out deploy")
