"""
Compose stack runtime backed by the docker compose CLI.

The user's compose file is never modified. Deckhand writes a derived copy
(.deckhand-compose.yml) next to it with the shared network and the routing
and management labels injected, and runs every compose command against that
copy under the compose project name deckhand-<name>.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Tuple

import yaml

from deployment.runtime import (
    DEFAULT_HEALTH_TIMEOUT,
    ComposeError,
    ComposeFileNotFoundError,
    RuntimeAdapter,
    RuntimeAdapterError,
    container_name,
    parse_tail,
)
from deployment.traefik_labels import inject_compose_labels
from models.project import Project

logger = logging.getLogger(__name__)

COMPOSE_FILE_CANDIDATES = (
    "docker-compose.yml",
    "docker-compose.yaml",
    "compose.yml",
    "compose.yaml",
)
DERIVED_COMPOSE_FILE = ".deckhand-compose.yml"

# Upper bound for up/down/restart; image builds can be slow
DEFAULT_COMMAND_TIMEOUT = 1800


def find_compose_file(project_dir: Path) -> Path:
    """
    Locate the compose file in a checkout.

    Raises:
        ComposeFileNotFoundError: If none of the conventional names exist
    """
    for candidate in COMPOSE_FILE_CANDIDATES:
        path = project_dir / candidate
        if path.is_file():
            return path
    raise ComposeFileNotFoundError(f"No docker-compose file found in {project_dir}")


def load_compose_file(path: Path) -> dict:
    """Parse a compose file into a plain document."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise RuntimeAdapterError(f"Invalid compose file {path.name}: {e}") from e

    if not isinstance(doc, dict) or not isinstance(doc.get("services"), dict) or not doc["services"]:
        raise RuntimeAdapterError(f"Compose file {path.name} defines no services")
    return doc


def write_compose_file(path: Path, doc: dict) -> None:
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(doc, f, sort_keys=False, default_flow_style=False)


class ComposeRuntime(RuntimeAdapter):
    """Runs a compose project from its checkout under deployments_dir/<name>."""

    def __init__(self, deployments_dir: str, base_domain: str,
                 command_timeout: float = DEFAULT_COMMAND_TIMEOUT):
        self.deployments_dir = Path(deployments_dir)
        self.base_domain = base_domain
        self.command_timeout = command_timeout

    def project_dir(self, project: Project) -> Path:
        return self.deployments_dir / project.name

    def derived_file(self, project: Project) -> Path:
        return self.project_dir(project) / DERIVED_COMPOSE_FILE

    def _active_compose_file(self, project: Project) -> Path:
        """Derived file when present, otherwise the original compose file."""
        derived = self.derived_file(project)
        if derived.is_file():
            return derived
        return find_compose_file(self.project_dir(project))

    def prepare(self, project: Project) -> Path:
        """Write the derived compose file and return its path."""
        project_dir = self.project_dir(project)
        if not project_dir.is_dir():
            raise ComposeFileNotFoundError(f"No checkout found for project {project.name}")

        source = find_compose_file(project_dir)
        doc = inject_compose_labels(project, load_compose_file(source), self.base_domain)

        derived = self.derived_file(project)
        write_compose_file(derived, doc)
        logger.debug(f"Wrote {derived} from {source.name}")
        return derived

    def _command(self, project: Project, compose_file: Path, *args: str) -> List[str]:
        return [
            "docker", "compose",
            "-f", str(compose_file),
            "-p", container_name(project),
            *args,
        ]

    def _env(self, project: Project) -> Dict[str, str]:
        return {**os.environ, **project.env_vars}

    async def _run(self, project: Project, cmd: List[str], action: str,
                   timeout: Optional[float] = None) -> Tuple[str, str]:
        """
        Run a compose command to completion.

        The child process is killed if the awaiting task is cancelled or the
        timeout elapses.

        Raises:
            ComposeError: On nonzero exit or timeout
        """
        timeout = timeout or self.command_timeout
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(self.project_dir(project)),
                env=self._env(project),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise RuntimeAdapterError("docker CLI not found") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._kill(proc)
            raise ComposeError(f"docker compose {action} timed out after {timeout:g}s")
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        stdout_text = stdout.decode("utf-8", errors="replace") if stdout else ""
        stderr_text = stderr.decode("utf-8", errors="replace") if stderr else ""

        if proc.returncode != 0:
            logger.error(f"docker compose {action} failed for {project.name} (exit {proc.returncode})")
            raise ComposeError(f"docker compose {action} failed", stdout_text, stderr_text)

        return stdout_text, stderr_text

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()

    async def bring_up(self, project: Project, health_timeout: float = DEFAULT_HEALTH_TIMEOUT) -> List[str]:
        derived = self.prepare(project)
        await self._run(
            project,
            self._command(project, derived, "up", "-d", "--build", "--remove-orphans"),
            "up",
        )
        logger.info(f"Compose stack {container_name(project)} is up")
        # Compose stacks are addressed by project name, not container handles
        return []

    async def tear_down(self, project: Project) -> None:
        if not self.project_dir(project).is_dir():
            logger.debug(f"No checkout for {project.name}, nothing to tear down")
            return
        try:
            compose_file = self._active_compose_file(project)
        except ComposeFileNotFoundError:
            logger.debug(f"No compose file for {project.name}, nothing to tear down")
            return

        await self._run(
            project,
            self._command(project, compose_file, "down", "--remove-orphans"),
            "down",
        )
        logger.info(f"Compose stack {container_name(project)} is down")

    async def restart(self, project: Project, health_timeout: float = DEFAULT_HEALTH_TIMEOUT) -> List[str]:
        derived = self.derived_file(project)
        if not derived.is_file():
            logger.info(f"No derived compose file for {project.name}, bringing it up")
            return await self.bring_up(project, health_timeout)

        await self._run(project, self._command(project, derived, "restart"), "restart")
        return []

    async def fetch_logs(self, project: Project, tail: Optional[int] = 100,
                         follow: bool = False) -> AsyncIterator[str]:
        args = ["logs", "--timestamps"]
        tail = parse_tail(tail)
        if tail:
            args += ["--tail", str(tail)]
        if follow:
            args.append("--follow")

        cmd = self._command(project, self._active_compose_file(project), *args)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(self.project_dir(project)),
                env=self._env(project),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as e:
            raise RuntimeAdapterError("docker CLI not found") from e

        try:
            while True:
                line = await proc.stdout.readline()
                if not line:
                    break
                yield line.decode("utf-8", errors="replace").rstrip("\r\n")
            await proc.wait()
            if proc.returncode != 0:
                raise ComposeError(f"docker compose logs failed (exit {proc.returncode})")
        finally:
            await self._kill(proc)
