"""
Runtime adapter abstraction for Deckhand.

A RuntimeAdapter turns a Project into running containers and back. Two
variants exist:
- ImageRuntime: one container from a registry image (docker SDK)
- ComposeRuntime: a compose stack from the project checkout (docker compose CLI)

The orchestrator only ever talks to this interface, so deploy, stop, restart
and logs behave the same way regardless of how a project is packaged.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Optional
import logging

from models.project import Project

logger = logging.getLogger(__name__)

DEFAULT_HEALTH_TIMEOUT = 60


class RuntimeAdapterError(Exception):
    """Base class for failures while bringing up or managing project containers."""
    pass


class ImagePullError(RuntimeAdapterError):
    """Raised when the project image cannot be pulled."""
    pass


class ContainerExitedError(RuntimeAdapterError):
    """Raised when a freshly started container exits or dies."""

    def __init__(self, container_id: str, state: str):
        self.container_id = container_id
        self.state = state
        super().__init__(f"Container {container_id[:12]} {state} while starting")


class ContainerTimeoutError(RuntimeAdapterError):
    """Raised when a container does not reach the running state in time."""

    def __init__(self, container_id: str, timeout: float):
        self.container_id = container_id
        self.timeout = timeout
        super().__init__(f"Container {container_id[:12]} not running after {timeout:g}s")


class ComposeFileNotFoundError(RuntimeAdapterError):
    """Raised when a project checkout contains no compose file."""
    pass


class ComposeError(RuntimeAdapterError):
    """Raised when a docker compose command exits nonzero."""

    def __init__(self, message: str, stdout: str = '', stderr: str = ''):
        self.stdout = stdout
        self.stderr = stderr
        detail = stderr.strip() or stdout.strip()
        super().__init__(f"{message}: {detail}" if detail else message)


def container_name(project: Project) -> str:
    """Conventional name of an image project's container (and compose project name)."""
    return f"deckhand-{project.name}"


def strip_log_header(line: bytes) -> bytes:
    """
    Remove the 8-byte docker stream multiplexing header if present.

    The header is [stream type (0, 1 or 2), 0, 0, 0, size (4 bytes)].
    """
    if len(line) >= 8 and line[0] in (0, 1, 2) and line[1:4] == b'\x00\x00\x00':
        return line[8:]
    return line


class RuntimeAdapter(ABC):
    """
    Abstract interface for project runtimes.

    Handles returned by bring_up/restart identify the containers a runtime
    created. Compose stacks are addressed by project name, so they return
    an empty list.
    """

    @abstractmethod
    async def bring_up(self, project: Project, health_timeout: float = DEFAULT_HEALTH_TIMEOUT) -> List[str]:
        """
        Create and start the project's containers.

        Args:
            project: Project to deploy
            health_timeout: Seconds to wait for the containers to run

        Returns:
            Container handles to persist on the project

        Raises:
            RuntimeAdapterError: On any failure
        """
        pass

    @abstractmethod
    async def tear_down(self, project: Project) -> None:
        """
        Stop and remove the project's containers.

        Idempotent: resources that no longer exist are not an error.
        """
        pass

    @abstractmethod
    async def restart(self, project: Project, health_timeout: float = DEFAULT_HEALTH_TIMEOUT) -> List[str]:
        """
        Restart the project's containers.

        When nothing is running yet, falls back to bring_up with the same
        health_timeout.

        Returns:
            Live container handles after the restart

        Raises:
            RuntimeAdapterError: On any failure
        """
        pass

    @abstractmethod
    def fetch_logs(self, project: Project, tail: int = 100, follow: bool = False) -> AsyncIterator[str]:
        """
        Stream log lines (without trailing newline).

        Finite when follow is False; otherwise runs until the consumer stops
        iterating.
        """
        pass


def parse_tail(tail: Optional[int]) -> Optional[int]:
    """Normalize a tail argument: None or <= 0 means all lines."""
    if tail is None or tail <= 0:
        return None
    return tail
