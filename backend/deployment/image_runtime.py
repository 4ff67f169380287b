"""
Single-container runtime backed by the Docker SDK.

Every image project owns exactly one container named deckhand-<name>,
attached to the shared network and labelled for Traefik and for Deckhand.
All SDK calls go through async_docker_call so the event loop never blocks.
"""

import logging
from typing import AsyncIterator, List, Optional

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from deployment.runtime import (
    DEFAULT_HEALTH_TIMEOUT,
    ContainerExitedError,
    ContainerTimeoutError,
    ImagePullError,
    RuntimeAdapter,
    RuntimeAdapterError,
    container_name,
    parse_tail,
    strip_log_header,
)
from deployment.traefik_labels import (
    MANAGED_LABEL,
    NETWORK_NAME,
    PROJECT_LABEL,
    generate_traefik_labels,
    management_labels,
)
from models.project import Project
from utils.async_docker import async_docker_call
from utils.container_health import POLL_INTERVAL_SECONDS, wait_for_container_running

logger = logging.getLogger(__name__)

STOP_TIMEOUT_SECONDS = 10


class ImageRuntime(RuntimeAdapter):
    """Runs an image project as one labelled container."""

    def __init__(self, client: docker.DockerClient, base_domain: str,
                 poll_interval: float = POLL_INTERVAL_SECONDS):
        self.client = client
        self.base_domain = base_domain
        self.poll_interval = poll_interval

    async def ensure_network(self) -> None:
        """Create the shared bridge network if it does not exist yet."""
        existing = await async_docker_call(self.client.networks.list, names=[NETWORK_NAME])
        if any(net.name == NETWORK_NAME for net in existing):
            logger.debug(f"Network {NETWORK_NAME} already exists")
            return

        await async_docker_call(
            self.client.networks.create,
            NETWORK_NAME,
            driver="bridge",
            labels={MANAGED_LABEL: "true"},
        )
        logger.info(f"Created network {NETWORK_NAME}")

    def build_labels(self, project: Project) -> dict:
        labels = generate_traefik_labels(project, self.base_domain)
        labels.update(management_labels(project))
        return labels

    async def bring_up(self, project: Project, health_timeout: float = DEFAULT_HEALTH_TIMEOUT) -> List[str]:
        if not project.image:
            raise RuntimeAdapterError(f"Project {project.name} has no image configured")

        await self._pull(project.image)

        name = container_name(project)
        await self._remove_container(name)

        try:
            container = await async_docker_call(
                self.client.containers.create,
                project.image,
                name=name,
                environment=dict(project.env_vars),
                labels=self.build_labels(project),
                restart_policy={"Name": "unless-stopped"},
                network=NETWORK_NAME,
            )
            await async_docker_call(container.start)
        except DockerException as e:
            raise RuntimeAdapterError(f"Failed to start container {name}: {e}") from e

        logger.info(f"Started container {name} ({container.id[:12]}) for project {project.name}")

        try:
            state = await wait_for_container_running(
                self.client, container.id, timeout=health_timeout, interval=self.poll_interval
            )
        except NotFound as e:
            raise ContainerExitedError(container.id, "removed") from e

        # Unhealthy containers stay in place for inspection
        if state is None:
            raise ContainerTimeoutError(container.id, health_timeout)
        if state != "running":
            raise ContainerExitedError(container.id, state)

        return [container.id]

    async def _pull(self, image: str) -> None:
        logger.info(f"Pulling image {image}")
        try:
            await async_docker_call(self.client.images.pull, image)
        except (ImageNotFound, APIError) as e:
            raise ImagePullError(f"Failed to pull image {image}: {e}") from e

    async def _remove_container(self, name_or_id: str) -> bool:
        """
        Stop and force-remove a container.

        Returns:
            True if a container was removed, False if it did not exist
        """
        try:
            container = await async_docker_call(self.client.containers.get, name_or_id)
            await async_docker_call(container.stop, timeout=STOP_TIMEOUT_SECONDS)
            await async_docker_call(container.remove, force=True)
        except NotFound:
            return False
        except APIError as e:
            raise RuntimeAdapterError(f"Failed to remove container {name_or_id[:12]}: {e}") from e
        logger.info(f"Removed container {name_or_id[:12]}")
        return True

    async def tear_down(self, project: Project) -> None:
        for handle in project.container_ids:
            await self._remove_container(handle)

        # Catch containers whose handles were never recorded
        labelled = await async_docker_call(
            self.client.containers.list,
            all=True,
            filters={"label": f"{PROJECT_LABEL}={project.id}"},
        )
        for container in labelled:
            await self._remove_container(container.id)

    async def _live_containers(self, project: Project) -> list:
        live = []
        for handle in project.container_ids:
            try:
                live.append(await async_docker_call(self.client.containers.get, handle))
            except NotFound:
                logger.debug(f"Recorded container {handle[:12]} of {project.name} no longer exists")
        return live

    async def restart(self, project: Project, health_timeout: float = DEFAULT_HEALTH_TIMEOUT) -> List[str]:
        live = await self._live_containers(project)
        if not live:
            logger.info(f"No live container for {project.name}, bringing it up")
            return await self.bring_up(project, health_timeout)

        try:
            for container in live:
                await async_docker_call(container.restart, timeout=STOP_TIMEOUT_SECONDS)
        except APIError as e:
            raise RuntimeAdapterError(f"Failed to restart {project.name}: {e}") from e
        return [container.id for container in live]

    async def fetch_logs(self, project: Project, tail: Optional[int] = 100,
                         follow: bool = False) -> AsyncIterator[str]:
        source = project.container_ids[0] if project.container_ids else container_name(project)
        try:
            container = await async_docker_call(self.client.containers.get, source)
        except NotFound as e:
            raise RuntimeAdapterError(f"No container found for project {project.name}") from e

        stream = await async_docker_call(
            container.logs,
            stream=True,
            follow=follow,
            tail=parse_tail(tail) or "all",
            timestamps=True,
        )

        buffer = b""
        try:
            while True:
                chunk = await async_docker_call(next, stream, None)
                if chunk is None:
                    break
                buffer += chunk
                *lines, buffer = buffer.split(b"\n")
                for line in lines:
                    yield strip_log_header(line).decode("utf-8", errors="replace").rstrip("\r")
            if buffer:
                yield strip_log_header(buffer).decode("utf-8", errors="replace").rstrip("\r")
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()
