"""
Shared container state polling utility.

Used by the image runtime after starting a project container to decide
whether the deploy succeeded.
"""

import asyncio
import time
import logging
import docker
from typing import Optional

from utils.async_docker import async_docker_call

logger = logging.getLogger(__name__)

# States after which a container will not come up on its own
TERMINAL_STATES = frozenset({'exited', 'dead'})

POLL_INTERVAL_SECONDS = 0.5


async def wait_for_container_running(
    client: docker.DockerClient,
    container_id: str,
    timeout: float = 60,
    interval: float = POLL_INTERVAL_SECONDS,
) -> Optional[str]:
    """
    Poll a container until it is running or has stopped for good.

    Args:
        client: Docker SDK client instance
        container_id: Container ID or name
        timeout: Maximum time to wait in seconds
        interval: Delay between state reads

    Returns:
        'running' on success, the terminal state ('exited' or 'dead') if the
        container stopped, or None if the timeout elapsed first

    Raises:
        docker.errors.NotFound: If the container disappears while waiting
    """
    deadline = time.monotonic() + timeout

    while True:
        container = await async_docker_call(client.containers.get, container_id)
        state = container.attrs.get("State", {}).get("Status", "")

        if state == "running":
            logger.info(f"Container {container_id[:12]} is running")
            return state
        if state in TERMINAL_STATES:
            logger.error(f"Container {container_id[:12]} stopped while starting (state: {state})")
            return state

        if time.monotonic() >= deadline:
            logger.error(f"Container {container_id[:12]} not running after {timeout}s (state: {state})")
            return None

        logger.debug(f"Container {container_id[:12]} state: {state}, waiting...")
        await asyncio.sleep(interval)
