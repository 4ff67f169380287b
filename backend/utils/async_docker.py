"""
Async wrapper for blocking Docker SDK calls.

The docker SDK is synchronous; calling it directly from a coroutine would
block the event loop for the duration of the HTTP round trip to the daemon.
"""

import asyncio
from typing import Any, Callable, TypeVar

T = TypeVar('T')


async def async_docker_call(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """
    Run a Docker SDK call in a worker thread.

    Examples:
        >>> container = await async_docker_call(client.containers.get, "abc123")
        >>> await async_docker_call(container.stop, timeout=10)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
