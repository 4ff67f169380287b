"""
Unit tests for the container state polling utility.

Tests verify:
- Running detection
- Terminal state detection (exited, dead)
- Timeout handling
- Container disappearing while polled
"""

import pytest
from unittest.mock import Mock
from docker.errors import NotFound

from utils.container_health import wait_for_container_running


def _client(*states):
    """Mock client whose container reports the given states in order (last one repeats)."""
    client = Mock()
    remaining = list(states)

    def _get(container_id):
        state = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        container = Mock()
        container.attrs = {'State': {'Status': state}}
        return container

    client.containers.get.side_effect = _get
    return client


class TestWaitForContainerRunning:
    """Tests for wait_for_container_running"""

    @pytest.mark.asyncio
    async def test_running_immediately(self):
        client = _client("running")
        assert await wait_for_container_running(client, "abc123", timeout=1, interval=0) == "running"
        assert client.containers.get.call_count == 1

    @pytest.mark.asyncio
    async def test_running_after_created(self):
        client = _client("created", "created", "running")
        assert await wait_for_container_running(client, "abc123", timeout=5, interval=0) == "running"
        assert client.containers.get.call_count == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("state", ["exited", "dead"])
    async def test_terminal_states(self, state):
        client = _client("created", state)
        assert await wait_for_container_running(client, "abc123", timeout=5, interval=0) == state

    @pytest.mark.asyncio
    async def test_timeout_returns_none(self):
        client = _client("restarting")
        assert await wait_for_container_running(client, "abc123", timeout=0.05, interval=0.01) is None

    @pytest.mark.asyncio
    async def test_zero_timeout_reads_once(self):
        client = _client("created")
        assert await wait_for_container_running(client, "abc123", timeout=0, interval=0) is None
        assert client.containers.get.call_count == 1

    @pytest.mark.asyncio
    async def test_missing_container_propagates(self):
        client = Mock()
        client.containers.get.side_effect = NotFound("No such container")
        with pytest.raises(NotFound):
            await wait_for_container_running(client, "abc123", timeout=1, interval=0)
