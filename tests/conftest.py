from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio

from agent_directory.coordinator import CacheCoordinator
from agent_directory.fetchers.dummyjson import RemoteSource
from agent_directory.network import ConnectivityMonitor
from agent_directory.store.database import AgentStore
from agent_directory.store.settings import MemorySettingsBackend, SettingsStore


@pytest_asyncio.fixture
async def store(tmp_path):
    async with AgentStore(str(tmp_path / "cache.db")) as s:
        yield s


@pytest.fixture
def settings():
    return SettingsStore(MemorySettingsBackend())


@pytest_asyncio.fixture
async def connectivity():
    """A monitor that reports a validated link and never touches the network."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(204)))
    monitor = ConnectivityMonitor(
        "http://probe.test/", client=client, link_check=lambda: True, poll_interval=3600
    )
    monitor.on_capabilities_changed(internet=True, validated=True)
    yield monitor
    await monitor.close()
    await client.aclose()


@pytest.fixture
def remote():
    return AsyncMock(spec=RemoteSource)


@pytest_asyncio.fixture
async def coordinator(remote, store, connectivity, settings):
    coord = CacheCoordinator(remote, store, connectivity, settings)
    yield coord
    await coord.aclose()
