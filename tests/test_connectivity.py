import asyncio

import httpx
import pytest
import pytest_asyncio

from agent_directory.network import ConnectivityMonitor
from agent_directory.work import JobOutcome, RefreshScheduler

pytestmark = pytest.mark.asyncio


class _Link:
    """Switchable stand-in for the OS route check."""

    def __init__(self, up: bool = True) -> None:
        self.up = up

    def __call__(self) -> bool:
        return self.up


@pytest.fixture
def link():
    return _Link()


@pytest.fixture
def probe_status():
    # Mutable cell so tests can flip the probe answer.
    return {"code": 204}


@pytest_asyncio.fixture
async def monitor(link, probe_status):
    def handler(request: httpx.Request) -> httpx.Response:
        if probe_status["code"] is None:
            raise httpx.ConnectError("offline", request=request)
        return httpx.Response(probe_status["code"])

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    m = ConnectivityMonitor("http://probe.test/", client=client, link_check=link, poll_interval=3600)
    yield m
    await m.close()
    await client.aclose()


async def _next(query):
    return await asyncio.wait_for(anext(query), 1.0)


async def _wait_for(predicate, timeout: float = 1.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


async def test_starts_unreachable(monitor):
    assert monitor.is_reachable() is False


async def test_reachable_needs_internet_and_validation(monitor):
    monitor.on_available()
    assert not monitor.is_reachable()

    monitor.on_capabilities_changed(internet=True, validated=False)
    assert not monitor.is_reachable()

    monitor.on_capabilities_changed(internet=True, validated=True)
    assert monitor.is_reachable()

    monitor.on_lost()
    assert not monitor.is_reachable()


async def test_probe_validates_link(monitor):
    assert await monitor.start() is True
    assert monitor.is_reachable()


async def test_probe_server_error_is_not_validated(monitor, probe_status):
    probe_status["code"] = 503
    assert await monitor.probe() is False


async def test_probe_request_error_is_not_validated(monitor, probe_status):
    probe_status["code"] = None
    assert await monitor.probe() is False


async def test_probe_without_link_reports_lost(monitor, link):
    await monitor.probe()
    link.up = False

    assert await monitor.probe() is False
    assert not monitor.is_reachable()


async def test_live_emits_current_then_transitions_without_duplicates(monitor):
    live = monitor.live_reachability()
    assert await _next(live) is False

    monitor.on_capabilities_changed(internet=True, validated=True)
    monitor.on_capabilities_changed(internet=True, validated=True)
    monitor.on_lost()
    monitor.on_lost()

    assert live.drain() == [True, False]
    live.cancel()


async def test_observer_runs_only_while_subscribed(monitor):
    assert not monitor.observing

    first = monitor.live_reachability()
    second = monitor.live_reachability()
    assert monitor.observing

    first.cancel()
    assert monitor.observing

    second.cancel()
    assert not monitor.observing


async def test_observer_polls_and_publishes(link, probe_status):
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(probe_status["code"])))
    m = ConnectivityMonitor("http://probe.test/", client=client, link_check=link, poll_interval=0.01)
    try:
        async with m.live_reachability() as live:
            assert await _next(live) is False
            assert await _next(live) is True
            link.up = False
            assert await _next(live) is False
    finally:
        await m.close()
        await client.aclose()


async def test_close_ends_subscriptions(monitor):
    live = monitor.live_reachability()
    await _next(live)

    await monitor.close()

    assert not monitor.observing
    with pytest.raises(StopAsyncIteration):
        await anext(live)


async def test_started_monitor_notices_link_coming_back(link, probe_status):
    link.up = False
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(probe_status["code"])))
    m = ConnectivityMonitor("http://probe.test/", client=client, link_check=link, poll_interval=0.01)
    scheduler = RefreshScheduler(network_available=m.is_reachable, constraint_poll=0.01)
    runs = []

    async def job() -> JobOutcome:
        runs.append(1)
        return JobOutcome.SUCCESS

    try:
        assert await m.start() is False
        scheduler.enqueue_unique_periodic("j", 3600, job)
        await asyncio.sleep(0.05)
        assert runs == []

        link.up = True
        await _wait_for(m.is_reachable)
        await _wait_for(lambda: runs == [1])
    finally:
        await scheduler.shutdown()
        await m.close()
        await client.aclose()


async def test_started_monitor_notices_link_dropping(link, probe_status):
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(probe_status["code"])))
    m = ConnectivityMonitor("http://probe.test/", client=client, link_check=link, poll_interval=0.01)
    try:
        assert await m.start() is True
        assert m.observing

        link.up = False
        await _wait_for(lambda: not m.is_reachable())
    finally:
        await m.close()
        await client.aclose()
    assert not m.observing


async def test_started_monitor_keeps_observing_after_last_subscriber_leaves(monitor):
    await monitor.start()
    live = monitor.live_reachability()

    live.cancel()

    assert monitor.observing


async def test_subscriber_before_start_sees_no_duplicate(monitor):
    live = monitor.live_reachability()
    assert await _next(live) is False

    monitor.on_lost()
    monitor.on_available()

    assert live.drain() == []
    live.cancel()
