import json

import httpx
import pytest
import pytest_asyncio

from agent_directory.errors import RemoteApplicationFailure, RemoteTransportFailure
from agent_directory.fetchers.dummyjson import RemoteSource

pytestmark = pytest.mark.asyncio

BASE = "https://api.test/"


@pytest.fixture
def seen():
    return []


@pytest_asyncio.fixture
async def make_remote():
    """RemoteSource over a mock transport; the clients are closed after the test."""
    clients = []

    def build(handler) -> RemoteSource:
        client = httpx.AsyncClient(base_url=BASE, transport=httpx.MockTransport(handler))
        clients.append(client)
        return RemoteSource(BASE, client=client)

    yield build
    for client in clients:
        await client.aclose()


async def test_fetch_agents_sends_paging_and_parses(make_remote, seen):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={
            "users": [{"id": 1, "firstName": "Emily", "lastName": "Johnson"}],
            "total": 208, "skip": 5, "limit": 1,
        })

    page = await make_remote(handler).fetch_agents(limit=1, skip=5)

    assert seen[0].url.path == "/users"
    assert seen[0].url.params["limit"] == "1"
    assert seen[0].url.params["skip"] == "5"
    assert page.total == 208
    assert page.users[0].full_name == "Emily Johnson"


async def test_search_agents_sends_query(make_remote, seen):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"users": [], "total": 0, "skip": 0, "limit": 0})

    page = await make_remote(handler).search_agents("John Doe")

    assert seen[0].url.path == "/users/search"
    assert seen[0].url.params["q"] == "John Doe"
    assert page.users == []


async def test_fetch_posts_maps_author(make_remote, seen):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={
            "posts": [{"id": 3, "userId": 5, "title": "t", "body": "b", "reactions": {"likes": 4}}],
            "total": 1, "skip": 0, "limit": 30,
        })

    page = await make_remote(handler).fetch_posts(5)

    assert seen[0].url.path == "/posts/user/5"
    assert page.posts[0].agent_id == 5
    assert page.posts[0].total_reactions == 4


async def test_http_error_status_is_application_failure(make_remote):
    remote = make_remote(lambda r: httpx.Response(503, text="down"))

    with pytest.raises(RemoteApplicationFailure) as info:
        await remote.fetch_agents()

    assert info.value.status_code == 503


async def test_empty_body_is_application_failure(make_remote):
    remote = make_remote(lambda r: httpx.Response(200, content=b""))

    with pytest.raises(RemoteApplicationFailure, match="empty body"):
        await remote.fetch_posts(1)


async def test_malformed_body_is_application_failure(make_remote):
    body = json.dumps({"users": [{"firstName": "no id"}]}).encode()
    remote = make_remote(lambda r: httpx.Response(200, content=body))

    with pytest.raises(RemoteApplicationFailure, match="malformed"):
        await remote.search_agents("x")


async def test_connect_error_is_transport_failure(make_remote):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RemoteTransportFailure):
        await make_remote(handler).fetch_agents()


async def test_timeout_is_transport_failure(make_remote):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(RemoteTransportFailure):
        await make_remote(handler).fetch_agents()


async def test_injected_client_is_left_open(make_remote):
    remote = make_remote(lambda r: httpx.Response(204))

    await remote.aclose()

    assert not remote._client.is_closed


async def test_owned_client_is_closed():
    remote = RemoteSource(BASE)
    async with remote:
        pass
    assert remote._client.is_closed
