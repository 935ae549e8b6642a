"""HTTP client for the upstream directory API (dummyjson.com shape).

    GET /users?limit=<n>&skip=<m>   -> {users, total, skip, limit}
    GET /users/search?q=<string>    -> same shape
    GET /posts/user/{agentId}       -> {posts, total, skip, limit}

No caching and no retry beyond one transport-level reconnect attempt.
"""

from __future__ import annotations

import logging
from typing import TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from agent_directory.config import DEFAULT_API_URL
from agent_directory.errors import RemoteApplicationFailure, RemoteTransportFailure
from agent_directory.models import AgentPage, PostPage

_log = logging.getLogger(__name__)

PageT = TypeVar("PageT", bound=BaseModel)


class RemoteSource:
    """Stateless request/response access to the upstream API."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            transport=httpx.AsyncHTTPTransport(retries=1),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RemoteSource":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _get(self, path: str, page_type: type[PageT], params: dict | None = None) -> PageT:
        try:
            response = await self._client.get(path, params=params)
        except httpx.RequestError as exc:
            _log.debug("GET %s failed: %r", path, exc)
            raise RemoteTransportFailure(f"GET {path} failed: {exc}") from exc

        _log.debug("GET %s -> %s", response.request.url, response.status_code)
        if not response.is_success:
            raise RemoteApplicationFailure(
                f"GET {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if not response.content:
            raise RemoteApplicationFailure(f"GET {path} returned an empty body", response.status_code)
        try:
            return page_type.model_validate_json(response.content)
        except ValidationError as exc:
            raise RemoteApplicationFailure(
                f"GET {path} returned a malformed body: {exc.error_count()} error(s)",
                status_code=response.status_code,
            ) from exc

    async def fetch_agents(self, limit: int = 20, skip: int = 0) -> AgentPage:
        return await self._get("users", AgentPage, params={"limit": limit, "skip": skip})

    async def search_agents(self, query: str) -> AgentPage:
        return await self._get("users/search", AgentPage, params={"q": query})

    async def fetch_posts(self, agent_id: int) -> PostPage:
        return await self._get(f"posts/user/{agent_id}", PostPage)
