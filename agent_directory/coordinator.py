"""Cache coordinator: cache-first reads, gated write-through refreshes.

Readers subscribe to the store's live queries and get cached rows at once.
Refreshes are gated by offline-only mode and connectivity. A successful
fetch is stamped and written to the store, which re-emits to every live
subscriber. A failed fetch leaves the store untouched. Every refresh returns
a Result and never raises a DirectoryError.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, TypeVar

from agent_directory.errors import DirectoryError, NetworkUnavailable, Result
from agent_directory.fetchers.dummyjson import RemoteSource
from agent_directory.models import Agent, Post
from agent_directory.network import ConnectivityMonitor
from agent_directory.store.database import AgentStore
from agent_directory.store.settings import SettingsStore
from agent_directory.utils.live import LiveQuery

_log = logging.getLogger(__name__)

T = TypeVar("T")


def now_ms() -> int:
    return int(time.time() * 1000)


class CacheCoordinator:
    def __init__(
        self,
        remote: RemoteSource,
        store: AgentStore,
        connectivity: ConnectivityMonitor,
        settings: SettingsStore,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._remote = remote
        self._store = store
        self._connectivity = connectivity
        self._settings = settings
        self._clock = clock
        self._background: set[asyncio.Task] = set()

    # ── Refresh ──────────────────────────────────────────────────────────────

    async def _refresh(
        self,
        what: str,
        fetch: Callable[[], Awaitable[list[T]]],
        persist: Callable[[list[T]], Awaitable[None]],
    ) -> Result[list[T]]:
        """Gate, then fetch and write through. The store is only touched on success."""
        try:
            # Reachability can change right after this check; the worst case is
            # one skipped or one doomed request.
            if await self._settings.offline_only() or not self._connectivity.is_reachable():
                return Result.failure(NetworkUnavailable())

            records = await fetch()
            stamp = self._clock()
            stamped = [r.model_copy(update={"cached_at": stamp}) for r in records]
            await persist(stamped)
        except DirectoryError as exc:
            _log.info("%s refresh failed: %s", what, exc)
            return Result.failure(exc)
        _log.debug("%s refresh stored %d record(s)", what, len(stamped))
        return Result.success(stamped)

    async def refresh_agents(self, limit: int = 20, skip: int = 0) -> Result[list[Agent]]:
        async def fetch() -> list[Agent]:
            return (await self._remote.fetch_agents(limit, skip)).users

        async def persist(agents: list[Agent]) -> None:
            await self._store.upsert_agents(agents)
            await self._settings.record_refresh_success()

        return await self._refresh("agents", fetch, persist)

    async def refresh_agents_by_search(self, query: str) -> Result[list[Agent]]:
        """Search upstream; results land in the same agent table as listings."""
        async def fetch() -> list[Agent]:
            return (await self._remote.search_agents(query)).users

        return await self._refresh("agent search", fetch, self._store.upsert_agents)

    async def refresh_posts_for_agent(self, agent_id: int) -> Result[list[Post]]:
        async def fetch() -> list[Post]:
            return (await self._remote.fetch_posts(agent_id)).posts

        return await self._refresh(f"posts of agent {agent_id}", fetch, self._store.upsert_posts)

    # ── Reads ────────────────────────────────────────────────────────────────

    async def live_agents(self, query: str = "") -> LiveQuery[list[Agent]]:
        """All agents for a blank query (empty or whitespace), else the cached matches."""
        if not query.strip():
            return await self._store.live_all_agents()
        return await self._store.live_agents_matching(query)

    async def live_posts(self, agent_id: int) -> LiveQuery[list[Post]]:
        return await self._store.live_posts_for_agent(agent_id)

    async def get_agent_cache_first(self, agent_id: int) -> Result[Agent | None]:
        """Return the cached agent now; refresh the listing in the background."""
        try:
            result: Result[Agent | None] = Result.success(await self._store.get_agent_by_id(agent_id))
        except DirectoryError as exc:
            result = Result.failure(exc)
        self._spawn(self.refresh_agents())
        return result

    async def clear_cache(self) -> Result[None]:
        try:
            await self._store.clear()
        except DirectoryError as exc:
            return Result.failure(exc)
        return Result.success(None)

    # ── Background work ──────────────────────────────────────────────────────

    def _spawn(self, coro: Awaitable[Result]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            _log.error("background refresh crashed", exc_info=task.exception())

    async def join(self) -> None:
        """Wait for background refreshes started so far."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._background):
            task.cancel()
        await self.join()
