"""Caller-side state for the directory and profile screens.

A feed follows the coordinator's live queries, starts background refreshes,
and keeps a small state object (rows, loading flag, error text) that a
presentation layer can watch. Failures are shown only when there is no
cached data to show instead.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable

from agent_directory.coordinator import CacheCoordinator
from agent_directory.errors import Result
from agent_directory.models import Agent, Post
from agent_directory.utils.live import LiveQuery, ObserverRegistry, SwitchingLiveQuery

_log = logging.getLogger(__name__)

SEARCH_DEBOUNCE = 0.5


@dataclass
class DirectoryState:
    query: str = ""
    agents: list[Agent] = field(default_factory=list)
    is_loading: bool = False
    error: str | None = None


@dataclass
class ProfileState:
    agent: Agent | None = None
    posts: list[Post] = field(default_factory=list)
    is_loading: bool = False
    error: str | None = None


class _Feed(ABC):
    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self._refreshes: set[asyncio.Task] = set()
        self._queries: list[LiveQuery] = []
        self._watchers: ObserverRegistry[str] = ObserverRegistry()

    @abstractmethod
    def _state(self):
        """Copy of the current state for watchers."""

    def watch(self) -> LiveQuery:
        """Current state now, then a copy after every change."""
        query = self._watchers.attach("state")
        query.emit(self._state())
        return query

    def _changed(self) -> None:
        self._watchers.emit("state", self._state())

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _follow(self, query: LiveQuery, apply: Callable) -> None:
        self._queries.append(query)

        async def run() -> None:
            async for snapshot in query:
                apply(snapshot)
                self._changed()

        self._spawn(run())

    async def settle(self) -> None:
        """Wait for the refreshes this feed has started (followers keep running)."""
        while self._refreshes:
            await asyncio.gather(*self._refreshes, return_exceptions=True)

    def _spawn_refresh(self, coro) -> asyncio.Task:
        task = self._spawn(coro)
        self._refreshes.add(task)
        task.add_done_callback(self._refreshes.discard)
        return task

    async def close(self) -> None:
        for query in self._queries:
            query.cancel()
        for key in self._watchers.keys():
            for watcher in self._watchers.observers(key):
                watcher.cancel()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


# ── Directory ────────────────────────────────────────────────────────────────

class DirectoryFeed(_Feed):
    """Agent listing with search.

    The cached view switches immediately on every query change. The remote
    search fires only after ``debounce`` seconds without a newer query, and a
    search overtaken by a newer query never touches this feed's state.
    """

    def __init__(self, coordinator: CacheCoordinator, *, debounce: float = SEARCH_DEBOUNCE) -> None:
        super().__init__()
        self._coordinator = coordinator
        self._debounce = debounce
        self.state = DirectoryState()
        self._stream: SwitchingLiveQuery[list[Agent]] = SwitchingLiveQuery()
        self._switch_lock = asyncio.Lock()
        self._generation = 0
        self._pending_search: asyncio.Task | None = None

    def _state(self) -> DirectoryState:
        s = self.state
        return DirectoryState(s.query, list(s.agents), s.is_loading, s.error)

    def _apply_agents(self, agents: list[Agent]) -> None:
        self.state.agents = agents
        self.state.is_loading = False

    def _apply_failure(self, result: Result) -> None:
        if not result.ok and not self.state.agents:
            self.state.error = str(result.error)
            self._changed()

    async def start(self) -> None:
        self._stream.switch(await self._coordinator.live_agents(""))
        self._follow(self._stream, self._apply_agents)
        self.state.is_loading = True
        self._changed()
        self._spawn_refresh(self._initial_refresh())

    async def _initial_refresh(self) -> None:
        result = await self._coordinator.refresh_agents()
        self.state.is_loading = False
        self._apply_failure(result)
        self._changed()

    async def set_query(self, query: str) -> None:
        async with self._switch_lock:
            if query == self.state.query:
                return
            self.state.query = query
            self._stream.switch(await self._coordinator.live_agents(query))

            self._generation += 1
            if self._pending_search is not None:
                self._pending_search.cancel()
                self._pending_search = None
            if query.strip():
                self._pending_search = self._spawn_refresh(self._debounced_search(query, self._generation))
            self._changed()

    async def _debounced_search(self, query: str, generation: int) -> None:
        await asyncio.sleep(self._debounce)
        # Once started, the request runs to completion even if superseded; its
        # rows are still valid cache entries.
        result = await asyncio.shield(self._coordinator.refresh_agents_by_search(query))
        if generation != self._generation:
            _log.debug("dropping result of superseded search %r", query)
            return
        self._apply_failure(result)

    async def refresh(self) -> Result[list[Agent]]:
        """User-initiated refresh of whatever the current query shows."""
        self.state.is_loading = True
        self.state.error = None
        self._changed()
        query = self.state.query
        if query.strip():
            result = await self._coordinator.refresh_agents_by_search(query)
        else:
            result = await self._coordinator.refresh_agents()
        self.state.is_loading = False
        self._apply_failure(result)
        self._changed()
        return result


# ── Profile ──────────────────────────────────────────────────────────────────

class ProfileFeed(_Feed):
    """One agent plus their posts, cache first."""

    def __init__(self, coordinator: CacheCoordinator, agent_id: int) -> None:
        super().__init__()
        self._coordinator = coordinator
        self.agent_id = agent_id
        self.state = ProfileState()

    def _state(self) -> ProfileState:
        s = self.state
        return ProfileState(s.agent, list(s.posts), s.is_loading, s.error)

    def _apply_listing(self, agents: list[Agent]) -> None:
        for agent in agents:
            if agent.id == self.agent_id:
                self.state.agent = agent
                return

    def _apply_posts(self, posts: list[Post]) -> None:
        self.state.posts = posts
        self.state.is_loading = False

    async def start(self) -> None:
        cached = await self._coordinator.get_agent_cache_first(self.agent_id)
        if cached.ok:
            self.state.agent = cached.value
        self._follow(await self._coordinator.live_agents(""), self._apply_listing)
        self._follow(await self._coordinator.live_posts(self.agent_id), self._apply_posts)
        self._spawn_refresh(self.refresh())

    async def refresh(self) -> Result[list[Post]]:
        self.state.is_loading = True
        self.state.error = None
        self._changed()
        result = await self._coordinator.refresh_posts_for_agent(self.agent_id)
        self.state.is_loading = False
        if not result.ok and not self.state.posts:
            self.state.error = str(result.error)
        self._changed()
        return result
