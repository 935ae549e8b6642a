"""SQLite-backed cache of agents and posts, with live queries.

Rows are replaced wholesale by id. Each live query is keyed by
(table, kind, argument); after any committed mutation of a table, every key on
that table is re-evaluated and its observers receive the new snapshot. Mutation,
commit and re-evaluation happen under one write lock, so each query's
snapshots arrive in commit order.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Any, Iterable

import aiosqlite

from agent_directory.errors import StorageFailure
from agent_directory.models import Agent, Post
from agent_directory.utils.live import LiveQuery, ObserverRegistry

_log = logging.getLogger(__name__)

AGENTS = "agents"
POSTS = "posts"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS agents (
        id         INTEGER PRIMARY KEY,
        first_name TEXT NOT NULL,
        last_name  TEXT NOT NULL,
        email      TEXT NOT NULL,
        username   TEXT NOT NULL,
        payload    TEXT NOT NULL,
        cached_at  INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS posts (
        id        INTEGER PRIMARY KEY,
        agent_id  INTEGER NOT NULL,
        payload   TEXT NOT NULL,
        cached_at INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_posts_agent_id ON posts (agent_id)",
)

QueryKey = tuple[str, str, Any]


def _like_pattern(substring: str) -> str:
    escaped = substring.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class AgentStore:
    """Persistent store for Agent and Post rows."""

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._live: ObserverRegistry[QueryKey] = ObserverRegistry()

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def open(self) -> "AgentStore":
        if self._db is not None:
            return self
        try:
            self._db = await aiosqlite.connect(self._db_path)
            for statement in _SCHEMA:
                await self._db.execute(statement)
            await self._db.commit()
        except sqlite3.Error as exc:
            raise StorageFailure(f"could not open store at {self._db_path}: {exc}") from exc
        _log.debug("agent store opened (db=%s)", self._db_path)
        return self

    async def close(self) -> None:
        for key in self._live.keys():
            for query in self._live.observers(key):
                query.cancel()
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> "AgentStore":
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageFailure("store is not open")
        return self._db

    # ── Reads ────────────────────────────────────────────────────────────────

    async def _fetch(self, sql: str, params: Iterable[Any] = ()) -> list[tuple]:
        try:
            async with self._conn.execute(sql, tuple(params)) as cursor:
                return list(await cursor.fetchall())
        except sqlite3.Error as exc:
            raise StorageFailure(f"query failed: {exc}") from exc

    async def get_agent_by_id(self, agent_id: int) -> Agent | None:
        rows = await self._fetch("SELECT payload FROM agents WHERE id = ?", (agent_id,))
        return Agent.model_validate_json(rows[0][0]) if rows else None

    async def count_agents(self) -> int:
        rows = await self._fetch("SELECT COUNT(*) FROM agents")
        return rows[0][0]

    async def _evaluate(self, key: QueryKey) -> list:
        table, kind, arg = key
        if table == AGENTS and kind == "all":
            rows = await self._fetch("SELECT payload FROM agents ORDER BY first_name ASC, id ASC")
        elif table == AGENTS and kind == "search":
            pattern = _like_pattern(arg)
            rows = await self._fetch(
                """SELECT payload FROM agents
                   WHERE first_name LIKE ? ESCAPE '\\'
                      OR last_name  LIKE ? ESCAPE '\\'
                      OR email      LIKE ? ESCAPE '\\'
                      OR username   LIKE ? ESCAPE '\\'
                   ORDER BY first_name ASC, id ASC""",
                (pattern,) * 4,
            )
        elif table == POSTS and kind == "agent":
            rows = await self._fetch(
                "SELECT payload FROM posts WHERE agent_id = ? ORDER BY id DESC", (arg,)
            )
        else:
            raise ValueError(f"unknown live query {key!r}")
        model = Agent if table == AGENTS else Post
        return [model.model_validate_json(r[0]) for r in rows]

    # ── Live queries ─────────────────────────────────────────────────────────

    async def _subscribe(self, key: QueryKey) -> LiveQuery:
        async with self._lock:
            snapshot = await self._evaluate(key)
            query = self._live.attach(key)
            query.emit(snapshot)
        return query

    async def live_all_agents(self) -> LiveQuery[list[Agent]]:
        """All agents sorted by first name. Emits now and after every change."""
        return await self._subscribe((AGENTS, "all", None))

    async def live_agents_matching(self, substring: str) -> LiveQuery[list[Agent]]:
        """Agents whose name, email or username contains ``substring`` (case-insensitive)."""
        return await self._subscribe((AGENTS, "search", substring))

    async def live_posts_for_agent(self, agent_id: int) -> LiveQuery[list[Post]]:
        """Posts of one agent, newest (highest id) first."""
        return await self._subscribe((POSTS, "agent", agent_id))

    def observer_count(self) -> int:
        return self._live.count()

    # ── Mutations ────────────────────────────────────────────────────────────

    async def _mutate(self, tables: tuple[str, ...], statements: list[tuple[str, list[tuple]]]) -> None:
        """Run statements in one transaction, then re-emit every live query on ``tables``."""
        async with self._lock:
            db = self._conn
            try:
                for sql, param_rows in statements:
                    if len(param_rows) == 1:
                        await db.execute(sql, param_rows[0])
                    else:
                        await db.executemany(sql, param_rows)
                await db.commit()
            except sqlite3.Error as exc:
                await db.rollback()
                raise StorageFailure(f"write to {', '.join(tables)} failed: {exc}") from exc
            except asyncio.CancelledError:
                await db.rollback()
                raise

            for key in self._live.keys():
                if key[0] in tables:
                    self._live.emit(key, await self._evaluate(key))

    async def upsert_agents(self, agents: list[Agent]) -> None:
        if not agents:
            return
        rows = [
            (a.id, a.first_name, a.last_name, a.email, a.username, a.model_dump_json(), a.cached_at)
            for a in agents
        ]
        await self._mutate((AGENTS,), [(
            """INSERT OR REPLACE INTO agents
               (id, first_name, last_name, email, username, payload, cached_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            rows,
        )])
        _log.debug("upserted %d agents", len(rows))

    async def upsert_posts(self, posts: list[Post]) -> None:
        if not posts:
            return
        rows = [(p.id, p.agent_id, p.model_dump_json(), p.cached_at) for p in posts]
        await self._mutate((POSTS,), [(
            "INSERT OR REPLACE INTO posts (id, agent_id, payload, cached_at) VALUES (?, ?, ?, ?)",
            rows,
        )])
        _log.debug("upserted %d posts", len(rows))

    async def delete_posts_for_agent(self, agent_id: int) -> None:
        await self._mutate((POSTS,), [("DELETE FROM posts WHERE agent_id = ?", [(agent_id,)])])

    async def delete_all_agents(self) -> None:
        await self._mutate((AGENTS,), [("DELETE FROM agents", [()])])

    async def delete_all_posts(self) -> None:
        await self._mutate((POSTS,), [("DELETE FROM posts", [()])])

    async def clear(self) -> None:
        await self._mutate(
            (AGENTS, POSTS),
            [("DELETE FROM agents", [()]), ("DELETE FROM posts", [()])],
        )
