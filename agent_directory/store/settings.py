"""Mode/settings store: offline-only, auto-refresh and last-refresh-time flags.

Persistence is swappable via the SETTINGS_BACKEND env var:
  SETTINGS_BACKEND=sqlite   (default, SQLAlchemy async engine)
  SETTINGS_BACKEND=memory   (process lifetime only)
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import Column, MetaData, String, Table, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from agent_directory.errors import StorageFailure
from agent_directory.models import SettingsSnapshot
from agent_directory.utils.live import LiveQuery, ObserverRegistry

_log = logging.getLogger(__name__)

OFFLINE_ONLY_MODE = "offline_only_mode"
AUTO_REFRESH_ENABLED = "auto_refresh_enabled"
LAST_REFRESH_TIME = "last_refresh_time"

DEFAULTS: dict[str, Any] = {
    OFFLINE_ONLY_MODE: False,
    AUTO_REFRESH_ENABLED: True,
    LAST_REFRESH_TIME: 0,
}


# ── Protocol ─────────────────────────────────────────────────────────────────

@runtime_checkable
class SettingsBackend(Protocol):
    """Durable key/value storage for encoded setting values."""

    async def load(self) -> dict[str, str]:
        ...

    async def save(self, key: str, value: str) -> None:
        ...


# ── SQLiteSettingsBackend ────────────────────────────────────────────────────

_metadata = MetaData()
settings_table = Table(
    "settings",
    _metadata,
    Column("key", String, primary_key=True),
    Column("value", String, nullable=False),
)


class SQLiteSettingsBackend:
    """Stores settings rows through a SQLAlchemy async engine."""

    def __init__(self, *, engine: AsyncEngine) -> None:
        self._engine = engine
        self._tables_ready = False

    async def _ensure_tables(self) -> None:
        if not self._tables_ready:
            async with self._engine.begin() as conn:
                await conn.run_sync(_metadata.create_all)
            self._tables_ready = True

    async def load(self) -> dict[str, str]:
        try:
            await self._ensure_tables()
            async with self._engine.connect() as conn:
                result = await conn.execute(select(settings_table.c.key, settings_table.c.value))
                return {key: value for key, value in result}
        except SQLAlchemyError as exc:
            raise StorageFailure(f"could not load settings: {exc}") from exc

    async def save(self, key: str, value: str) -> None:
        stmt = sqlite_insert(settings_table).values(key=key, value=value)
        stmt = stmt.on_conflict_do_update(index_elements=[settings_table.c.key], set_={"value": value})
        try:
            await self._ensure_tables()
            async with self._engine.begin() as conn:
                await conn.execute(stmt)
        except SQLAlchemyError as exc:
            raise StorageFailure(f"could not save setting {key!r}: {exc}") from exc


# ── MemorySettingsBackend ────────────────────────────────────────────────────

class MemorySettingsBackend:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._rows: dict[str, str] = dict(initial or {})

    async def load(self) -> dict[str, str]:
        return dict(self._rows)

    async def save(self, key: str, value: str) -> None:
        self._rows[key] = value


# ── Factory ──────────────────────────────────────────────────────────────────

def make_settings_backend(kind: str | None = None, *, engine: AsyncEngine | None = None) -> SettingsBackend:
    """Return the settings backend named by ``kind`` (default: SETTINGS_BACKEND env var).

    Raises ValueError if the sqlite backend is requested without an engine.
    """
    kind = (kind or os.getenv("SETTINGS_BACKEND", "sqlite")).lower()

    if kind == "sqlite":
        if engine is None:
            raise ValueError("make_settings_backend requires engine= when backend=sqlite")
        return SQLiteSettingsBackend(engine=engine)

    if kind == "memory":
        return MemorySettingsBackend()

    raise ValueError(f"Unknown SETTINGS_BACKEND={kind!r}. Use 'sqlite' or 'memory'.")


# ── SettingsStore ────────────────────────────────────────────────────────────

class SettingsStore:
    """Live, durable settings. Writes are serialized; the same key is last-writer-wins."""

    def __init__(self, backend: SettingsBackend) -> None:
        self._backend = backend
        self._values: dict[str, Any] | None = None
        self._lock = asyncio.Lock()
        self._live: ObserverRegistry[str] = ObserverRegistry()

    async def _load_locked(self) -> dict[str, Any]:
        if self._values is None:
            values = dict(DEFAULTS)
            for key, raw in (await self._backend.load()).items():
                if key not in DEFAULTS:
                    continue
                try:
                    decoded = json.loads(raw)
                except json.JSONDecodeError:
                    _log.warning("ignoring unreadable setting %s=%r", key, raw)
                    continue
                if type(decoded) is not type(DEFAULTS[key]):
                    _log.warning("ignoring setting %s with wrong type: %r", key, decoded)
                    continue
                values[key] = decoded
            self._values = values
        return self._values

    async def get(self, key: str) -> Any:
        if key not in DEFAULTS:
            raise KeyError(key)
        async with self._lock:
            return (await self._load_locked())[key]

    async def _set(self, key: str, value: Any) -> None:
        async with self._lock:
            values = await self._load_locked()
            await self._backend.save(key, json.dumps(value))
            changed = values[key] != value
            values[key] = value
            if changed:
                self._live.emit(key, value)
        _log.debug("setting %s=%r", key, value)

    async def live(self, key: str) -> LiveQuery:
        """Stream of one setting: current value now, then each change."""
        if key not in DEFAULTS:
            raise KeyError(key)
        async with self._lock:
            value = (await self._load_locked())[key]
            query = self._live.attach(key)
            query.emit(value)
        return query

    # Convenience accessors

    async def offline_only(self) -> bool:
        return await self.get(OFFLINE_ONLY_MODE)

    async def auto_refresh_enabled(self) -> bool:
        return await self.get(AUTO_REFRESH_ENABLED)

    async def last_refresh_time(self) -> int:
        return await self.get(LAST_REFRESH_TIME)

    async def live_offline_only(self) -> LiveQuery[bool]:
        return await self.live(OFFLINE_ONLY_MODE)

    async def live_auto_refresh_enabled(self) -> LiveQuery[bool]:
        return await self.live(AUTO_REFRESH_ENABLED)

    async def live_last_refresh_time(self) -> LiveQuery[int]:
        return await self.live(LAST_REFRESH_TIME)

    async def snapshot(self) -> SettingsSnapshot:
        async with self._lock:
            values = await self._load_locked()
            return SettingsSnapshot(
                offline_only=values[OFFLINE_ONLY_MODE],
                auto_refresh_enabled=values[AUTO_REFRESH_ENABLED],
                last_refresh_time=values[LAST_REFRESH_TIME],
            )

    async def set_offline_only(self, enabled: bool) -> None:
        await self._set(OFFLINE_ONLY_MODE, bool(enabled))

    async def set_auto_refresh_enabled(self, enabled: bool) -> None:
        await self._set(AUTO_REFRESH_ENABLED, bool(enabled))

    async def record_refresh_success(self) -> None:
        await self._set(LAST_REFRESH_TIME, int(time.time() * 1000))
