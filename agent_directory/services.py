"""Process-wide service graph, built once and passed explicitly.

The foreground commands and the background refresh job share one Services
instance; start() is idempotent so whichever runs first brings it up.
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from agent_directory.config import Config
from agent_directory.coordinator import CacheCoordinator
from agent_directory.fetchers.dummyjson import RemoteSource
from agent_directory.network import ConnectivityMonitor
from agent_directory.store.database import AgentStore
from agent_directory.store.settings import SettingsStore, make_settings_backend
from agent_directory.work import (
    RefreshScheduler,
    RefreshWorker,
    cancel_periodic_refresh,
    schedule_periodic_refresh,
)

_log = logging.getLogger(__name__)


class Services:
    def __init__(
        self,
        config: Config | None = None,
        *,
        remote: RemoteSource | None = None,
        store: AgentStore | None = None,
        connectivity: ConnectivityMonitor | None = None,
        settings: SettingsStore | None = None,
        scheduler: RefreshScheduler | None = None,
    ) -> None:
        self.config = config or Config.from_env()
        cfg = self.config

        self.remote = remote or RemoteSource(cfg.api_url, timeout=cfg.http_timeout)
        self.store = store or AgentStore(cfg.db_path)
        self.connectivity = connectivity or ConnectivityMonitor(
            cfg.probe_url, poll_interval=cfg.connectivity_poll_seconds
        )

        self._engine: AsyncEngine | None = None
        if settings is None:
            if cfg.settings_backend == "sqlite":
                self._engine = create_async_engine(f"sqlite+aiosqlite:///{cfg.settings_db_path}")
            settings = SettingsStore(make_settings_backend(cfg.settings_backend, engine=self._engine))
        self.settings = settings

        self.coordinator = CacheCoordinator(self.remote, self.store, self.connectivity, self.settings)
        self.scheduler = scheduler or RefreshScheduler(
            network_available=self.connectivity.is_reachable,
            constraint_poll=cfg.connectivity_poll_seconds,
        )
        self.worker = RefreshWorker(self)

        self._started = False
        self._start_lock = asyncio.Lock()

    async def start(self) -> "Services":
        async with self._start_lock:
            if not self._started:
                await self.store.open()
                reachable = await self.connectivity.start()
                self._started = True
                _log.info("services started (db=%s, reachable=%s)", self.config.db_path, reachable)
        return self

    async def restore_background_refresh(self) -> bool:
        """Schedule the periodic refresh if auto refresh is on; True if it is scheduled."""
        if await self.settings.auto_refresh_enabled():
            schedule_periodic_refresh(
                self.scheduler, self.worker, self.config.refresh_interval_minutes
            )
            return True
        cancel_periodic_refresh(self.scheduler)
        return False

    async def close(self) -> None:
        await self.scheduler.shutdown()
        await self.coordinator.aclose()
        await self.connectivity.close()
        await self.store.close()
        await self.remote.aclose()
        if self._engine is not None:
            await self._engine.dispose()
        self._started = False

    async def __aenter__(self) -> "Services":
        return await self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
