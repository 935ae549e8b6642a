"""Connectivity oracle: is there a link, and has it been validated as internet-capable?

The state is driven through three callbacks shaped like an OS network
callback (on_available / on_lost / on_capabilities_changed). Without an OS
hook, a polling observer feeds them: a UDP route check for "link up" and an
HTTP probe for "validated". The observer runs from start() until close(),
and otherwise only while someone is subscribed to live_reachability().
"""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Callable

import httpx

from agent_directory.config import DEFAULT_PROBE_URL
from agent_directory.utils.live import LiveQuery, ObserverRegistry

_log = logging.getLogger(__name__)

_REACHABILITY = "reachability"


def route_available(host: str = "8.8.8.8", port: int = 53) -> bool:
    """True if the OS has a route out. Connecting a UDP socket sends no packets."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect((host, port))
        return True
    except OSError:
        return False


class ConnectivityMonitor:
    def __init__(
        self,
        probe_url: str = DEFAULT_PROBE_URL,
        *,
        poll_interval: float = 10.0,
        client: httpx.AsyncClient | None = None,
        link_check: Callable[[], bool] = route_available,
    ) -> None:
        self._probe_url = probe_url
        self._poll_interval = poll_interval
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=5)
        self._link_check = link_check

        self._link_up = False
        self._internet = False
        self._validated = False
        self._published: bool | None = None

        self._live: ObserverRegistry[str] = ObserverRegistry(on_idle=self._on_idle)
        self._observer: asyncio.Task | None = None
        self._running = False

    # ── Instantaneous check ──────────────────────────────────────────────────

    def is_reachable(self) -> bool:
        return self._link_up and self._internet and self._validated

    # ── Platform callbacks ───────────────────────────────────────────────────

    def on_available(self) -> None:
        self._link_up = True
        self._publish()

    def on_lost(self) -> None:
        self._link_up = False
        self._internet = False
        self._validated = False
        self._publish()

    def on_capabilities_changed(self, internet: bool, validated: bool) -> None:
        self._link_up = True
        self._internet = internet
        self._validated = validated
        self._publish()

    def _publish(self) -> None:
        current = self.is_reachable()
        if current == self._published:
            return
        _log.info("network %s", "reachable" if current else "unreachable")
        self._published = current
        self._live.emit(_REACHABILITY, current)

    # ── Probing ──────────────────────────────────────────────────────────────

    async def _validate(self) -> bool:
        try:
            response = await self._client.get(self._probe_url)
        except httpx.RequestError as exc:
            _log.debug("connectivity probe failed: %r", exc)
            return False
        return response.status_code < 500

    async def probe(self) -> bool:
        """Check the link and validate it now; updates state and notifies subscribers."""
        if not self._link_check():
            self.on_lost()
            return False
        self.on_available()
        self.on_capabilities_changed(internet=True, validated=await self._validate())
        return self.is_reachable()

    async def start(self) -> bool:
        """Probe now, then keep polling until close() so is_reachable() stays current."""
        reachable = await self.probe()
        self._running = True
        self._ensure_observer()
        return reachable

    async def _observe(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            await self.probe()

    def _ensure_observer(self) -> None:
        if self._observer is None:
            self._observer = asyncio.get_running_loop().create_task(self._observe())
            _log.debug("connectivity observer started")

    # ── Live stream ──────────────────────────────────────────────────────────

    def live_reachability(self) -> LiveQuery[bool]:
        """Current reachability now, then every transition, until cancelled."""
        current = self.is_reachable()
        self._published = current
        query = self._live.attach(_REACHABILITY)
        query.emit(current)
        self._ensure_observer()
        return query

    @property
    def observing(self) -> bool:
        return self._observer is not None

    def _on_idle(self, _key: str) -> None:
        if not self._running:
            self._stop_observer()

    def _stop_observer(self) -> None:
        if self._observer is not None:
            self._observer.cancel()
            self._observer = None
            _log.debug("connectivity observer released")

    async def close(self) -> None:
        self._running = False
        for query in self._live.observers(_REACHABILITY):
            query.cancel()
        self._stop_observer()
        if self._owns_client:
            await self._client.aclose()
