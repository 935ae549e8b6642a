"""Live sequences: subscribe/cancel handles backed by an observer list per query key.

A LiveQuery is handed out already attached to its owner. The owner pushes a
snapshot with emit() whenever the underlying data changes; the subscriber reads
them in order with ``async for`` (or ``anext``) and releases the handle with
cancel(), or by leaving an ``async with`` block.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Callable, Generic, Hashable, TypeVar

_log = logging.getLogger(__name__)

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)

_CLOSED = object()


class LiveQuery(Generic[T]):
    """Ordered stream of snapshots for one query, until cancelled."""

    def __init__(self, on_cancel: Callable[["LiveQuery[T]"], None] | None = None) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._on_cancel = on_cancel
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def emit(self, snapshot: T) -> None:
        if not self._cancelled:
            self._queue.put_nowait(snapshot)

    def cancel(self) -> None:
        """Detach from the owner and end iteration. Pending snapshots are dropped."""
        if self._cancelled:
            return
        self._cancelled = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)
        if self._on_cancel is not None:
            self._on_cancel(self)

    def drain(self) -> list[T]:
        """Return every snapshot that is ready now, without waiting."""
        ready: list[T] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                break
            ready.append(item)
        return ready

    def __aiter__(self) -> "LiveQuery[T]":
        return self

    async def __anext__(self) -> T:
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker in place so later reads stop too.
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "LiveQuery[T]":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.cancel()


class SwitchingLiveQuery(LiveQuery[T]):
    """One stream fed by whichever source query is current.

    switch() cancels the previous source and drops anything it emitted that
    the subscriber has not read yet, so the next snapshot read is the new
    source's initial one.
    """

    def __init__(self) -> None:
        super().__init__()
        self._source: LiveQuery[T] | None = None
        self._pump: asyncio.Task | None = None

    def switch(self, source: LiveQuery[T]) -> None:
        if self.cancelled:
            source.cancel()
            return
        self._stop_source()
        self.drain()
        self._source = source
        self._pump = asyncio.get_running_loop().create_task(self._forward(source))

    async def _forward(self, source: LiveQuery[T]) -> None:
        async for snapshot in source:
            if source is not self._source:
                break
            self.emit(snapshot)

    def _stop_source(self) -> None:
        if self._source is not None:
            self._source.cancel()
            self._source = None
        if self._pump is not None:
            self._pump.cancel()
            self._pump = None

    def cancel(self) -> None:
        self._stop_source()
        super().cancel()


class ObserverRegistry(Generic[K]):
    """Observer lists keyed by query. ``on_idle`` fires when a key loses its last observer."""

    def __init__(self, on_idle: Callable[[K], None] | None = None) -> None:
        self._observers: dict[K, list[LiveQuery]] = defaultdict(list)
        self._on_idle = on_idle

    def attach(self, key: K) -> LiveQuery:
        query: LiveQuery = LiveQuery(on_cancel=lambda q: self._detach(key, q))
        self._observers[key].append(query)
        return query

    def _detach(self, key: K, query: LiveQuery) -> None:
        observers = self._observers.get(key)
        if not observers or query not in observers:
            return
        observers.remove(query)
        if not observers:
            del self._observers[key]
            _log.debug("last observer released for %r", key)
            if self._on_idle is not None:
                self._on_idle(key)

    def keys(self) -> list[K]:
        return list(self._observers)

    def observers(self, key: K) -> list[LiveQuery]:
        return list(self._observers.get(key, ()))

    def emit(self, key: K, snapshot) -> None:
        for query in self.observers(key):
            query.emit(snapshot)

    def count(self, key: K | None = None) -> int:
        if key is not None:
            return len(self._observers.get(key, ()))
        return sum(len(v) for v in self._observers.values())
