"""
Single-writer snapshot store with copy-on-publish and subscriptions.

The acquisition loop is the only writer.  It takes a private deep copy via
:meth:`SnapshotStore.working_copy`, mutates that, then hands it back to
:meth:`SnapshotStore.publish`, which swaps the reference in one step.
Readers calling :attr:`SnapshotStore.current` therefore always get a fully
assembled snapshot, never one that is half-way through a cycle.

Subscribers get a bounded queue.  A slow subscriber only ever loses stale
snapshots (oldest dropped first); it never blocks or breaks the loop, and
closing a subscription only detaches that queue.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging

from victron_gateway.src.models import ApiStatus, Snapshot

logger = logging.getLogger(__name__)

DEFAULT_SUBSCRIPTION_DEPTH: int = 1
"""Snapshots buffered per subscriber before the oldest is dropped."""


class Subscription:
    """A consumer's view of published snapshots.

    Usable as an async iterator::

        async for snapshot in store.subscribe():
            ...

    Iteration ends once :meth:`close` is called.
    """

    def __init__(self, store: SnapshotStore, maxsize: int) -> None:
        self._store = store
        self._queue: asyncio.Queue[Snapshot | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, snapshot: Snapshot | None) -> None:
        if self._queue.full():
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(snapshot)

    async def get(self) -> Snapshot | None:
        """Wait for the next snapshot.  Returns ``None`` once closed."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        """Detach from the store.  Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._store._detach(self)
        # Wake any pending get()
        self._deliver(None)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> Snapshot:
        snapshot = await self.get()
        if snapshot is None:
            raise StopAsyncIteration
        return snapshot


class SnapshotStore:
    """Holds the one live :class:`Snapshot` for a service instance.

    Args:
        initial: Starting snapshot.  Defaults to an all-zero snapshot with
            ``api_status = connecting``.
    """

    def __init__(self, initial: Snapshot | None = None) -> None:
        self._current = initial if initial is not None else Snapshot()
        self._subscribers: list[Subscription] = []

    @property
    def current(self) -> Snapshot:
        """The most recently published snapshot."""
        return self._current

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def working_copy(self) -> Snapshot:
        """Return a private deep copy for the writer to mutate."""
        return self._current.model_copy(deep=True)

    def publish(self, snapshot: Snapshot) -> None:
        """Make *snapshot* the current state and notify subscribers."""
        self._current = snapshot
        for subscription in list(self._subscribers):
            subscription._deliver(snapshot)

    def set_status(self, status: ApiStatus) -> None:
        """Publish the current snapshot with only ``api_status`` changed."""
        if self._current.api_status == status:
            return
        snapshot = self.working_copy()
        snapshot.api_status = status
        self.publish(snapshot)

    def subscribe(self, maxsize: int = DEFAULT_SUBSCRIPTION_DEPTH) -> Subscription:
        """Register a new subscriber."""
        subscription = Subscription(self, maxsize=max(1, maxsize))
        self._subscribers.append(subscription)
        logger.debug("Snapshot subscriber added (total %d)", len(self._subscribers))
        return subscription

    def _detach(self, subscription: Subscription) -> None:
        try:
            self._subscribers.remove(subscription)
        except ValueError:
            return
        logger.debug("Snapshot subscriber removed (total %d)", len(self._subscribers))
