"""
Unit tests for the snapshot store and subscriptions.

Tests verify:
- Readers only ever see published snapshots, never the writer's copy.
- set_status() republishes with only api_status changed.
- Slow subscribers lose the oldest snapshot instead of blocking.
- Closing a subscription ends iteration and detaches it.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

import asyncio

import pytest
from victron_gateway.src.models import ApiStatus, Snapshot
from victron_gateway.src.snapshot import SnapshotStore


class TestPublish:
    def test_initial_snapshot_connecting(self) -> None:
        store = SnapshotStore()
        assert store.current.api_status is ApiStatus.CONNECTING
        assert store.current.battery.soc == 0.0

    def test_working_copy_isolated_until_publish(self) -> None:
        """Mutating the working copy does not leak into current."""
        store = SnapshotStore()
        copy = store.working_copy()
        copy.battery.soc = 55.0

        assert store.current.battery.soc == 0.0
        store.publish(copy)
        assert store.current.battery.soc == 55.0

    def test_set_status_changes_only_status(self) -> None:
        store = SnapshotStore()
        copy = store.working_copy()
        copy.grid.power = 400.0
        store.publish(copy)

        store.set_status(ApiStatus.ERROR)

        assert store.current.api_status is ApiStatus.ERROR
        assert store.current.grid.power == 400.0
        assert store.current is not copy

    def test_set_status_unchanged_is_noop(self) -> None:
        store = SnapshotStore()
        before = store.current
        store.set_status(ApiStatus.CONNECTING)
        assert store.current is before


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_subscriber_receives_published(self) -> None:
        store = SnapshotStore()
        subscription = store.subscribe()
        snapshot = Snapshot(api_status=ApiStatus.CONNECTED)

        store.publish(snapshot)

        assert await asyncio.wait_for(subscription.get(), timeout=1.0) is snapshot

    @pytest.mark.asyncio
    async def test_slow_subscriber_drops_oldest(self) -> None:
        """With depth 1 only the newest snapshot is kept."""
        store = SnapshotStore()
        subscription = store.subscribe(maxsize=1)
        first, second = Snapshot(), Snapshot()

        store.publish(first)
        store.publish(second)

        assert await subscription.get() is second

    @pytest.mark.asyncio
    async def test_close_ends_iteration_and_detaches(self) -> None:
        store = SnapshotStore()
        subscription = store.subscribe()
        received: list[Snapshot] = []

        async def _consume() -> None:
            async for snapshot in subscription:
                received.append(snapshot)

        consumer = asyncio.create_task(_consume())
        store.publish(Snapshot())
        await asyncio.sleep(0.01)
        subscription.close()
        await asyncio.wait_for(consumer, timeout=1.0)

        assert len(received) == 1
        assert store.subscriber_count == 0
        assert subscription.closed is True

    def test_close_is_idempotent(self) -> None:
        store = SnapshotStore()
        subscription = store.subscribe()
        subscription.close()
        subscription.close()
        assert store.subscriber_count == 0
