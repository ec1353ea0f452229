"""Tests for per-key asyncio locks."""

import asyncio

import pytest

from complaint_triage.shared.infrastructure.locks import KeyedLockRegistry


class TestKeyedLockRegistry:
    @pytest.mark.asyncio
    async def test_holds_and_releases(self):
        locks = KeyedLockRegistry()

        async with locks.hold("complaint:b", "complaint:a", "complaint:a"):
            assert locks.is_locked("complaint:a")
            assert locks.is_locked("complaint:b")
            assert len(locks) == 2

        assert not locks.is_locked("complaint:a")
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_same_key_is_exclusive(self):
        locks = KeyedLockRegistry()
        order = []

        async def worker(name):
            async with locks.hold("cluster:1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("first"), worker("second"))

        assert order == ["first-in", "first-out", "second-in", "second-out"]

    @pytest.mark.asyncio
    async def test_overlapping_key_sets_do_not_deadlock(self):
        locks = KeyedLockRegistry()

        async def worker(*keys):
            async with locks.hold(*keys):
                await asyncio.sleep(0.01)

        await asyncio.wait_for(
            asyncio.gather(worker("a", "b"), worker("b", "a"), worker("b", "c")),
            timeout=2
        )
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_released_after_error(self):
        locks = KeyedLockRegistry()

        with pytest.raises(RuntimeError):
            async with locks.hold("a"):
                raise RuntimeError("boom")

        assert not locks.is_locked("a")
        assert len(locks) == 0
