"""
Tests for the distributed lock.

Tests cover:
1. Acquire / release cycle
2. Mutual exclusion (sequential and concurrent)
3. Expired lock reclamation
4. Datastore failures on acquire propagate
5. Release never raises
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from reconciliation_agent.core.typing import as_utc, utc_now
from reconciliation_agent.models.reconciliation import SINGLETON_LOCK_ID, ReconciliationLock
from reconciliation_agent.services.lock import DistributedLock


class TestAcquire:
    @pytest.mark.asyncio
    async def test_acquire_free_lock(self, session_factory):
        lock = DistributedLock(session_factory)

        assert await lock.acquire("run_a", ttl_seconds=300) is True

        row = await lock.current()
        assert row is not None
        assert row.id == SINGLETON_LOCK_ID
        assert row.owner_id == "run_a"
        ttl = (as_utc(row.expires_at) - as_utc(row.acquired_at)).total_seconds()
        assert ttl == pytest.approx(300, abs=1)

    @pytest.mark.asyncio
    async def test_second_acquire_fails_while_held(self, session_factory):
        lock = DistributedLock(session_factory)

        assert await lock.acquire("run_a", ttl_seconds=300) is True
        assert await lock.acquire("run_b", ttl_seconds=300) is False

        row = await lock.current()
        assert row.owner_id == "run_a"

    @pytest.mark.asyncio
    async def test_concurrent_acquire_exactly_one_wins(self, session_factory):
        lock = DistributedLock(session_factory)

        results = await asyncio.gather(
            lock.acquire("run_a", ttl_seconds=300),
            lock.acquire("run_b", ttl_seconds=300),
        )

        assert sorted(results) == [False, True]

    @pytest.mark.asyncio
    async def test_expired_lock_is_reclaimed(self, session_factory):
        """A lock row whose expiry is in the past does not block acquisition."""
        past = utc_now() - timedelta(minutes=10)
        async with session_factory() as session:
            session.add(
                ReconciliationLock(
                    owner_id="run_crashed",
                    acquired_at=past - timedelta(minutes=5),
                    expires_at=past,
                )
            )
            await session.commit()

        lock = DistributedLock(session_factory)
        assert await lock.acquire("run_new", ttl_seconds=300) is True

        async with session_factory() as session:
            rows = (await session.exec(select(ReconciliationLock))).all()
        assert [r.owner_id for r in rows] == ["run_new"]

    @pytest.mark.asyncio
    async def test_datastore_failure_propagates(self):
        """Only a unique violation means "held"; any other datastore error is raised."""
        rollbacks = []

        class FailingSession:
            async def __aenter__(self):
                return self

            async def __aexit__(self, *exc_info):
                return False

            async def execute(self, *args, **kwargs):
                raise OperationalError("DELETE", {}, ConnectionRefusedError("connection refused"))

            async def rollback(self):
                rollbacks.append(True)

        lock = DistributedLock(FailingSession)

        with pytest.raises(OperationalError):
            await lock.acquire("run_a", ttl_seconds=300)
        assert rollbacks == [True]


class TestRelease:
    @pytest.mark.asyncio
    async def test_release_frees_lock(self, session_factory):
        lock = DistributedLock(session_factory)
        await lock.acquire("run_a", ttl_seconds=300)

        await lock.release("run_a")

        assert await lock.current() is None
        assert await lock.acquire("run_b", ttl_seconds=300) is True

    @pytest.mark.asyncio
    async def test_release_without_lock_is_noop(self, session_factory):
        lock = DistributedLock(session_factory)
        await lock.release("run_a")
        assert await lock.current() is None

    @pytest.mark.asyncio
    async def test_release_swallows_datastore_errors(self):
        def broken_factory():
            raise RuntimeError("database unreachable")

        lock = DistributedLock(broken_factory)
        await lock.release("run_a")  # must not raise
