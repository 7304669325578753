"""
Datastore-backed distributed lock.

At most one reconciliation run may be active across all replicas. The lock is
a single row in reconciliation_locks keyed by a fixed id; the unique primary
key is the mutual-exclusion primitive, and the TTL lets a crashed holder's
row be reclaimed by the next acquirer.

Usage:
    lock = DistributedLock(session_factory)
    if await lock.acquire(run_id, ttl_seconds=300):
        try:
            ...
        finally:
            await lock.release(run_id)
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from reconciliation_agent.core.errors import capture_exception
from reconciliation_agent.core.typing import col, utc_now
from reconciliation_agent.models.reconciliation import SINGLETON_LOCK_ID, ReconciliationLock

logger = logging.getLogger(__name__)


class DistributedLock:
    def __init__(self, session_factory, lock_id: str = SINGLETON_LOCK_ID):
        self.session_factory = session_factory
        self.lock_id = lock_id

    async def acquire(self, owner_id: str, ttl_seconds: float) -> bool:
        """
        Try to take the lock for `ttl_seconds`.

        Expired rows are removed first, in the same transaction as the insert.

        Returns:
            True if this owner now holds the lock, False if someone else does

        Raises:
            SQLAlchemyError: The datastore failed for any other reason
        """
        now = utc_now()
        async with self.session_factory() as session:
            try:
                purged = await session.execute(
                    delete(ReconciliationLock).where(
                        col(ReconciliationLock.id) == self.lock_id,
                        col(ReconciliationLock.expires_at) < now,
                    )
                )
                if purged.rowcount:
                    logger.warning(f"Removed expired lock {self.lock_id}")

                session.add(
                    ReconciliationLock(
                        id=self.lock_id,
                        owner_id=owner_id,
                        acquired_at=now,
                        expires_at=now + timedelta(seconds=ttl_seconds),
                    )
                )
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(f"Lock {self.lock_id} is held by another run, {owner_id} skips")
                return False
            except SQLAlchemyError as e:
                await session.rollback()
                capture_exception(e, context={"action": "acquire_lock", "owner_id": owner_id})
                raise

        logger.info(f"Lock {self.lock_id} acquired by {owner_id} for {ttl_seconds:.0f}s")
        return True

    async def release(self, owner_id: str) -> None:
        """Delete the lock row. Never raises; the TTL reclaims the row if this fails."""
        try:
            async with self.session_factory() as session:
                await session.execute(
                    delete(ReconciliationLock).where(col(ReconciliationLock.id) == self.lock_id)
                )
                await session.commit()
        except Exception as e:
            logger.error(f"Failed to release lock {self.lock_id} held by {owner_id}: {e}")
            capture_exception(e, context={"action": "release_lock", "owner_id": owner_id})
            return

        logger.info(f"Lock {self.lock_id} released by {owner_id}")

    async def current(self) -> Optional[ReconciliationLock]:
        """The lock row as stored, or None when free."""
        async with self.session_factory() as session:
            return await session.get(ReconciliationLock, self.lock_id)
