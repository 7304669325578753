"""
Tables owned exclusively by the reconciliation agent.

Tables:
- reconciliation_locks: singleton row providing cluster-wide mutual exclusion
- reconciliation_audit: append-only trail of every status change the agent made
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from reconciliation_agent.core.typing import utc_now

SINGLETON_LOCK_ID = "singleton"


class ReconciliationLock(SQLModel, table=True):
    """
    Distributed lock row.

    The primary key is the fixed singleton id, so a second insert while a row
    exists fails with a unique-constraint violation instead of overwriting.
    """

    __tablename__ = "reconciliation_locks"

    id: str = Field(default=SINGLETON_LOCK_ID, primary_key=True, max_length=32)
    owner_id: str = Field(max_length=64)  # run id of the holder
    acquired_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    expires_at: datetime = Field(index=True, sa_type=DateTime(timezone=True))


class ReconciliationAudit(SQLModel, table=True):
    """
    Audit record written in the same transaction as the status change.

    Example:
        ReconciliationAudit(
            order_id="ord_1",
            charge_id="bill_123",
            old_status="pending",
            new_status="paid",
            execution_id="run_a1b2c3d4e5f6a7b8",
        )
    """

    __tablename__ = "reconciliation_audit"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: str = Field(index=True, max_length=64)
    charge_id: Optional[str] = Field(default=None, max_length=128)
    old_status: str = Field(max_length=20)
    new_status: str = Field(max_length=20)
    gateway_status: Optional[str] = Field(default=None, max_length=20)
    reconciliation_type: str = Field(default="status_sync", max_length=50)
    execution_id: str = Field(index=True, max_length=64)
    reconciled_at: datetime = Field(default_factory=utc_now, index=True, sa_type=DateTime(timezone=True))


__all__ = ["ReconciliationLock", "ReconciliationAudit", "SINGLETON_LOCK_ID"]
