"""
Order access for the reconciliation agent.

Two operations against the shared orders table:
- fetch_pending_orders: the batch of stale pending orders for one run
- update_order_with_audit: guarded (compare-and-swap) status change plus an
  audit row, committed as one transaction
"""

import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload
from sqlmodel import select

from reconciliation_agent.core.errors import OrderUpdateError
from reconciliation_agent.core.typing import col, safe_getattr, utc_now
from reconciliation_agent.models.order import Order, OrderStatus
from reconciliation_agent.models.reconciliation import ReconciliationAudit

logger = logging.getLogger(__name__)


async def fetch_pending_orders(
    session_factory,
    min_age_minutes: int = 60,
    batch_size: int = 100,
) -> List[Order]:
    """
    Load pending orders older than `min_age_minutes`, at most `batch_size`.

    Charges are loaded eagerly (oldest first) so the orders can be used after
    the session closes. Datastore errors propagate: without this list the run
    has nothing meaningful to do.
    """
    cutoff = utc_now() - timedelta(minutes=min_age_minutes)
    stmt = (
        select(Order)
        .where(
            col(Order.status) == OrderStatus.PENDING.value,
            col(Order.created_at) < cutoff,
        )
        .options(selectinload(Order.charges))  # type: ignore[arg-type]
        .order_by(col(Order.created_at).asc())
        .limit(batch_size)
    )

    async with session_factory() as session:
        result = await session.exec(stmt)
        orders = list(result.all())

    logger.debug(f"Fetched {len(orders)} pending orders older than {min_age_minutes}m (limit {batch_size})")
    return orders


async def update_order_with_audit(
    session_factory,
    order_id: str,
    expected_status: str,
    new_status: str,
    execution_id: str,
    charge_id: Optional[str] = None,
    gateway_status: Optional[str] = None,
) -> bool:
    """
    Move an order from `expected_status` to `new_status` and record the change.

    The update only matches while the row still has `expected_status`; if a
    concurrent writer got there first nothing is written and False is returned.

    Returns:
        True if the order was updated (and audited), False on a lost race

    Raises:
        OrderUpdateError: The datastore rejected the transaction
    """
    if expected_status == new_status:
        raise ValueError(f"Order {order_id}: new status equals expected status {new_status!r}")

    async with session_factory() as session:
        try:
            result = await session.execute(
                update(Order)
                .where(col(Order.id) == order_id, col(Order.status) == expected_status)
                .values(status=new_status, updated_at=utc_now())
            )
            if not safe_getattr(result, "rowcount", 0):
                await session.rollback()
                logger.info(
                    f"Order {order_id} no longer {expected_status}, skipping update to {new_status}"
                )
                return False

            session.add(
                ReconciliationAudit(
                    order_id=order_id,
                    charge_id=charge_id,
                    old_status=expected_status,
                    new_status=new_status,
                    gateway_status=gateway_status,
                    execution_id=execution_id,
                )
            )
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise OrderUpdateError(f"Failed to update order {order_id} to {new_status}: {e}") from e

    logger.info(f"Order {order_id}: {expected_status} -> {new_status}")
    return True
