"""
Order and charge models.

Both tables are owned by the storefront (checkout creates them, the webhook
endpoint updates them). The agent only reads them and, through the guarded
update in services.orders, moves a pending order to a terminal status.

Usage:
    from reconciliation_agent.models.order import Order, Charge, OrderStatus

    if order.status == OrderStatus.PENDING and order.primary_charge:
        charge_id = order.primary_charge.charge_id
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import DateTime, Index
from sqlmodel import Field, Relationship, SQLModel

from reconciliation_agent.core.typing import utc_now


class OrderStatus(str, Enum):
    """Local order status. Everything but PENDING is terminal."""

    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.PENDING


TERMINAL_STATUSES = frozenset(s.value for s in OrderStatus if s.is_terminal)


def _new_id() -> str:
    return str(uuid.uuid4())


class Order(SQLModel, table=True):
    """
    A customer purchase attempt.

    Attributes:
        id: Opaque, stable identifier
        status: One of OrderStatus values (stored as plain text)
        customer_name / customer_email: Identifying fields
        total_amount: Monetary total
        charges: Gateway charges; the first one (by creation) is authoritative
    """

    __tablename__ = "orders"

    id: str = Field(default_factory=_new_id, primary_key=True, max_length=64)
    status: str = Field(default=OrderStatus.PENDING.value, max_length=20, index=True)
    customer_name: Optional[str] = Field(default=None, max_length=255)
    customer_email: Optional[str] = Field(default=None, max_length=255)
    total_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    created_at: datetime = Field(default_factory=utc_now, index=True, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))

    charges: List["Charge"] = Relationship(
        back_populates="order",
        sa_relationship_kwargs={"order_by": "Charge.created_at"},
    )

    # Pending-order scan: status + created_at
    __table_args__ = (Index("ix_orders_status_created_at", "status", "created_at"),)

    @property
    def primary_charge(self) -> Optional["Charge"]:
        """The charge used for reconciliation (first of the set)."""
        return self.charges[0] if self.charges else None


class Charge(SQLModel, table=True):
    """
    A payment request sent to the gateway on behalf of one order.

    Attributes:
        charge_id: Gateway-assigned identifier used for status lookups
        status: Locally cached gateway status (informational only)
    """

    __tablename__ = "charges"

    id: str = Field(default_factory=_new_id, primary_key=True, max_length=64)
    order_id: str = Field(foreign_key="orders.id", index=True, max_length=64)
    charge_id: str = Field(index=True, max_length=128)
    amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    currency: str = Field(default="BRL", max_length=8)
    status: str = Field(default="pending", max_length=20)
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))

    order: Optional[Order] = Relationship(back_populates="charges")


__all__ = ["Order", "Charge", "OrderStatus", "TERMINAL_STATUSES"]
