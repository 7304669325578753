"""
Gateway payload schema.

The gateway answers `GET /charges/{id}` with a JSON object. Every field is
validated before the agent acts on it; any violation is reported by the
client as a GatewaySchemaError, which counts as an API error.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, field_validator

from reconciliation_agent.models.order import OrderStatus


class GatewayChargeStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    FAILED = "failed"


# Gateway status -> local order status
_LOCAL_STATUS = {
    GatewayChargeStatus.PENDING: OrderStatus.PENDING,
    GatewayChargeStatus.PAID: OrderStatus.PAID,
    GatewayChargeStatus.EXPIRED: OrderStatus.EXPIRED,
    GatewayChargeStatus.CANCELLED: OrderStatus.CANCELLED,
    GatewayChargeStatus.FAILED: OrderStatus.CANCELLED,
}


class GatewayStatus(BaseModel):
    """Authoritative state of one charge as reported by the gateway."""

    model_config = ConfigDict(extra="ignore")

    id: str
    status: GatewayChargeStatus
    amount: Union[StrictInt, StrictFloat]
    currency: str
    paid_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("id", "currency")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v

    @field_validator("amount")
    @classmethod
    def _non_negative(cls, v: Union[int, float]) -> Union[int, float]:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    def to_order_status(self) -> OrderStatus:
        """Local status this gateway status reconciles to (`failed` becomes `cancelled`)."""
        return _LOCAL_STATUS[self.status]
