from .order import Order, Charge, OrderStatus, TERMINAL_STATUSES
from .reconciliation import ReconciliationLock, ReconciliationAudit, SINGLETON_LOCK_ID
from .observability import ReconciliationMetrics, ReconciliationAlert

__all__ = [
    "Order",
    "Charge",
    "OrderStatus",
    "TERMINAL_STATUSES",
    "ReconciliationLock",
    "ReconciliationAudit",
    "SINGLETON_LOCK_ID",
    "ReconciliationMetrics",
    "ReconciliationAlert",
]
