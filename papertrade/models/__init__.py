"""Database models."""

from papertrade.models.account import Account
from papertrade.models.order import Order, OrderStatus
from papertrade.models.notification import Notification

__all__ = [
    "Account",
    "Order",
    "OrderStatus",
    "Notification",
]
