"""SQLAlchemy models."""

from app.models.user import User
from app.models.menu import MenuItem
from app.models.order import (
    Order,
    OrderItem,
    AppendedOrder,
    ItemStatus,
    PaymentMethod,
    OrderType,
)
from app.models.withdrawal import Withdrawal, WithdrawalType, CHARGED_TO_ALL
from app.models.stats import Stats, DailyReportValidation

__all__ = [
    "User",
    "MenuItem",
    "Order",
    "OrderItem",
    "AppendedOrder",
    "ItemStatus",
    "PaymentMethod",
    "OrderType",
    "Withdrawal",
    "WithdrawalType",
    "CHARGED_TO_ALL",
    "Stats",
    "DailyReportValidation",
]
