"""Order aggregate models.

An ``Order`` owns its main ``items`` and any ``appended_orders`` (late
additions to the bill), each of which owns its own items.  The aggregate is
loaded, mutated and committed as one unit.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterator, List, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, EpochTimestampMixin, VersionMixin


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class ItemStatus(str, Enum):
    """Kitchen status of a single order item."""

    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"


class PaymentMethod(str, Enum):
    """How a bill was settled."""

    CASH = "cash"
    GCASH = "gcash"
    SPLIT = "split"


class OrderType(str, Enum):
    DINE_IN = "dine-in"
    TAKE_OUT = "take-out"


Money = Numeric(10, 2, asdecimal=False)


class PaymentFieldsMixin:
    """Payment state shared by orders and appended orders."""

    is_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        SQLEnum(PaymentMethod, values_callable=_enum_values, native_enum=False, length=10),
        nullable=True,
    )
    cash_amount: Mapped[Optional[float]] = mapped_column(Money, nullable=True)
    gcash_amount: Mapped[Optional[float]] = mapped_column(Money, nullable=True)
    paid_amount: Mapped[Optional[float]] = mapped_column(Money, nullable=True)
    amount_received: Mapped[Optional[float]] = mapped_column(Money, nullable=True)

    def clear_payment(self) -> None:
        """Reset every payment field to the unpaid state."""
        self.is_paid = False
        self.payment_method = None
        self.cash_amount = None
        self.gcash_amount = None
        self.paid_amount = None
        self.amount_received = None

    @property
    def items_total(self) -> float:
        return round(sum(item.line_total for item in self.items), 2)


class Order(Base, EpochTimestampMixin, VersionMixin, PaymentFieldsMixin):
    """A customer order (aggregate root)."""

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    branch_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    order_number: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    customer_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    order_type: Mapped[OrderType] = mapped_column(
        SQLEnum(OrderType, values_callable=_enum_values, native_enum=False, length=10),
        default=OrderType.DINE_IN,
        nullable=False,
    )
    all_items_served_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    order_taker_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    order_taker_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # Relationships
    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        foreign_keys="OrderItem.order_id",
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    appended_orders: Mapped[List["AppendedOrder"]] = relationship(
        "AppendedOrder",
        back_populates="order",
        order_by="AppendedOrder.pk",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def iter_items(self) -> Iterator["OrderItem"]:
        """All items, main order first, then each appended order in order."""
        yield from self.items
        for appended in self.appended_orders:
            yield from appended.items

    def find_appended(self, appended_id: str) -> Optional["AppendedOrder"]:
        for appended in self.appended_orders:
            if appended.id == appended_id:
                return appended
        return None

    @property
    def all_items_served(self) -> bool:
        items = list(self.iter_items())
        return bool(items) and all(item.status == ItemStatus.SERVED for item in items)

    @property
    def total_amount(self) -> float:
        """Bill total across main items and every appended order."""
        return round(self.items_total + sum(a.items_total for a in self.appended_orders), 2)

    @property
    def financial_total(self) -> float:
        """Main items plus paid appended orders only."""
        return round(
            self.items_total + sum(a.items_total for a in self.appended_orders if a.is_paid), 2
        )

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.iter_items())

    @property
    def order_status(self) -> str:
        items = list(self.iter_items())
        if items and all(item.status == ItemStatus.SERVED for item in items):
            return "completed"
        if any(item.status in (ItemStatus.PREPARING, ItemStatus.READY) for item in items):
            return "in_progress"
        return "pending"

    @property
    def total_paid_amount(self) -> float:
        paid = (self.paid_amount or 0) if self.is_paid else 0
        for appended in self.appended_orders:
            if appended.is_paid and appended.paid_amount:
                paid += appended.paid_amount
        return round(paid, 2)

    @property
    def pending_amount(self) -> float:
        return round(max(0.0, self.total_amount - self.total_paid_amount), 2)


class AppendedOrder(Base, PaymentFieldsMixin):
    """Items added to an existing bill, paid independently of the main order."""

    __tablename__ = "appended_orders"

    pk: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    order_id: Mapped[str] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Relationships
    order: Mapped["Order"] = relationship("Order", back_populates="appended_orders")
    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        foreign_keys="OrderItem.appended_pk",
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class OrderItem(Base):
    """A line on an order or appended order.

    ``price`` is the unit price frozen at order time; it is never re-read
    from the menu.
    """

    __tablename__ = "order_items"

    pk: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    # Exactly one of order_id / appended_pk is set
    order_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=True, index=True
    )
    appended_pk: Mapped[Optional[int]] = mapped_column(
        ForeignKey("appended_orders.pk", ondelete="CASCADE"), nullable=True, index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[float] = mapped_column(Money, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    status: Mapped[ItemStatus] = mapped_column(
        SQLEnum(ItemStatus, values_callable=_enum_values, native_enum=False, length=20),
        default=ItemStatus.PENDING,
        nullable=False,
    )
    item_type: Mapped[OrderType] = mapped_column(
        SQLEnum(OrderType, values_callable=_enum_values, native_enum=False, length=10),
        default=OrderType.DINE_IN,
        nullable=False,
    )
    note: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Menu reference captured at order time
    menu_item_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    owner: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    preparing_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    ready_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    served_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    prepared_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    prepared_by_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    served_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    served_by_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    @property
    def line_total(self) -> float:
        return round((self.price or 0) * (self.quantity or 0), 2)
