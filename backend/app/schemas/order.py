"""Order request schemas.

Clients speak camelCase JSON (``customerName``, ``appendedOrders``); fields
are snake_case in Python.  Responses are rendered by
``app.services.order_service.serialize_order``.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.core.money import round_money
from app.models.order import ItemStatus, OrderType, PaymentMethod


class CamelModel(BaseModel):
    """Base schema accepting camelCase aliases or field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderItemIn(CamelModel):
    """Order item as submitted by an order taker."""

    id: Optional[str] = Field(default=None, max_length=128)
    name: str = Field(min_length=1, max_length=200)
    price: float = Field(ge=0)
    quantity: int = Field(default=1, ge=1)
    status: ItemStatus = ItemStatus.PENDING
    item_type: OrderType = OrderType.DINE_IN
    note: Optional[str] = Field(default=None, max_length=500)
    menu_item_id: Optional[str] = Field(default=None, max_length=128)
    category: Optional[str] = Field(default=None, max_length=100)
    owner: Optional[str] = Field(default=None, max_length=50)
    preparing_at: Optional[int] = None
    ready_at: Optional[int] = None
    served_at: Optional[int] = None
    prepared_by: Optional[str] = Field(default=None, max_length=100)
    prepared_by_email: Optional[str] = Field(default=None, max_length=255)
    served_by: Optional[str] = Field(default=None, max_length=100)
    served_by_email: Optional[str] = Field(default=None, max_length=255)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Item name is required")
        return v

    @field_validator("price")
    @classmethod
    def round_price(cls, v: float) -> float:
        return round_money(v)


class OrderNoteIn(CamelModel):
    id: Optional[str] = None
    content: str = Field(min_length=1, max_length=500)
    created_at: Optional[int] = None
    created_by: Optional[str] = None
    created_by_email: Optional[str] = None


class PaymentFields(CamelModel):
    """Payment state as carried on an order or appended order body."""

    is_paid: bool = False
    payment_method: Optional[PaymentMethod] = None
    cash_amount: Optional[float] = Field(default=None, ge=0)
    gcash_amount: Optional[float] = Field(default=None, ge=0)
    amount_received: Optional[float] = Field(default=None, ge=0)


class AppendedOrderIn(PaymentFields):
    id: Optional[str] = Field(default=None, max_length=128)
    items: List[OrderItemIn] = Field(min_length=1)
    created_at: Optional[int] = None


class OrderCreate(PaymentFields):
    """Order creation payload."""

    id: str = Field(min_length=1, max_length=128)
    customer_name: str = Field(max_length=100)
    items: List[OrderItemIn] = Field(min_length=1)
    order_type: OrderType = OrderType.DINE_IN
    created_at: Optional[int] = None
    order_taker_name: Optional[str] = Field(default=None, max_length=100)
    order_taker_email: Optional[str] = Field(default=None, max_length=255)
    notes: List[OrderNoteIn] = []
    appended_orders: List[AppendedOrderIn] = []
    branch_id: Optional[str] = None

    @field_validator("customer_name")
    @classmethod
    def strip_customer_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Customer name is required")
        return v


class OrderUpdate(CamelModel):
    """Partial order update; unknown fields are rejected."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    customer_name: Optional[str] = Field(default=None, max_length=100)
    items: Optional[List[OrderItemIn]] = Field(default=None, min_length=1)
    is_paid: Optional[bool] = None
    appended_orders: Optional[List[AppendedOrderIn]] = None
    notes: Optional[List[OrderNoteIn]] = None

    @field_validator("customer_name")
    @classmethod
    def strip_customer_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Customer name cannot be empty")
        return v


class OrderSync(OrderCreate):
    """Full order document replayed by an offline device."""

    order_number: Optional[int] = None
    all_items_served_at: Optional[int] = None
    paid_amount: Optional[float] = Field(default=None, ge=0)
    updated_at: Optional[int] = None


class AppendRequest(CamelModel):
    items: List[OrderItemIn] = Field(min_length=1)
    id: Optional[str] = Field(default=None, max_length=128)
    created_at: Optional[int] = None
    is_paid: bool = False
    payment_method: Optional[PaymentMethod] = None
    cash_amount: Optional[float] = Field(default=None, ge=0)
    gcash_amount: Optional[float] = Field(default=None, ge=0)
    amount_received: Optional[float] = Field(default=None, ge=0)


class ItemStatusUpdate(CamelModel):
    status: ItemStatus
    prepared_by: Optional[str] = Field(default=None, max_length=100)
    prepared_by_email: Optional[str] = Field(default=None, max_length=255)
    served_by: Optional[str] = Field(default=None, max_length=100)
    served_by_email: Optional[str] = Field(default=None, max_length=255)
    preparing_at: Optional[int] = None
    ready_at: Optional[int] = None
    served_at: Optional[int] = None


class PaymentUpdate(CamelModel):
    """Payment toggle; omitting ``isPaid`` flips the current state."""

    is_paid: Optional[bool] = None
    payment_method: Optional[PaymentMethod] = None
    cash_amount: Optional[float] = Field(default=None, ge=0)
    gcash_amount: Optional[float] = Field(default=None, ge=0)
    amount_received: Optional[float] = Field(default=None, ge=0)
    whole_order: bool = False
