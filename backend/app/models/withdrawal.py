"""Cash movement models (withdrawals and purchases)."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from sqlalchemy import Enum as SQLEnum, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, EpochTimestampMixin
from app.models.order import PaymentMethod, _enum_values


class WithdrawalType(str, Enum):
    WITHDRAWAL = "withdrawal"
    PURCHASE = "purchase"


# chargedTo value that splits the amount equally across every owner
CHARGED_TO_ALL = "all"


class Withdrawal(Base, EpochTimestampMixin):
    """Money taken out of the till, or spent on supplies, on a business day."""

    __tablename__ = "withdrawals"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    branch_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    type: Mapped[WithdrawalType] = mapped_column(
        SQLEnum(WithdrawalType, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
        index=True,
    )
    amount: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    # Only cash or gcash; a null method is treated as cash when netting
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        SQLEnum(PaymentMethod, values_callable=_enum_values, native_enum=False, length=10),
        nullable=True,
    )
    charged_to: Mapped[str] = mapped_column(String(50), nullable=False)
    created_by_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_by_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_by_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
