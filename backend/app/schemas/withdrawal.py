"""Withdrawal (cash movement) schemas."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field, field_validator

from app.core.money import round_money
from app.models.withdrawal import WithdrawalType
from app.schemas.order import CamelModel


class CreatedBy(CamelModel):
    user_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None


class WithdrawalCreate(CamelModel):
    """Withdrawal or purchase entry."""

    type: WithdrawalType
    amount: float = Field(ge=0.01)
    description: str = Field(max_length=500)
    payment_method: Optional[Literal["cash", "gcash"]] = None
    charged_to: Optional[str] = Field(default=None, max_length=50)
    created_at: Optional[int] = None
    created_by: Optional[CreatedBy] = None
    branch_id: Optional[str] = None

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Description is required")
        return v

    @field_validator("amount")
    @classmethod
    def round_amount(cls, v: float) -> float:
        return round_money(v)
