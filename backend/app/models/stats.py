"""Derived per-branch statistics and daily report locks."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import BigInteger, Boolean, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class Stats(Base):
    """Running wait-time totals, one row per branch."""

    __tablename__ = "stats"

    branch_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    total_wait_time_ms: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    completed_orders_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_updated: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    @property
    def average_wait_time_ms(self) -> int:
        if not self.completed_orders_count:
            return 0
        return round(self.total_wait_time_ms / self.completed_orders_count)


class DailyReportValidation(Base):
    """Marks a business day's figures as reconciled and locked."""

    __tablename__ = "daily_report_validations"
    __table_args__ = (UniqueConstraint("branch_id", "date", name="uq_daily_report_branch_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    branch_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    date: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    is_validated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    validated_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    validated_by_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    validated_by_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    validated_by_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
