"""
Daily Sales Aggregation
Rolls paid orders and cash movements up into per-business-day reports

Per business day:
- totalSales is always the sum of item totals (price x quantity) of every
  paid order and every paid appended order, never the payment amounts
- grossCash / grossGcash route each paid amount by method (split payments
  use the recorded split, a missing method counts as cash)
- withdrawals and purchases are netted out of the same-method totals, and
  charged to an owner or split equally across owners when charged to "all"
- unresolved items land in "Uncategorized" under the default owner

All money is accumulated in integer centavos, so reports are exact and a
re-run over unchanged data gives identical output.
"""

from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple
import calendar
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.cache import CacheKeys, ledger_cache
from app.core.config import settings
from app.core.errors import ValidationError
from app.core.money import from_cents, to_cents
from app.core.responses import paginated_response
from app.core.rbac import ActingUser
from app.models.order import AppendedOrder, Order, PaymentMethod
from app.models.stats import DailyReportValidation
from app.models.withdrawal import CHARGED_TO_ALL, Withdrawal, WithdrawalType
from app.services.business_day import (
    anchor_ms,
    business_day_bounds,
    business_day_key,
    now_ms,
    parse_business_date,
)
from app.services.menu_catalog import MenuCatalog
from app.services.order_service import serialize_order
from app.services.withdrawal_service import serialize_withdrawal

logger = logging.getLogger(__name__)


def split_evenly(cents: int, owners: List[str]) -> Dict[str, int]:
    """Split an amount across owners; leftover centavos go to the first owners."""
    share, remainder = divmod(cents, len(owners))
    return {owner: share + (1 if i < remainder else 0) for i, owner in enumerate(owners)}


class DaySales:
    """Accumulator for one business day"""

    def __init__(self, day_key: str, owners: List[str]):
        self.day_key = day_key
        self.owners = list(owners)
        self.order_ids: set = set()
        # category -> (name, price cents) -> [quantity, total cents, owner]
        self.items: Dict[str, Dict[Tuple[str, int], list]] = {}
        self.total_sales = 0
        self.gross_cash = 0
        self.gross_gcash = 0
        self.sales_by_owner: Dict[str, int] = {o: 0 for o in owners}
        self.withdrawals: List[Withdrawal] = []
        self.purchases: List[Withdrawal] = []
        self.total_withdrawals = 0
        self.total_purchases = 0
        self.deductions_by_method = {"cash": 0, "gcash": 0}
        self.withdrawals_by_owner: Dict[str, int] = {o: 0 for o in owners + [CHARGED_TO_ALL]}
        self.purchases_by_owner: Dict[str, int] = {o: 0 for o in owners + [CHARGED_TO_ALL]}

    def _owner_slot(self, owner: str, table: Dict[str, int]) -> None:
        if owner not in table:
            table[owner] = 0
            if owner not in self.owners:
                self.owners.append(owner)

    def add_paid_target(self, order_id: str, target, catalog: MenuCatalog) -> None:
        """Fold one paid order or paid appended order into the day."""
        self.order_ids.add(order_id)
        target_total = 0
        for item in target.items:
            price_cents = to_cents(item.price)
            line_total = price_cents * (item.quantity or 0)
            target_total += line_total

            category, owner = catalog.resolve(item)
            bucket = self.items.setdefault(category, {})
            entry = bucket.setdefault((item.name, price_cents), [0, 0, owner])
            entry[0] += item.quantity or 0
            entry[1] += line_total

            self._owner_slot(owner, self.sales_by_owner)
            self.sales_by_owner[owner] += line_total

        self.total_sales += target_total

        if target.payment_method == PaymentMethod.SPLIT:
            self.gross_cash += to_cents(target.cash_amount)
            self.gross_gcash += to_cents(target.gcash_amount)
        elif target.payment_method == PaymentMethod.GCASH:
            self.gross_gcash += target_total
        else:
            # cash, or a legacy order with no recorded method
            self.gross_cash += target_total

    def add_withdrawal(self, withdrawal: Withdrawal) -> None:
        amount = to_cents(withdrawal.amount)
        if withdrawal.type == WithdrawalType.PURCHASE:
            self.purchases.append(withdrawal)
            self.total_purchases += amount
            by_owner = self.purchases_by_owner
        else:
            self.withdrawals.append(withdrawal)
            self.total_withdrawals += amount
            by_owner = self.withdrawals_by_owner

        method = "gcash" if withdrawal.payment_method == PaymentMethod.GCASH else "cash"
        self.deductions_by_method[method] += amount

        if withdrawal.charged_to == CHARGED_TO_ALL:
            by_owner[CHARGED_TO_ALL] += amount
            for owner, share in split_evenly(amount, settings.owner_list).items():
                by_owner[owner] += share
        else:
            self._owner_slot(withdrawal.charged_to, by_owner)
            by_owner[withdrawal.charged_to] += amount

    def _owner_map(self, table: Dict[str, int], include_all: bool = False) -> Dict[str, float]:
        keys = list(self.owners) + ([CHARGED_TO_ALL] if include_all else [])
        return {k: from_cents(table.get(k, 0)) for k in keys}

    def to_dict(self, validation: Optional[DailyReportValidation] = None) -> Dict[str, Any]:
        items_by_category = {}
        for category in sorted(self.items):
            rows = sorted(self.items[category].items(), key=lambda kv: (kv[0][0].lower(), kv[0][1]))
            items_by_category[category] = [
                {
                    "name": name,
                    "price": from_cents(price),
                    "quantity": quantity,
                    "total": from_cents(total),
                    "owner": owner,
                }
                for (name, price), (quantity, total, owner) in rows
            ]

        net_by_owner = {
            owner: from_cents(
                self.sales_by_owner.get(owner, 0)
                - self.withdrawals_by_owner.get(owner, 0)
                - self.purchases_by_owner.get(owner, 0)
            )
            for owner in self.owners
        }
        day = parse_business_date(self.day_key)
        return {
            "date": self.day_key,
            "dateTimestamp": anchor_ms(day),
            "orderCount": len(self.order_ids),
            "itemsByCategory": items_by_category,
            "withdrawals": [serialize_withdrawal(w) for w in self.withdrawals],
            "purchases": [serialize_withdrawal(w) for w in self.purchases],
            "totalSales": from_cents(self.total_sales),
            "grossCash": from_cents(self.gross_cash),
            "grossGcash": from_cents(self.gross_gcash),
            "totalCash": from_cents(self.gross_cash - self.deductions_by_method["cash"]),
            "totalGcash": from_cents(self.gross_gcash - self.deductions_by_method["gcash"]),
            "totalWithdrawals": from_cents(self.total_withdrawals),
            "totalPurchases": from_cents(self.total_purchases),
            "deductionsByMethod": {k: from_cents(v) for k, v in self.deductions_by_method.items()},
            "netSales": from_cents(self.total_sales - self.total_withdrawals - self.total_purchases),
            "salesByOwner": self._owner_map(self.sales_by_owner),
            "withdrawalsByOwner": self._owner_map(self.withdrawals_by_owner, include_all=True),
            "purchasesByOwner": self._owner_map(self.purchases_by_owner, include_all=True),
            "netTotalsByOwner": net_by_owner,
            "isValidated": bool(validation and validation.is_validated),
            "validatedAt": validation.validated_at if validation else None,
            "validatedBy": (
                {
                    "userId": validation.validated_by_id,
                    "name": validation.validated_by_name,
                    "email": validation.validated_by_email,
                }
                if validation and validation.validated_by_id
                else None
            ),
        }


class SalesAggregationService:
    """Per-business-day sales reports for a branch."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # Core aggregation
    # =========================================================================

    def _range_filter(self, column, start: Optional[date], end: Optional[date]):
        clauses = []
        if start is not None:
            clauses.append(column >= business_day_bounds(start)[0])
        if end is not None:
            clauses.append(column < business_day_bounds(end)[1])
        return clauses

    def aggregate(
        self,
        branch_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Dict[str, DaySales]:
        """Bucket every paid order target and cash movement into business days."""
        owners = settings.owner_list
        catalog = MenuCatalog.load(self.db)
        days: Dict[str, DaySales] = {}

        orders = (
            self.db.query(Order)
            .filter(
                Order.branch_id == branch_id,
                or_(
                    Order.is_paid.is_(True),
                    Order.appended_orders.any(AppendedOrder.is_paid.is_(True)),
                ),
                *self._range_filter(Order.created_at, start, end),
            )
            .order_by(Order.created_at, Order.id)
            .all()
        )
        for order in orders:
            key = business_day_key(order.created_at)
            day = days.get(key)
            if day is None:
                day = days[key] = DaySales(key, owners)
            if order.is_paid:
                day.add_paid_target(order.id, order, catalog)
            for appended in order.appended_orders:
                # Unpaid appended orders contribute nothing
                if appended.is_paid:
                    day.add_paid_target(order.id, appended, catalog)

        withdrawals = (
            self.db.query(Withdrawal)
            .filter(
                Withdrawal.branch_id == branch_id,
                *self._range_filter(Withdrawal.created_at, start, end),
            )
            .order_by(Withdrawal.created_at, Withdrawal.id)
            .all()
        )
        for withdrawal in withdrawals:
            key = business_day_key(withdrawal.created_at)
            day = days.get(key)
            if day is None:
                day = days[key] = DaySales(key, owners)
            day.add_withdrawal(withdrawal)

        return days

    def _validations(self, branch_id: str, keys: Iterable[str]) -> Dict[str, DailyReportValidation]:
        keys = list(keys)
        if not keys:
            return {}
        rows = (
            self.db.query(DailyReportValidation)
            .filter(
                DailyReportValidation.branch_id == branch_id,
                DailyReportValidation.date.in_(keys),
            )
            .all()
        )
        return {row.date: row for row in rows}

    # =========================================================================
    # Reports
    # =========================================================================

    def daily_sales(
        self,
        branch_id: str,
        page: int = 1,
        limit: Optional[int] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Paginated per-day report, most recent business day first."""
        limit = limit or settings.daily_sales_page_size
        start = parse_business_date(start_date) if start_date else None
        end = parse_business_date(end_date) if end_date else None
        if start and end and start > end:
            raise ValidationError("startDate must be on or before endDate")
        params = {"page": page, "limit": limit, "startDate": start_date, "endDate": end_date}

        def compute():
            days = self.aggregate(branch_id, start, end)
            keys = sorted(days, reverse=True)
            total = len(keys)
            page_keys = keys[(page - 1) * limit: page * limit]
            validations = self._validations(branch_id, page_keys)
            return paginated_response(
                [days[k].to_dict(validations.get(k)) for k in page_keys], total, page, limit
            )

        return ledger_cache.get_or_compute(
            branch_id, CacheKeys.DAILY_SALES, params, settings.cache_ttl_daily_sales, compute
        )

    def day_details(self, branch_id: str, day_key: str) -> Dict[str, Any]:
        """Every order (paid or not) and cash movement of one business day."""
        day = parse_business_date(day_key)
        start, end = business_day_bounds(day)
        orders = (
            self.db.query(Order)
            .filter(Order.branch_id == branch_id, Order.created_at >= start, Order.created_at < end)
            .order_by(Order.created_at, Order.id)
            .all()
        )
        withdrawals = (
            self.db.query(Withdrawal)
            .filter(
                Withdrawal.branch_id == branch_id,
                Withdrawal.created_at >= start,
                Withdrawal.created_at < end,
            )
            .order_by(Withdrawal.created_at, Withdrawal.id)
            .all()
        )
        summary = self.aggregate(branch_id, day, day).get(day_key) or DaySales(day_key, settings.owner_list)
        validation = self._validations(branch_id, [day_key]).get(day_key)
        return {
            "date": day_key,
            "orders": [serialize_order(o) for o in orders],
            "withdrawals": [serialize_withdrawal(w) for w in withdrawals],
            "summary": summary.to_dict(validation),
        }

    def monthly_sales(self, branch_id: str, year: int, month: int) -> Dict[str, Any]:
        """Roll every business day of a calendar month into one summary."""
        if not 1 <= month <= 12:
            raise ValidationError(f"Invalid month {month}")
        if not 2000 <= year <= 9999:
            raise ValidationError(f"Invalid year {year}")
        params = {"year": year, "month": month}

        def compute():
            first = date(year, month, 1)
            last = date(year, month, calendar.monthrange(year, month)[1])
            days = self.aggregate(branch_id, first, last)
            keys = sorted(days)
            fields = ("totalSales", "grossCash", "grossGcash", "totalCash", "totalGcash",
                      "totalWithdrawals", "totalPurchases", "netSales")
            totals = {f: 0 for f in fields}
            sales_by_owner: Dict[str, int] = {o: 0 for o in settings.owner_list}
            net_by_owner: Dict[str, int] = {o: 0 for o in settings.owner_list}
            order_count = 0
            daily = []
            for key in keys:
                report = days[key].to_dict()
                for f in fields:
                    totals[f] += to_cents(report[f])
                for owner, value in report["salesByOwner"].items():
                    sales_by_owner[owner] = sales_by_owner.get(owner, 0) + to_cents(value)
                for owner, value in report["netTotalsByOwner"].items():
                    net_by_owner[owner] = net_by_owner.get(owner, 0) + to_cents(value)
                order_count += report["orderCount"]
                daily.append({
                    "date": key,
                    "orderCount": report["orderCount"],
                    "totalSales": report["totalSales"],
                    "netSales": report["netSales"],
                })
            return {
                "year": year,
                "month": month,
                "days": daily,
                "daysWithActivity": len(keys),
                "orderCount": order_count,
                **{f: from_cents(v) for f, v in totals.items()},
                "salesByOwner": {o: from_cents(v) for o, v in sales_by_owner.items()},
                "netTotalsByOwner": {o: from_cents(v) for o, v in net_by_owner.items()},
                "averageDailySales": from_cents(totals["totalSales"] // len(keys)) if keys else 0.0,
            }

        return ledger_cache.get_or_compute(
            branch_id, CacheKeys.MONTHLY_SALES, params, settings.cache_ttl_daily_sales, compute
        )

    # =========================================================================
    # Administration
    # =========================================================================

    def validate_day(self, branch_id: str, day_key: str, user: ActingUser,
                     is_validated: bool = True) -> Dict[str, Any]:
        """Lock (or unlock) a business day's figures."""
        parse_business_date(day_key)
        record = (
            self.db.query(DailyReportValidation)
            .filter(DailyReportValidation.branch_id == branch_id, DailyReportValidation.date == day_key)
            .first()
        )
        if record is None:
            record = DailyReportValidation(branch_id=branch_id, date=day_key)
            self.db.add(record)
        record.is_validated = is_validated
        if is_validated:
            record.validated_at = now_ms()
            record.validated_by_id = user.user_id
            record.validated_by_name = user.name
            record.validated_by_email = user.email
        else:
            record.validated_at = None
            record.validated_by_id = None
            record.validated_by_name = None
            record.validated_by_email = None
        self.db.commit()
        ledger_cache.invalidate(branch_id, CacheKeys.VALIDATION_WRITE)
        logger.info(
            f"Daily report {branch_id}/{day_key} {'validated' if is_validated else 'unvalidated'} "
            f"by {user.email}"
        )
        return {
            "date": day_key,
            "isValidated": record.is_validated,
            "validatedAt": record.validated_at,
            "validatedBy": user.to_dict() if is_validated else None,
        }

    def purge_day(self, branch_id: str, day_key: str) -> Dict[str, Any]:
        """Delete every order and cash movement of a business day."""
        day = parse_business_date(day_key)
        start, end = business_day_bounds(day)
        try:
            orders = (
                self.db.query(Order)
                .filter(Order.branch_id == branch_id, Order.created_at >= start, Order.created_at < end)
                .all()
            )
            deleted_orders = [serialize_order(o) for o in orders]
            for order in orders:
                self.db.delete(order)
            deleted_withdrawals = (
                self.db.query(Withdrawal)
                .filter(
                    Withdrawal.branch_id == branch_id,
                    Withdrawal.created_at >= start,
                    Withdrawal.created_at < end,
                )
                .delete(synchronize_session=False)
            )
            self.db.query(DailyReportValidation).filter(
                DailyReportValidation.branch_id == branch_id,
                DailyReportValidation.date == day_key,
            ).delete(synchronize_session=False)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        ledger_cache.invalidate(branch_id, CacheKeys.ORDER_WRITE)
        logger.info(
            f"Purged {len(deleted_orders)} orders and {deleted_withdrawals} withdrawals "
            f"from {branch_id}/{day_key}"
        )
        return {
            "date": day_key,
            "deletedOrders": len(deleted_orders),
            "deletedWithdrawals": deleted_withdrawals,
            "orders": deleted_orders,
        }
