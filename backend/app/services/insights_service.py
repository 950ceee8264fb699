"""
Business Insights Service
Rolling-window business intelligence over paid orders

Features:
- Best and worst sellers by revenue and by quantity
- Hour-of-day and day-of-week performance (in the cafe's local timezone)
- Customer segments, high-value customers and item co-occurrence
- Preparation time statistics from kitchen timestamps
- First-half vs second-half item trends and week-over-week sales trend
- Rule-based alerts and recommendations
"""

from collections import defaultdict
from datetime import timedelta
from itertools import combinations
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.cache import CacheKeys, ledger_cache
from app.core.config import settings
from app.core.money import to_cents
from app.models.order import AppendedOrder, Order
from app.services.business_day import (
    business_date_of,
    business_day_key,
    now_ms,
    to_utc,
)
from app.services.menu_catalog import MenuCatalog

logger = logging.getLogger(__name__)

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
DAY_MS = 24 * 3600 * 1000

# Rule thresholds
TREND_THRESHOLD_PCT = 20.0
SALES_DROP_ALERT_PCT = -15.0
HIGH_GROWTH_ALERT_PCT = 50.0
PREP_OUTLIER_FACTOR = 1.5
AOV_DROP_ALERT_PCT = -10.0
LOYAL_MIN_ORDERS = 5
RETURNING_MIN_ORDERS = 2
HIGH_VALUE_FACTOR = 2.0
TOP_N = 10


def _money(cents: float) -> float:
    return round(cents / 100, 2)


def _pct_change(current: float, previous: float) -> float:
    if previous:
        return round((current - previous) / previous * 100, 1)
    return 100.0 if current else 0.0


class ItemStats:
    """Per-item accumulator"""

    def __init__(self, name: str, category: str, owner: str):
        self.name = name
        self.category = category
        self.owner = owner
        self.quantity = 0
        self.revenue = 0
        self.order_ids: set = set()
        self.prep_times: List[int] = []
        self.first_half_revenue = 0
        self.second_half_revenue = 0

    @property
    def growth(self) -> float:
        return _pct_change(self.second_half_revenue, self.first_half_revenue)

    @property
    def avg_prep_minutes(self) -> Optional[float]:
        if not self.prep_times:
            return None
        return round(sum(self.prep_times) / len(self.prep_times) / 60000, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category,
            "owner": self.owner,
            "quantity": self.quantity,
            "revenue": _money(self.revenue),
            "orders": len(self.order_ids),
            "avgPrice": _money(self.revenue / self.quantity) if self.quantity else 0.0,
        }


class CustomerStats:
    def __init__(self, name: str):
        self.name = name
        self.orders = 0
        self.revenue = 0
        self.items: set = set()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "orders": self.orders,
            "revenue": _money(self.revenue),
            "uniqueItems": len(self.items),
            "avgOrderValue": _money(self.revenue / self.orders) if self.orders else 0.0,
        }


class InsightsService:
    """Builds the rolling business-insights report for a branch."""

    def __init__(self, db: Session):
        self.db = db

    def insights(self, branch_id: str) -> Dict[str, Any]:
        """Cached report for the current window."""
        params = {"days": settings.insights_window_days}
        return ledger_cache.get_or_compute(
            branch_id,
            CacheKeys.INSIGHTS,
            params,
            settings.cache_ttl_insights,
            lambda: self.build_report(branch_id),
        )

    def _load_orders(self, branch_id: str, start: int, end: int) -> List[Order]:
        return (
            self.db.query(Order)
            .filter(
                Order.branch_id == branch_id,
                Order.created_at >= start,
                Order.created_at <= end,
                or_(
                    Order.is_paid.is_(True),
                    Order.appended_orders.any(AppendedOrder.is_paid.is_(True)),
                ),
            )
            .order_by(Order.created_at, Order.id)
            .all()
        )

    def build_report(self, branch_id: str, now: Optional[int] = None) -> Dict[str, Any]:
        now = now if now is not None else now_ms()
        window_days = settings.insights_window_days
        start = now - window_days * DAY_MS
        midpoint = start + (now - start) // 2
        tz = ZoneInfo(settings.timezone)
        catalog = MenuCatalog.load(self.db)

        orders = self._load_orders(branch_id, start, now)

        items: Dict[str, ItemStats] = {}
        categories: Dict[str, Dict[str, Any]] = {}
        customers: Dict[str, CustomerStats] = {}
        pairs: Dict[tuple, int] = defaultdict(int)
        hourly = {h: {"orders": 0, "revenue": 0} for h in range(24)}
        weekly = {d: {"orders": 0, "revenue": 0} for d in range(7)}
        daily: Dict[str, Dict[str, int]] = {}
        total_revenue = 0

        # ---- single pass over paid order targets ----
        for order in orders:
            targets = ([order] if order.is_paid else []) + [a for a in order.appended_orders if a.is_paid]
            order_revenue = 0
            names = set()
            for target in targets:
                for item in target.items:
                    line = to_cents(item.price) * item.quantity
                    order_revenue += line
                    names.add(item.name)
                    category, owner = catalog.resolve(item)

                    stats = items.get(item.name.lower())
                    if stats is None:
                        stats = items[item.name.lower()] = ItemStats(item.name, category, owner)
                    stats.quantity += item.quantity
                    stats.revenue += line
                    stats.order_ids.add(order.id)
                    if order.created_at < midpoint:
                        stats.first_half_revenue += line
                    else:
                        stats.second_half_revenue += line
                    if item.preparing_at and item.ready_at and item.ready_at > item.preparing_at:
                        stats.prep_times.append(item.ready_at - item.preparing_at)

                    cat = categories.setdefault(category, {"revenue": 0, "quantity": 0, "items": set()})
                    cat["revenue"] += line
                    cat["quantity"] += item.quantity
                    cat["items"].add(item.name.lower())

            total_revenue += order_revenue
            local = to_utc(order.created_at).astimezone(tz)
            hourly[local.hour]["orders"] += 1
            hourly[local.hour]["revenue"] += order_revenue
            weekly[local.weekday()]["orders"] += 1
            weekly[local.weekday()]["revenue"] += order_revenue

            day = daily.setdefault(business_day_key(order.created_at), {"orders": 0, "revenue": 0})
            day["orders"] += 1
            day["revenue"] += order_revenue

            customer_key = order.customer_name.strip().lower()
            customer = customers.get(customer_key)
            if customer is None:
                customer = customers[customer_key] = CustomerStats(order.customer_name.strip())
            customer.orders += 1
            customer.revenue += order_revenue
            customer.items.update(n.lower() for n in names)

            for a, b in combinations(sorted(names, key=str.lower), 2):
                pairs[(a, b)] += 1

        total_orders = len(orders)
        ranked = sorted(items.values(), key=lambda s: (-s.revenue, s.name.lower()))

        # ---- derived passes ----
        summary = self._summary(total_revenue, total_orders, customers, daily, now, start)
        product = self._product_performance(ranked, catalog)
        peak = self._peak_times(hourly, weekly)
        customer_insights = self._customer_insights(customers, pairs)
        prep = self._preparation_time(ranked)
        category_perf = [
            {
                "category": name,
                "revenue": _money(data["revenue"]),
                "quantity": data["quantity"],
                "itemCount": len(data["items"]),
                "share": round(data["revenue"] / total_revenue * 100, 1) if total_revenue else 0.0,
            }
            for name, data in sorted(categories.items(), key=lambda kv: (-kv[1]["revenue"], kv[0]))
        ]
        daily_revenue = [
            {"date": key, "orders": value["orders"], "revenue": _money(value["revenue"])}
            for key, value in sorted(daily.items())
        ]

        alerts = self._alerts(summary, product, prep, ranked)
        recommendations = self._recommendations(product, peak, customer_insights)
        report = {
            "branchId": branch_id,
            "generatedAt": now,
            "periodDays": window_days,
            "summary": summary,
            "productPerformance": product,
            "categoryPerformance": category_perf,
            "peakTimes": peak,
            "customerInsights": customer_insights,
            "preparationTime": prep,
            "dailyRevenue": daily_revenue,
            "alerts": alerts,
            "recommendations": recommendations,
        }
        report["executiveSummary"] = self._executive_summary(report)
        logger.debug(f"Insights for {branch_id}: {total_orders} orders over {window_days} days")
        return report

    # -------------------------------------------------------------------------

    def _summary(self, total_revenue, total_orders, customers, daily, now, start) -> Dict[str, Any]:
        today = business_date_of(now)
        recent_keys = {(today - timedelta(days=i)).isoformat() for i in range(7)}
        prior_keys = {(today - timedelta(days=i)).isoformat() for i in range(7, 14)}
        recent = [daily[k] for k in recent_keys if k in daily]
        prior = [daily[k] for k in prior_keys if k in daily]
        recent_revenue = sum(d["revenue"] for d in recent)
        prior_revenue = sum(d["revenue"] for d in prior)
        recent_orders = sum(d["orders"] for d in recent)
        prior_orders = sum(d["orders"] for d in prior)
        recent_aov = recent_revenue / recent_orders if recent_orders else 0
        prior_aov = prior_revenue / prior_orders if prior_orders else 0

        return {
            "totalRevenue": _money(total_revenue),
            "totalOrders": total_orders,
            "avgOrderValue": _money(total_revenue / total_orders) if total_orders else 0.0,
            "uniqueCustomers": len(customers),
            "revenueTrend": _pct_change(recent_revenue / 7, prior_revenue / 7),
            "recentDailyAverage": _money(recent_revenue / 7),
            "previousDailyAverage": _money(prior_revenue / 7),
            "avgOrderValueTrend": _pct_change(recent_aov, prior_aov) if prior_aov else 0.0,
            "periodStart": start,
            "periodEnd": now,
        }

    def _product_performance(self, ranked: List[ItemStats], catalog: MenuCatalog) -> Dict[str, Any]:
        by_quantity = sorted(ranked, key=lambda s: (-s.quantity, s.name.lower()))

        slow = [s.to_dict() for s in sorted(ranked, key=lambda s: (s.quantity, s.revenue, s.name.lower()))]
        sold = {s.name.lower() for s in ranked}
        never_sold = [
            {"name": m.name, "category": m.category, "owner": m.owner, "quantity": 0,
             "revenue": 0.0, "orders": 0, "avgPrice": m.price}
            for m in sorted(catalog.by_id.values(), key=lambda m: m.name.lower())
            if m.name.strip().lower() not in sold
        ]

        def trend_row(s: ItemStats) -> Dict[str, Any]:
            return {
                "name": s.name,
                "growth": s.growth,
                "firstHalfRevenue": _money(s.first_half_revenue),
                "secondHalfRevenue": _money(s.second_half_revenue),
                "revenue": _money(s.revenue),
            }

        movers = [s for s in ranked if s.second_half_revenue > 0]
        trending_up = sorted(
            (s for s in movers if s.growth > TREND_THRESHOLD_PCT), key=lambda s: (-s.growth, s.name.lower())
        )
        trending_down = sorted(
            (s for s in movers if s.growth < -TREND_THRESHOLD_PCT), key=lambda s: (s.growth, s.name.lower())
        )
        return {
            "topSellersByRevenue": [s.to_dict() for s in ranked[:TOP_N]],
            "topSellersByQuantity": [s.to_dict() for s in by_quantity[:TOP_N]],
            "slowMovingItems": (never_sold + slow)[:TOP_N],
            "trendingUp": [trend_row(s) for s in trending_up[:5]],
            "trendingDown": [trend_row(s) for s in trending_down[:5]],
        }

    @staticmethod
    def _peak_times(hourly, weekly) -> Dict[str, Any]:
        hourly_rows = [
            {
                "hour": hour,
                "orders": data["orders"],
                "revenue": _money(data["revenue"]),
                "avgOrderValue": _money(data["revenue"] / data["orders"]) if data["orders"] else 0.0,
            }
            for hour, data in hourly.items()
        ]
        busiest = sorted(
            (row for row in hourly_rows if row["orders"]), key=lambda r: (-r["orders"], -r["revenue"], r["hour"])
        )[:3]
        day_rows = [
            {
                "day": DAY_NAMES[day],
                "orders": data["orders"],
                "revenue": _money(data["revenue"]),
                "avgOrderValue": _money(data["revenue"] / data["orders"]) if data["orders"] else 0.0,
            }
            for day, data in weekly.items()
        ]
        return {
            "hourlyBreakdown": hourly_rows,
            "busiestHours": busiest,
            "dayOfWeekPerformance": day_rows,
            "timezone": settings.timezone,
        }

    @staticmethod
    def _customer_insights(customers: Dict[str, CustomerStats], pairs) -> Dict[str, Any]:
        count = len(customers)
        total = sum(c.revenue for c in customers.values())
        avg_revenue = total / count if count else 0
        high_value = sorted(
            (c for c in customers.values() if avg_revenue and c.revenue >= HIGH_VALUE_FACTOR * avg_revenue),
            key=lambda c: (-c.revenue, c.name.lower()),
        )
        segments = {"loyal": 0, "returning": 0, "oneTime": 0, "highValue": len(high_value)}
        for c in customers.values():
            if c.orders >= LOYAL_MIN_ORDERS:
                segments["loyal"] += 1
            elif c.orders >= RETURNING_MIN_ORDERS:
                segments["returning"] += 1
            else:
                segments["oneTime"] += 1

        combos = sorted(
            ((pair, n) for pair, n in pairs.items() if n >= 2), key=lambda kv: (-kv[1], kv[0][0].lower(), kv[0][1].lower())
        )[:TOP_N]
        return {
            "totalCustomers": count,
            "repeatCustomers": segments["loyal"] + segments["returning"],
            "avgRevenuePerCustomer": _money(avg_revenue),
            "highValueCustomers": [c.to_dict() for c in high_value[:TOP_N]],
            "segments": segments,
            "popularCombinations": [
                {"items": list(pair), "item": f"{pair[0]} + {pair[1]}", "count": n} for pair, n in combos
            ],
        }

    @staticmethod
    def _preparation_time(ranked: List[ItemStats]) -> Dict[str, Any]:
        samples = [t for s in ranked for t in s.prep_times]
        timed = [s for s in ranked if s.prep_times]

        def row(s: ItemStats) -> Dict[str, Any]:
            return {
                "itemName": s.name,
                "avgPrepTime": s.avg_prep_minutes,
                "minPrepTime": round(min(s.prep_times) / 60000, 1),
                "maxPrepTime": round(max(s.prep_times) / 60000, 1),
                "samples": len(s.prep_times),
            }

        slowest = sorted(timed, key=lambda s: (-s.avg_prep_minutes, s.name.lower()))
        fastest = sorted(timed, key=lambda s: (s.avg_prep_minutes, s.name.lower()))
        return {
            "overallAverage": round(sum(samples) / len(samples) / 60000, 1) if samples else 0.0,
            "unit": "minutes",
            "slowestItems": [row(s) for s in slowest[:5]],
            "fastestItems": [row(s) for s in fastest[:5]],
        }

    @staticmethod
    def _alerts(summary, product, prep, ranked: List[ItemStats]) -> List[Dict[str, str]]:
        alerts = []
        if summary["revenueTrend"] < SALES_DROP_ALERT_PCT:
            alerts.append({
                "severity": "high",
                "type": "sales_drop",
                "message": f"Sales are down {abs(summary['revenueTrend'])}% compared with the previous week",
            })
        growing = [row for row in product["trendingUp"] if row["growth"] >= HIGH_GROWTH_ALERT_PCT]
        if growing:
            names = ", ".join(f"{row['name']} (+{row['growth']}%)" for row in growing[:3])
            alerts.append({
                "severity": "low",
                "type": "high_growth",
                "message": f"Fast-growing items: {names}",
            })
        overall = prep["overallAverage"]
        if overall:
            outliers = [
                s for s in ranked
                if s.avg_prep_minutes is not None and s.avg_prep_minutes > PREP_OUTLIER_FACTOR * overall
            ]
            for s in sorted(outliers, key=lambda s: (-s.avg_prep_minutes, s.name.lower()))[:3]:
                alerts.append({
                    "severity": "medium",
                    "type": "slow_preparation",
                    "message": f"{s.name} takes {s.avg_prep_minutes} min to prepare "
                               f"(average is {overall} min)",
                })
        if summary["avgOrderValueTrend"] < AOV_DROP_ALERT_PCT:
            alerts.append({
                "severity": "medium",
                "type": "aov_drop",
                "message": f"Average order value fell {abs(summary['avgOrderValueTrend'])}% week over week",
            })
        return alerts

    @staticmethod
    def _recommendations(product, peak, customer_insights) -> List[Dict[str, str]]:
        recs = []
        if product["topSellersByRevenue"]:
            top = product["topSellersByRevenue"][0]
            recs.append({
                "priority": "high",
                "type": "protect_top_seller",
                "title": f"Keep {top['name']} in stock",
                "description": f"{top['name']} is the top earner at ₱{top['revenue']:.2f}; "
                               "make sure ingredients never run out.",
            })
        slow = [row for row in product["slowMovingItems"] if row["quantity"] <= 2]
        if slow:
            names = ", ".join(row["name"] for row in slow[:3])
            recs.append({
                "priority": "medium",
                "type": "promote_slow_movers",
                "title": "Promote slow-moving items",
                "description": f"Consider a promo or menu placement change for: {names}.",
            })
        if product["trendingUp"]:
            names = ", ".join(row["name"] for row in product["trendingUp"][:3])
            recs.append({
                "priority": "medium",
                "type": "capitalize_trend",
                "title": "Capitalize on trending items",
                "description": f"Feature {names} while demand is rising.",
            })
        if peak["busiestHours"]:
            hours = ", ".join(f"{row['hour']:02d}:00" for row in peak["busiestHours"])
            recs.append({
                "priority": "medium",
                "type": "staff_peak_hours",
                "title": "Staff up for peak hours",
                "description": f"Most orders arrive around {hours}; schedule extra crew then.",
            })
        if customer_insights["popularCombinations"]:
            combo = customer_insights["popularCombinations"][0]
            recs.append({
                "priority": "low",
                "type": "bundle",
                "title": f"Bundle {combo['item']}",
                "description": f"Ordered together {combo['count']} times; offer them as a set.",
            })
        return recs

    @staticmethod
    def _executive_summary(report: Dict[str, Any]) -> List[str]:
        summary = report["summary"]
        lines = [
            f"₱{summary['totalRevenue']:.2f} revenue from {summary['totalOrders']} paid orders "
            f"over the last {report['periodDays']} days.",
        ]
        if summary["totalOrders"]:
            direction = "up" if summary["revenueTrend"] >= 0 else "down"
            lines.append(
                f"Average order value is ₱{summary['avgOrderValue']:.2f}; weekly sales are "
                f"{direction} {abs(summary['revenueTrend'])}%."
            )
        top = report["productPerformance"]["topSellersByRevenue"]
        if top:
            lines.append(f"Best seller: {top[0]['name']} (₱{top[0]['revenue']:.2f}).")
        if report["peakTimes"]["busiestHours"]:
            lines.append(f"Busiest hour: {report['peakTimes']['busiestHours'][0]['hour']:02d}:00.")
        high = [a for a in report["alerts"] if a["severity"] == "high"]
        if high:
            lines.append(f"{len(high)} high-severity alert(s) need attention.")
        return lines
