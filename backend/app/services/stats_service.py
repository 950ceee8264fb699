"""Kitchen wait-time statistics per branch."""

import logging
from typing import Dict

from sqlalchemy.orm import Session

from app.core.cache import CacheKeys, ledger_cache
from app.core.config import settings
from app.models.order import Order
from app.models.stats import Stats
from app.services.business_day import now_ms

logger = logging.getLogger(__name__)


class StatsService:
    """Maintains the running ``Stats`` row of a branch."""

    def __init__(self, db: Session):
        self.db = db

    def _get_or_create(self, branch_id: str) -> Stats:
        stats = self.db.get(Stats, branch_id)
        if stats is None:
            stats = Stats(branch_id=branch_id, total_wait_time_ms=0, completed_orders_count=0)
            self.db.add(stats)
        return stats

    def record_completion(self, order: Order) -> None:
        """Fold a freshly completed order's wait time into the running totals.

        Called once per order, in the same unit of work that sets
        ``all_items_served_at``; the caller commits.
        """
        wait_time = (order.all_items_served_at or 0) - (order.created_at or 0)
        if wait_time <= 0:
            logger.debug(f"Order {order.id}: non-positive wait time {wait_time}ms not recorded")
            return
        stats = self._get_or_create(order.branch_id)
        stats.total_wait_time_ms = (stats.total_wait_time_ms or 0) + wait_time
        stats.completed_orders_count = (stats.completed_orders_count or 0) + 1
        stats.last_updated = now_ms()
        logger.info(f"Order {order.id} completed in {wait_time}ms (branch {order.branch_id})")

    def recalculate(self, branch_id: str) -> Dict:
        """Rebuild the totals by replaying every completed order of the branch."""
        completed = (
            self.db.query(Order.created_at, Order.all_items_served_at)
            .filter(Order.branch_id == branch_id, Order.all_items_served_at.isnot(None))
            .all()
        )
        total_wait, count = 0, 0
        for created_at, served_at in completed:
            wait_time = served_at - created_at
            if wait_time > 0:
                total_wait += wait_time
                count += 1

        stats = self._get_or_create(branch_id)
        stats.total_wait_time_ms = total_wait
        stats.completed_orders_count = count
        stats.last_updated = now_ms()
        self.db.commit()
        ledger_cache.invalidate(branch_id, (CacheKeys.STATS,))
        logger.info(f"Stats recalculated for {branch_id}: {count} orders, {total_wait}ms total")
        return self.serialize(stats)

    def get(self, branch_id: str) -> Dict:
        def compute():
            stats = self.db.get(Stats, branch_id)
            if stats is None:
                stats = Stats(branch_id=branch_id, total_wait_time_ms=0, completed_orders_count=0)
            return self.serialize(stats)

        return ledger_cache.get_or_compute(
            branch_id, CacheKeys.STATS, None, settings.cache_ttl_stats, compute
        )

    @staticmethod
    def serialize(stats: Stats) -> Dict:
        return {
            "branchId": stats.branch_id,
            "averageWaitTimeMs": stats.average_wait_time_ms,
            "completedOrdersCount": stats.completed_orders_count or 0,
            "totalWaitTimeMs": stats.total_wait_time_ms or 0,
            "lastUpdated": stats.last_updated,
        }
