# Services module

from app.services.business_day import business_day_of, business_day_key, business_day_bounds
from app.services.order_service import OrderLedgerService, serialize_order
from app.services.payment_service import PaymentService, validate_split
from app.services.sales_aggregation_service import SalesAggregationService
from app.services.insights_service import InsightsService
from app.services.withdrawal_service import WithdrawalService
from app.services.stats_service import StatsService
from app.services.order_events import order_notifier, ws_manager

__all__ = [
    "business_day_of",
    "business_day_key",
    "business_day_bounds",
    "OrderLedgerService",
    "serialize_order",
    "PaymentService",
    "validate_split",
    "SalesAggregationService",
    "InsightsService",
    "WithdrawalService",
    "StatsService",
    "order_notifier",
    "ws_manager",
]
