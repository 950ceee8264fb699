"""Customer order routes.

Fixed paths (reports, sync, stats) are declared before ``/{order_id}`` so
they are not captured as order ids.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, BackgroundTasks, Query, Request, Response, status

from app.core.config import settings
from app.core.rate_limit import limiter
from app.core.rbac import RequireSuperAdmin
from app.core.responses import list_response, success_response
from app.db.session import DbSession
from app.models.order import ItemStatus
from app.schemas.order import (
    AppendRequest,
    ItemStatusUpdate,
    OrderCreate,
    OrderSync,
    OrderUpdate,
    PaymentUpdate,
)
from app.schemas.reports import ValidateDayRequest
from app.services.branches import resolve_branch
from app.services.insights_service import InsightsService
from app.services.order_events import OrderEventType, order_notifier
from app.services.order_service import OrderLedgerService
from app.services.sales_aggregation_service import SalesAggregationService

logger = logging.getLogger(__name__)

router = APIRouter()

BranchId = Annotated[
    Optional[str], Query(alias="branchId", description="Branch partition; defaults to the main branch")
]


def _notify(background_tasks: BackgroundTasks, event_type: OrderEventType, document: dict):
    background_tasks.add_task(order_notifier.publish, event_type, document)


# =============================================================================
# Listing & reports
# =============================================================================

@router.get("")
@limiter.limit(settings.rate_limit_read)
def list_orders(
    request: Request,
    db: DbSession,
    branch_id: BranchId = None,
    is_paid: Optional[bool] = Query(None, alias="isPaid"),
    item_status: Optional[ItemStatus] = Query(None, alias="status"),
    customer_name: Optional[str] = Query(None, alias="customerName", max_length=100),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder", pattern="^(asc|desc)$"),
):
    """List orders of a branch, newest first by default."""
    orders = OrderLedgerService(db).list_orders(
        resolve_branch(branch_id),
        is_paid=is_paid,
        status=item_status,
        customer_name=customer_name,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return list_response(orders)


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_write)
def create_order(
    request: Request,
    payload: OrderCreate,
    db: DbSession,
    background_tasks: BackgroundTasks,
    branch_id: BranchId = None,
):
    """Create an order. Fails with 409 when the id is already taken."""
    branch = resolve_branch(payload.branch_id or branch_id)
    document = OrderLedgerService(db).create(payload, branch)
    _notify(background_tasks, OrderEventType.CREATED, document)
    return success_response(document, "Order created")


@router.get("/stats/summary")
@limiter.limit(settings.rate_limit_read)
def order_summary(request: Request, db: DbSession, branch_id: BranchId = None):
    return success_response(OrderLedgerService(db).summary(resolve_branch(branch_id)))


@router.get("/daily-sales")
@limiter.limit(settings.rate_limit_read)
def daily_sales(
    request: Request,
    db: DbSession,
    branch_id: BranchId = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=366),
    start_date: Optional[str] = Query(None, alias="startDate", description="YYYY-MM-DD business date"),
    end_date: Optional[str] = Query(None, alias="endDate", description="YYYY-MM-DD business date"),
):
    """Per-business-day sales report, most recent day first."""
    return SalesAggregationService(db).daily_sales(
        resolve_branch(branch_id), page=page, limit=limit, start_date=start_date, end_date=end_date
    )


@router.get("/daily-sales/{day}/details")
@limiter.limit(settings.rate_limit_read)
def daily_sales_details(request: Request, day: str, db: DbSession, branch_id: BranchId = None):
    """Every order and cash movement of one business day."""
    return success_response(SalesAggregationService(db).day_details(resolve_branch(branch_id), day))


@router.post("/daily-sales/{day}/validate")
@limiter.limit(settings.rate_limit_write)
def validate_daily_sales(
    request: Request,
    day: str,
    db: DbSession,
    current_user: RequireSuperAdmin,
    payload: Optional[ValidateDayRequest] = None,
    branch_id: BranchId = None,
):
    """Lock (or unlock) a business day's figures after reconciliation."""
    is_validated = payload.is_validated if payload is not None else True
    result = SalesAggregationService(db).validate_day(
        resolve_branch(branch_id), day, current_user, is_validated
    )
    return success_response(result, "Day validated" if is_validated else "Day unvalidated")


@router.delete("/daily-sales/{day}")
@limiter.limit(settings.rate_limit_write)
def purge_daily_sales(
    request: Request,
    day: str,
    db: DbSession,
    current_user: RequireSuperAdmin,
    background_tasks: BackgroundTasks,
    branch_id: BranchId = None,
):
    """Delete every order and cash movement of a business day."""
    result = SalesAggregationService(db).purge_day(resolve_branch(branch_id), day)
    for document in result.pop("orders"):
        _notify(background_tasks, OrderEventType.DELETED, document)
    logger.warning(f"Business day {day} purged by {current_user.email}")
    return success_response(result)


@router.get("/monthly-sales")
@limiter.limit(settings.rate_limit_read)
def monthly_sales(
    request: Request,
    db: DbSession,
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    branch_id: BranchId = None,
):
    return success_response(SalesAggregationService(db).monthly_sales(resolve_branch(branch_id), year, month))


@router.get("/insights")
@limiter.limit(settings.rate_limit_read)
def business_insights(request: Request, db: DbSession, branch_id: BranchId = None):
    """Rolling business-intelligence report over recent paid orders."""
    return success_response(InsightsService(db).insights(resolve_branch(branch_id)))


# =============================================================================
# Offline sync
# =============================================================================

@router.post("/sync")
@limiter.limit(settings.rate_limit_write)
def sync_order(
    request: Request,
    payload: OrderSync,
    response: Response,
    db: DbSession,
    background_tasks: BackgroundTasks,
    branch_id: BranchId = None,
):
    """Create or merge an order recorded while a device was offline."""
    branch = resolve_branch(payload.branch_id or branch_id)
    document, created = OrderLedgerService(db).sync(payload, branch)
    if created:
        response.status_code = status.HTTP_201_CREATED
    _notify(background_tasks, OrderEventType.CREATED if created else OrderEventType.UPDATED, document)
    return success_response(document, "Order created" if created else "Order merged")


@router.get("/updates")
@limiter.limit(settings.rate_limit_read)
def order_updates(
    request: Request,
    db: DbSession,
    since: int = Query(0, ge=0, description="Epoch milliseconds"),
    branch_id: BranchId = None,
):
    """Orders changed after ``since``, oldest change first."""
    return list_response(OrderLedgerService(db).updates_since(resolve_branch(branch_id), since))


# =============================================================================
# Single order
# =============================================================================

@router.get("/{order_id}")
@limiter.limit(settings.rate_limit_read)
def get_order(request: Request, order_id: str, db: DbSession):
    return success_response(OrderLedgerService(db).get(order_id))


@router.put("/{order_id}")
@limiter.limit(settings.rate_limit_write)
def update_order(
    request: Request,
    order_id: str,
    payload: OrderUpdate,
    db: DbSession,
    background_tasks: BackgroundTasks,
):
    """Update customer name, items, payment flag, appended orders or notes."""
    document = OrderLedgerService(db).update(order_id, payload)
    _notify(background_tasks, OrderEventType.UPDATED, document)
    return success_response(document, "Order updated")


@router.delete("/{order_id}")
@limiter.limit(settings.rate_limit_write)
def delete_order(
    request: Request,
    order_id: str,
    db: DbSession,
    current_user: RequireSuperAdmin,
    background_tasks: BackgroundTasks,
):
    document = OrderLedgerService(db).delete(order_id)
    _notify(background_tasks, OrderEventType.DELETED, document)
    logger.info(f"Order {order_id} deleted by {current_user.email}")
    return success_response({"id": order_id}, "Order deleted")


@router.post("/{order_id}/append")
@limiter.limit(settings.rate_limit_write)
def append_order(
    request: Request,
    order_id: str,
    payload: AppendRequest,
    db: DbSession,
    background_tasks: BackgroundTasks,
):
    """Add items to an existing bill as an independently paid sub-order."""
    document = OrderLedgerService(db).append(order_id, payload)
    _notify(background_tasks, OrderEventType.UPDATED, document)
    return success_response(document, "Items appended")


@router.put("/{order_id}/items/{item_id}/status")
@limiter.limit(settings.rate_limit_write)
def update_item_status(
    request: Request,
    order_id: str,
    item_id: str,
    payload: ItemStatusUpdate,
    db: DbSession,
    background_tasks: BackgroundTasks,
):
    """Move an item (main or appended) through pending/preparing/ready/served."""
    document = OrderLedgerService(db).update_item_status(order_id, item_id, payload)
    _notify(background_tasks, OrderEventType.UPDATED, document)
    return success_response(document)


@router.put("/{order_id}/payment")
@limiter.limit(settings.rate_limit_write)
def update_payment(
    request: Request,
    order_id: str,
    payload: PaymentUpdate,
    db: DbSession,
    background_tasks: BackgroundTasks,
):
    """Mark the main order paid or unpaid; omitting ``isPaid`` toggles it."""
    document = OrderLedgerService(db).set_payment(order_id, payload)
    _notify(background_tasks, OrderEventType.UPDATED, document)
    return success_response(document)


@router.put("/{order_id}/appended/{appended_id}/payment")
@limiter.limit(settings.rate_limit_write)
def update_appended_payment(
    request: Request,
    order_id: str,
    appended_id: str,
    payload: PaymentUpdate,
    db: DbSession,
    background_tasks: BackgroundTasks,
):
    document = OrderLedgerService(db).set_payment(order_id, payload, appended_id=appended_id)
    _notify(background_tasks, OrderEventType.UPDATED, document)
    return success_response(document)


@router.delete("/{order_id}/appended/{appended_id}")
@limiter.limit(settings.rate_limit_write)
def delete_appended_order(
    request: Request,
    order_id: str,
    appended_id: str,
    db: DbSession,
    background_tasks: BackgroundTasks,
):
    document = OrderLedgerService(db).delete_appended(order_id, appended_id)
    _notify(background_tasks, OrderEventType.UPDATED, document)
    return success_response(document, "Appended order removed")


@router.put("/{order_id}/appended/{appended_id}/items/{item_id}/status")
@limiter.limit(settings.rate_limit_write)
def update_appended_item_status(
    request: Request,
    order_id: str,
    appended_id: str,
    item_id: str,
    payload: ItemStatusUpdate,
    db: DbSession,
    background_tasks: BackgroundTasks,
):
    document = OrderLedgerService(db).update_item_status(order_id, item_id, payload, appended_id=appended_id)
    _notify(background_tasks, OrderEventType.UPDATED, document)
    return success_response(document)
