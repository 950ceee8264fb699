"""Order ledger service.

All mutations of an order aggregate (create, update, append, item status,
payment, offline merge) run through ``OrderLedgerService``.  Each one loads
the order, validates the request, mutates the aggregate in memory and then
goes through ``_save``, the single write path that:

1. stamps ``updated_at`` and bumps ``version``;
2. sets ``all_items_served_at`` the first time every item is served and
   folds the wait time into the branch stats;
3. commits the whole aggregate as one unit;
4. invalidates the branch's cached reads before returning.

Any error before the commit rolls the session back, so a rejected request
never leaves a half-applied order behind.
"""

import logging
import secrets
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.cache import CacheKeys, ledger_cache
from app.core.config import settings
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.order import AppendedOrder, ItemStatus, Order, OrderItem
from app.schemas.order import (
    AppendRequest,
    AppendedOrderIn,
    ItemStatusUpdate,
    OrderCreate,
    OrderItemIn,
    OrderNoteIn,
    OrderSync,
    OrderUpdate,
    PaymentUpdate,
)
from app.services.business_day import business_date_of, business_day_bounds, now_ms
from app.services.menu_catalog import MenuCatalog, menu_id_from_item_id
from app.services.payment_service import PaymentService, is_covered_by_parent
from app.services.stats_service import StatsService

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "createdAt": Order.created_at,
    "updatedAt": Order.updated_at,
    "orderNumber": Order.order_number,
    "customerName": Order.customer_name,
}


# =============================================================================
# Serialization
# =============================================================================

def _enum_value(value):
    return value.value if value is not None and hasattr(value, "value") else value


def serialize_item(item: OrderItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "name": item.name,
        "price": item.price,
        "quantity": item.quantity,
        "status": _enum_value(item.status),
        "itemType": _enum_value(item.item_type),
        "note": item.note,
        "menuItemId": item.menu_item_id,
        "category": item.category,
        "owner": item.owner,
        "preparingAt": item.preparing_at,
        "readyAt": item.ready_at,
        "servedAt": item.served_at,
        "preparedBy": item.prepared_by,
        "preparedByEmail": item.prepared_by_email,
        "servedBy": item.served_by,
        "servedByEmail": item.served_by_email,
    }


def _serialize_payment(target) -> Dict[str, Any]:
    return {
        "isPaid": target.is_paid,
        "paymentMethod": _enum_value(target.payment_method),
        "cashAmount": target.cash_amount,
        "gcashAmount": target.gcash_amount,
        "paidAmount": target.paid_amount,
        "amountReceived": target.amount_received,
    }


def serialize_appended(appended: AppendedOrder) -> Dict[str, Any]:
    return {
        "id": appended.id,
        "items": [serialize_item(item) for item in appended.items],
        "createdAt": appended.created_at,
        **_serialize_payment(appended),
    }


def serialize_order(order: Order) -> Dict[str, Any]:
    """Render an order aggregate as its JSON document."""
    return {
        "id": order.id,
        "branchId": order.branch_id,
        "orderNumber": order.order_number,
        "customerName": order.customer_name,
        "orderType": _enum_value(order.order_type),
        "items": [serialize_item(item) for item in order.items],
        "appendedOrders": [serialize_appended(a) for a in order.appended_orders],
        "createdAt": order.created_at,
        "updatedAt": order.updated_at,
        **_serialize_payment(order),
        "allItemsServedAt": order.all_items_served_at,
        "orderTakerName": order.order_taker_name,
        "orderTakerEmail": order.order_taker_email,
        "notes": list(order.notes or []),
        "version": order.version,
        "totalAmount": order.total_amount,
        "financialTotal": order.financial_total,
        "totalItems": order.total_items,
        "orderStatus": order.order_status,
        "totalPaidAmount": order.total_paid_amount,
        "pendingAmount": order.pending_amount,
    }


# =============================================================================
# Service
# =============================================================================

class OrderLedgerService:
    """Order store and state machine."""

    def __init__(self, db: Session):
        self.db = db
        self.payments = PaymentService()
        self.stats = StatsService(db)
        self._catalog: Optional[MenuCatalog] = None

    @property
    def catalog(self) -> MenuCatalog:
        if self._catalog is None:
            self._catalog = MenuCatalog.load(self.db)
        return self._catalog

    @contextmanager
    def _unit_of_work(self):
        try:
            yield
        except Exception:
            self.db.rollback()
            raise

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _load(self, order_id: str) -> Order:
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    def get(self, order_id: str) -> Dict[str, Any]:
        return serialize_order(self._load(order_id))

    def list_orders(
        self,
        branch_id: str,
        is_paid: Optional[bool] = None,
        status: Optional[ItemStatus] = None,
        customer_name: Optional[str] = None,
        limit: Optional[int] = None,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
    ) -> List[Dict[str, Any]]:
        if sort_by not in SORTABLE_FIELDS:
            raise ValidationError(
                f"Invalid sortBy '{sort_by}'. Must be one of: {', '.join(SORTABLE_FIELDS)}"
            )
        params = {
            "isPaid": is_paid,
            "status": _enum_value(status),
            "customerName": customer_name,
            "limit": limit,
            "sortBy": sort_by,
            "sortOrder": sort_order,
        }

        def compute():
            query = self.db.query(Order).filter(Order.branch_id == branch_id)
            if is_paid is not None:
                query = query.filter(Order.is_paid == is_paid)
            if customer_name:
                query = query.filter(Order.customer_name.ilike(f"%{customer_name}%"))
            if status is not None:
                query = query.filter(
                    Order.items.any(OrderItem.status == status)
                    | Order.appended_orders.any(AppendedOrder.items.any(OrderItem.status == status))
                )
            column = SORTABLE_FIELDS[sort_by]
            query = query.order_by(column.asc() if sort_order == "asc" else column.desc())
            if limit:
                query = query.limit(limit)
            return [serialize_order(order) for order in query.all()]

        return ledger_cache.get_or_compute(
            branch_id, CacheKeys.ORDERS, params, settings.cache_ttl_orders, compute
        )

    def updates_since(self, branch_id: str, since: int) -> List[Dict[str, Any]]:
        """Orders changed after ``since`` (epoch ms), oldest change first."""
        orders = (
            self.db.query(Order)
            .filter(Order.branch_id == branch_id, Order.updated_at > since)
            .order_by(Order.updated_at.asc())
            .all()
        )
        return [serialize_order(order) for order in orders]

    def summary(self, branch_id: str) -> Dict[str, Any]:
        base = self.db.query(Order).filter(Order.branch_id == branch_id)
        total_orders = base.count()
        paid_orders = base.filter(Order.is_paid.is_(True)).count()
        start, end = business_day_bounds(business_date_of(now_ms()))
        today_orders = base.filter(Order.created_at >= start, Order.created_at < end).count()
        total_revenue = sum(o.financial_total for o in base.filter(Order.is_paid.is_(True)).all())
        return {
            "branchId": branch_id,
            "totalOrders": total_orders,
            "paidOrders": paid_orders,
            "unpaidOrders": total_orders - paid_orders,
            "todayOrders": today_orders,
            "totalRevenue": round(total_revenue, 2),
        }

    # -------------------------------------------------------------------------
    # Building sub-entities
    # -------------------------------------------------------------------------

    def _build_item(self, data: OrderItemIn, position: int) -> OrderItem:
        item_id = data.id or f"{data.menu_item_id or 'item'}-{now_ms()}-{secrets.token_hex(3)}"
        menu_item = self.catalog.lookup(data.menu_item_id, item_id)
        menu_item_id = data.menu_item_id
        if menu_item is not None:
            menu_item_id = menu_item.id
        elif not menu_item_id:
            # Keep the parsed reference even if the menu item is gone
            menu_item_id = menu_id_from_item_id(data.id)
        return OrderItem(
            id=item_id,
            position=position,
            name=data.name,
            price=data.price,
            quantity=data.quantity,
            status=data.status,
            item_type=data.item_type,
            note=data.note,
            menu_item_id=menu_item_id,
            category=data.category or (menu_item.category if menu_item else None),
            owner=(data.owner or (menu_item.owner if menu_item else None) or None),
            preparing_at=data.preparing_at,
            ready_at=data.ready_at,
            served_at=data.served_at,
            prepared_by=data.prepared_by,
            prepared_by_email=data.prepared_by_email,
            served_by=data.served_by,
            served_by_email=data.served_by_email,
        )

    def _build_items(self, items: Iterable[OrderItemIn]) -> List[OrderItem]:
        built = [self._build_item(data, position) for position, data in enumerate(items)]
        seen = set()
        for item in built:
            if item.id in seen:
                raise ValidationError(f"Duplicate item id '{item.id}'")
            seen.add(item.id)
        return built

    def _build_appended(self, data: AppendedOrderIn, existing_ids: Iterable[str]) -> AppendedOrder:
        appended = AppendedOrder(
            id=data.id or self._new_appended_id(existing_ids),
            created_at=data.created_at or now_ms(),
            is_paid=data.is_paid,
            payment_method=data.payment_method,
            cash_amount=data.cash_amount,
            gcash_amount=data.gcash_amount,
            amount_received=data.amount_received,
        )
        appended.items = self._build_items(data.items)
        return appended

    def _build_appended_list(self, entries: Iterable[AppendedOrderIn]) -> List[AppendedOrder]:
        built: List[AppendedOrder] = []
        for data in entries:
            appended = self._build_appended(data, [a.id for a in built])
            if any(a.id == appended.id for a in built):
                raise ValidationError(f"Duplicate appended order id '{appended.id}'")
            built.append(appended)
        return built

    @staticmethod
    def _new_appended_id(existing_ids: Iterable[str]) -> str:
        existing = set(existing_ids)
        candidate = f"appended-{now_ms()}"
        suffix = 1
        while candidate in existing:
            candidate = f"appended-{now_ms()}-{suffix}"
            suffix += 1
        return candidate

    @staticmethod
    def _build_notes(notes: Iterable[OrderNoteIn]) -> List[Dict[str, Any]]:
        result = []
        for note in notes:
            result.append({
                "id": note.id or f"note-{now_ms()}-{secrets.token_hex(3)}",
                "content": note.content.strip(),
                "createdAt": note.created_at or now_ms(),
                "createdBy": note.created_by,
                "createdByEmail": note.created_by_email,
            })
        return result

    def _next_order_number(self) -> int:
        current = self.db.query(func.max(Order.order_number)).scalar()
        return (current or 0) + 1

    # -------------------------------------------------------------------------
    # Write path
    # -------------------------------------------------------------------------

    def _mark_served_once(self, order: Order, served_at: Optional[int] = None) -> bool:
        """Set ``all_items_served_at`` on the first transition to fully served."""
        if order.all_items_served_at is not None or not order.all_items_served:
            return False
        if served_at is None:
            # Explicit servedAt stamps from offline replays win over the wall clock
            served_at = max((i.served_at for i in order.iter_items() if i.served_at), default=None)
        order.all_items_served_at = served_at or now_ms()
        self.stats.record_completion(order)
        return True

    def _save(self, order: Order, invalidate: Tuple[str, ...] = CacheKeys.ORDER_WRITE,
              served_at: Optional[int] = None) -> Dict[str, Any]:
        order.updated_at = max(now_ms(), (order.updated_at or 0) + 1)
        order.increment_version()
        completed = self._mark_served_once(order, served_at)
        self.db.commit()
        self.db.refresh(order)
        entities = invalidate + (CacheKeys.STATS,) if completed else invalidate
        ledger_cache.invalidate(order.branch_id, entities)
        return serialize_order(order)

    def create(self, payload: OrderCreate, branch_id: str,
               served_at: Optional[int] = None) -> Dict[str, Any]:
        with self._unit_of_work():
            if self.db.get(Order, payload.id) is not None:
                raise ConflictError("Order with this ID already exists")

            timestamp = now_ms()
            order = Order(
                id=payload.id,
                branch_id=branch_id,
                order_number=self._next_order_number(),
                customer_name=payload.customer_name,
                order_type=payload.order_type,
                created_at=payload.created_at or timestamp,
                updated_at=timestamp,
                version=0,
                is_paid=payload.is_paid,
                payment_method=payload.payment_method,
                cash_amount=payload.cash_amount,
                gcash_amount=payload.gcash_amount,
                amount_received=payload.amount_received,
                order_taker_name=payload.order_taker_name,
                order_taker_email=payload.order_taker_email,
                notes=self._build_notes(payload.notes),
            )
            order.items = self._build_items(payload.items)
            order.appended_orders = self._build_appended_list(payload.appended_orders)
            self.payments.check_document(order)

            self.db.add(order)
            document = self._save(order, served_at=served_at)
        logger.info(
            f"Order {order.id} (#{order.order_number}) created for '{order.customer_name}' "
            f"in {branch_id} with {len(order.items)} items"
        )
        return document

    def update(self, order_id: str, payload: OrderUpdate) -> Dict[str, Any]:
        fields = payload.model_fields_set
        with self._unit_of_work():
            order = self._load(order_id)
            if "customer_name" in fields and payload.customer_name is not None:
                order.customer_name = payload.customer_name
            if "items" in fields and payload.items is not None:
                order.items = self._build_items(payload.items)
            if "appended_orders" in fields and payload.appended_orders is not None:
                order.appended_orders = self._build_appended_list(payload.appended_orders)
            if "notes" in fields and payload.notes is not None:
                order.notes = self._build_notes(payload.notes)
            if "is_paid" in fields and payload.is_paid is not None:
                if payload.is_paid:
                    order.is_paid = True
                else:
                    order.clear_payment()
            self.payments.check_document(order)
            return self._save(order)

    def delete(self, order_id: str) -> Dict[str, Any]:
        with self._unit_of_work():
            order = self._load(order_id)
            document = serialize_order(order)
            self.db.delete(order)
            self.db.commit()
        ledger_cache.invalidate(document["branchId"], CacheKeys.ORDER_WRITE)
        logger.info(f"Order {order_id} deleted")
        return document

    def append(self, order_id: str, payload: AppendRequest) -> Dict[str, Any]:
        with self._unit_of_work():
            order = self._load(order_id)
            existing = [a.id for a in order.appended_orders]
            if payload.id and payload.id in existing:
                raise ConflictError(f"Appended order '{payload.id}' already exists")
            appended = AppendedOrder(
                id=payload.id or self._new_appended_id(existing),
                created_at=payload.created_at or now_ms(),
                is_paid=False,
            )
            appended.items = self._build_items(payload.items)
            order.appended_orders.append(appended)
            if payload.is_paid:
                self.payments.set_payment(
                    order, appended, True, payload.payment_method,
                    payload.cash_amount, payload.gcash_amount, payload.amount_received,
                )
            return self._save(order)

    def delete_appended(self, order_id: str, appended_id: str) -> Dict[str, Any]:
        with self._unit_of_work():
            order = self._load(order_id)
            appended = order.find_appended(appended_id)
            if appended is None:
                raise NotFoundError("Appended order", appended_id)
            if is_covered_by_parent(appended):
                raise ValidationError(
                    f"Appended order {appended_id} is settled by the main order's split payment; "
                    "unpay the main order before removing it"
                )
            order.appended_orders.remove(appended)
            return self._save(order)

    def update_item_status(
        self,
        order_id: str,
        item_id: str,
        payload: ItemStatusUpdate,
        appended_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Apply a kitchen status change to one item.

        Without ``appended_id`` the main items are searched first, then every
        appended order.  Out-of-order transitions are allowed; timestamps are
        stamped only when unset unless given explicitly.
        """
        with self._unit_of_work():
            order = self._load(order_id)
            item = self._find_item(order, item_id, appended_id)
            self._apply_status(item, payload)
            return self._save(order)

    @staticmethod
    def _find_item(order: Order, item_id: str, appended_id: Optional[str]) -> OrderItem:
        if appended_id is not None:
            appended = order.find_appended(appended_id)
            if appended is None:
                raise NotFoundError("Appended order", appended_id)
            candidates = appended.items
        else:
            candidates = order.iter_items()
        for item in candidates:
            if item.id == item_id:
                return item
        raise NotFoundError("Item", item_id)

    @staticmethod
    def _apply_status(item: OrderItem, payload: ItemStatusUpdate) -> None:
        fields = payload.model_fields_set
        item.status = payload.status
        for attr in ("prepared_by", "prepared_by_email", "served_by", "served_by_email"):
            if attr in fields:
                setattr(item, attr, getattr(payload, attr))

        timestamp = now_ms()
        for attr, status in (
            ("preparing_at", ItemStatus.PREPARING),
            ("ready_at", ItemStatus.READY),
            ("served_at", ItemStatus.SERVED),
        ):
            explicit = getattr(payload, attr)
            if explicit is not None:
                setattr(item, attr, explicit)
            elif payload.status == status and getattr(item, attr) is None:
                setattr(item, attr, timestamp)

    def set_payment(
        self,
        order_id: str,
        payload: PaymentUpdate,
        appended_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        with self._unit_of_work():
            order = self._load(order_id)
            target = order
            if appended_id is not None:
                target = order.find_appended(appended_id)
                if target is None:
                    raise NotFoundError("Appended order", appended_id)
            self.payments.set_payment(
                order,
                target,
                is_paid=payload.is_paid,
                method=payload.payment_method,
                cash_amount=payload.cash_amount,
                gcash_amount=payload.gcash_amount,
                amount_received=payload.amount_received,
                whole_order=payload.whole_order and appended_id is None,
            )
            return self._save(order)

    def sync(self, payload: OrderSync, branch_id: str) -> Tuple[Dict[str, Any], bool]:
        """Merge an offline-originated order document.

        Unknown ids are created; known ids take every field the device sent
        (last writer wins, no field-level conflict detection).  Returns the
        saved document and whether it was created.
        """
        if self.db.get(Order, payload.id) is None:
            create_fields = payload.model_dump(
                include=set(OrderCreate.model_fields), exclude_unset=False
            )
            document = self.create(
                OrderCreate(**create_fields), branch_id, served_at=payload.all_items_served_at
            )
            return document, True

        fields = payload.model_fields_set
        with self._unit_of_work():
            order = self._load(payload.id)
            if "customer_name" in fields:
                order.customer_name = payload.customer_name
            if "order_type" in fields:
                order.order_type = payload.order_type
            if "items" in fields:
                order.items = self._build_items(payload.items)
            if "appended_orders" in fields:
                order.appended_orders = self._build_appended_list(payload.appended_orders)
            if "notes" in fields:
                order.notes = self._build_notes(payload.notes)
            for attr in ("order_taker_name", "order_taker_email"):
                if attr in fields:
                    setattr(order, attr, getattr(payload, attr))
            if fields & {"is_paid", "payment_method", "cash_amount", "gcash_amount",
                         "paid_amount", "amount_received"}:
                order.is_paid = payload.is_paid
                order.payment_method = payload.payment_method
                order.cash_amount = payload.cash_amount
                order.gcash_amount = payload.gcash_amount
                order.paid_amount = payload.paid_amount
                order.amount_received = payload.amount_received
            self.payments.check_document(order)
            document = self._save(order, served_at=payload.all_items_served_at)
        logger.info(f"Order {payload.id} merged from offline sync (version {document['version']})")
        return document, False
