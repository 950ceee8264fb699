"""Cash movements: withdrawals from the till and supply purchases."""

import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.cache import CacheKeys, ledger_cache
from app.core.config import settings
from app.core.errors import NotFoundError, ValidationError
from app.models.order import PaymentMethod
from app.models.withdrawal import CHARGED_TO_ALL, Withdrawal, WithdrawalType
from app.schemas.withdrawal import WithdrawalCreate
from app.services.business_day import business_day_key, now_ms

logger = logging.getLogger(__name__)


def serialize_withdrawal(withdrawal: Withdrawal) -> Dict[str, Any]:
    return {
        "id": withdrawal.id,
        "branchId": withdrawal.branch_id,
        "type": withdrawal.type.value,
        "amount": withdrawal.amount,
        "description": withdrawal.description,
        "paymentMethod": withdrawal.payment_method.value if withdrawal.payment_method else None,
        "chargedTo": withdrawal.charged_to,
        "createdAt": withdrawal.created_at,
        "updatedAt": withdrawal.updated_at,
        "businessDay": business_day_key(withdrawal.created_at),
        "createdBy": {
            "userId": withdrawal.created_by_id,
            "name": withdrawal.created_by_name,
            "email": withdrawal.created_by_email,
        },
    }


class WithdrawalService:
    """CRUD for cash movement records; every write invalidates the reports."""

    def __init__(self, db: Session):
        self.db = db

    def list_withdrawals(
        self,
        branch_id: str,
        withdrawal_type: Optional[WithdrawalType] = None,
        start_date: Optional[int] = None,
        end_date: Optional[int] = None,
        limit: Optional[int] = None,
        sort_order: str = "desc",
    ) -> List[Dict[str, Any]]:
        query = self.db.query(Withdrawal).filter(Withdrawal.branch_id == branch_id)
        if withdrawal_type is not None:
            query = query.filter(Withdrawal.type == withdrawal_type)
        if start_date is not None:
            query = query.filter(Withdrawal.created_at >= start_date)
        if end_date is not None:
            query = query.filter(Withdrawal.created_at <= end_date)
        order = Withdrawal.created_at.asc() if sort_order == "asc" else Withdrawal.created_at.desc()
        query = query.order_by(order, Withdrawal.id)
        if limit:
            query = query.limit(limit)
        return [serialize_withdrawal(w) for w in query.all()]

    def get(self, withdrawal_id: str) -> Dict[str, Any]:
        withdrawal = self.db.get(Withdrawal, withdrawal_id)
        if withdrawal is None:
            raise NotFoundError("Withdrawal", withdrawal_id)
        return serialize_withdrawal(withdrawal)

    def create(self, payload: WithdrawalCreate, branch_id: str) -> Dict[str, Any]:
        charged_to = (payload.charged_to or settings.default_owner).strip().lower()
        if charged_to != CHARGED_TO_ALL and charged_to not in settings.owner_list:
            raise ValidationError(
                f"Invalid chargedTo '{payload.charged_to}'. Must be one of: "
                f"{', '.join(settings.owner_list + [CHARGED_TO_ALL])}"
            )

        timestamp = now_ms()
        created_at = payload.created_at or timestamp
        latest_allowed = timestamp + settings.withdrawal_future_tolerance_hours * 3600 * 1000
        if created_at > latest_allowed:
            raise ValidationError(
                f"createdAt cannot be more than {settings.withdrawal_future_tolerance_hours} hours in the future"
            )

        created_by = payload.created_by
        withdrawal = Withdrawal(
            id=uuid.uuid4().hex,
            branch_id=branch_id,
            type=payload.type,
            amount=payload.amount,
            description=payload.description,
            payment_method=PaymentMethod(payload.payment_method) if payload.payment_method else None,
            charged_to=charged_to,
            created_at=created_at,
            updated_at=timestamp,
            created_by_id=created_by.user_id if created_by else None,
            created_by_name=created_by.name if created_by else None,
            created_by_email=created_by.email if created_by else None,
        )
        self.db.add(withdrawal)
        self.db.commit()
        ledger_cache.invalidate(branch_id, CacheKeys.WITHDRAWAL_WRITE)
        logger.info(
            f"{withdrawal.type.value.capitalize()} of {withdrawal.amount:.2f} recorded "
            f"in {branch_id} (charged to {charged_to})"
        )
        return serialize_withdrawal(withdrawal)

    def delete(self, withdrawal_id: str) -> Dict[str, Any]:
        withdrawal = self.db.get(Withdrawal, withdrawal_id)
        if withdrawal is None:
            raise NotFoundError("Withdrawal", withdrawal_id)
        document = serialize_withdrawal(withdrawal)
        self.db.delete(withdrawal)
        self.db.commit()
        ledger_cache.invalidate(document["branchId"], CacheKeys.WITHDRAWAL_WRITE)
        logger.info(f"Withdrawal {withdrawal_id} deleted")
        return document
