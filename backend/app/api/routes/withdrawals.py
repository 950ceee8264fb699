"""Cash movement routes: till withdrawals and supply purchases."""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Query, Request, status

from app.core.config import settings
from app.core.rate_limit import limiter
from app.core.responses import list_response, success_response
from app.db.session import DbSession
from app.models.withdrawal import WithdrawalType
from app.schemas.withdrawal import WithdrawalCreate
from app.services.branches import resolve_branch
from app.services.withdrawal_service import WithdrawalService

logger = logging.getLogger(__name__)

router = APIRouter()

BranchId = Annotated[Optional[str], Query(alias="branchId")]


@router.get("")
@limiter.limit(settings.rate_limit_read)
def list_withdrawals(
    request: Request,
    db: DbSession,
    branch_id: BranchId = None,
    withdrawal_type: Optional[WithdrawalType] = Query(None, alias="type"),
    start_date: Optional[int] = Query(None, alias="startDate", description="Epoch milliseconds"),
    end_date: Optional[int] = Query(None, alias="endDate", description="Epoch milliseconds"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    sort_order: str = Query("desc", alias="sortOrder", pattern="^(asc|desc)$"),
):
    withdrawals = WithdrawalService(db).list_withdrawals(
        resolve_branch(branch_id),
        withdrawal_type=withdrawal_type,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        sort_order=sort_order,
    )
    return list_response(withdrawals)


@router.get("/{withdrawal_id}")
@limiter.limit(settings.rate_limit_read)
def get_withdrawal(request: Request, withdrawal_id: str, db: DbSession):
    return success_response(WithdrawalService(db).get(withdrawal_id))


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_write)
def create_withdrawal(request: Request, payload: WithdrawalCreate, db: DbSession, branch_id: BranchId = None):
    """Record a withdrawal or purchase against an owner (or split across all)."""
    document = WithdrawalService(db).create(payload, resolve_branch(payload.branch_id or branch_id))
    return success_response(document, f"{payload.type.value.capitalize()} recorded")


@router.delete("/{withdrawal_id}")
@limiter.limit(settings.rate_limit_write)
def delete_withdrawal(request: Request, withdrawal_id: str, db: DbSession):
    document = WithdrawalService(db).delete(withdrawal_id)
    return success_response({"id": document["id"]}, "Withdrawal deleted")
