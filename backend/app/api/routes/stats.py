"""Kitchen wait-time statistics routes."""

from typing import Annotated, Optional

from fastapi import APIRouter, Query, Request

from app.core.config import settings
from app.core.rate_limit import limiter
from app.core.rbac import RequireSuperAdmin
from app.core.responses import success_response
from app.db.session import DbSession
from app.services.branches import resolve_branch
from app.services.stats_service import StatsService

router = APIRouter()

BranchId = Annotated[Optional[str], Query(alias="branchId")]


@router.get("")
@limiter.limit(settings.rate_limit_read)
def get_stats(request: Request, db: DbSession, branch_id: BranchId = None):
    """Average and total wait time (order created to all items served)."""
    return success_response(StatsService(db).get(resolve_branch(branch_id)))


@router.post("/recalculate")
@limiter.limit(settings.rate_limit_write)
def recalculate_stats(
    request: Request,
    db: DbSession,
    current_user: RequireSuperAdmin,
    branch_id: BranchId = None,
):
    """Rebuild the branch totals from every completed order."""
    return success_response(StatsService(db).recalculate(resolve_branch(branch_id)), "Stats recalculated")
