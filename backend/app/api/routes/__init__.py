"""API routes."""

import logging
from fastapi import APIRouter

from app.api.routes import orders, stats, withdrawals

logger = logging.getLogger(__name__)

api_router = APIRouter()

api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(withdrawals.router, prefix="/withdrawals", tags=["withdrawals"])
api_router.include_router(stats.router, prefix="/stats", tags=["stats"])
