"""
API v1 routes
"""

from fastapi import APIRouter
from emailpay.infrastructure.settings import get_settings
from emailpay.api.v1.transactions import router as transactions_router
from emailpay.api.v1.wallets import router as wallets_router

settings = get_settings()
router = APIRouter(prefix=settings.API_V1_PREFIX, tags=["api-v1"])

router.include_router(transactions_router, prefix="/transactions", tags=["transactions"])
router.include_router(wallets_router, prefix="/wallets", tags=["wallets"])
