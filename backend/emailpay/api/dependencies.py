"""
Shared FastAPI dependencies
"""

from functools import lru_cache
from fastapi import Depends

from emailpay.infrastructure.settings import Settings, get_settings
from emailpay.services.container import ServiceContainer
from emailpay.services.wallet_service import WalletService


@lru_cache()
def get_container() -> ServiceContainer:
    """Process-wide services, built on first use"""
    return ServiceContainer(get_settings()).start()


def get_wallet_service(container: ServiceContainer = Depends(get_container)) -> WalletService:
    return container.wallet_service


def get_app_settings() -> Settings:
    return get_settings()
