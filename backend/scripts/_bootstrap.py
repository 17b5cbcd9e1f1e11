"""
Shared setup for operator scripts
"""

from emailpay.infrastructure.logging_config import setup_logging
from emailpay.infrastructure.settings import get_settings
from emailpay.services.container import ServiceContainer


def build_container() -> ServiceContainer:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    return ServiceContainer(settings).start()
