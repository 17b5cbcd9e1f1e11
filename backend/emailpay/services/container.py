"""
Service container - process-wide collaborators with an explicit lifecycle

Built once per process (API or worker). Anything passed in is used as is,
which is how tests swap in fakes.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from emailpay.infrastructure.settings import Settings
from emailpay.services.chain import ChainClient
from emailpay.services.custody_client import CustodyClient
from emailpay.services.email_gateway import GmailGateway
from emailpay.services.notifications import TransactionNotifier
from emailpay.services.signing import OperatorAccount, SigningBackendSelector, load_operator_account
from emailpay.services.transaction_engine import TransactionEngine
from emailpay.services.wallet_service import (
    CustodyMintProvisioner,
    HotWalletProvisioner,
    WalletProvisioner,
    WalletService,
)

logger = logging.getLogger(__name__)


class ServiceContainer:
    def __init__(
        self,
        settings: Settings,
        *,
        scheduler=None,
        operator: Optional[OperatorAccount] = None,
        chain: Optional[ChainClient] = None,
        custody: Optional[CustodyClient] = None,
        gateway: Optional[GmailGateway] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.scheduler = scheduler
        self.operator = operator
        self.chain = chain
        self.custody = custody
        self.gateway = gateway
        self.clock = clock

        self.notifier: Optional[TransactionNotifier] = None
        self.signer_selector: Optional[SigningBackendSelector] = None
        self.engine: Optional[TransactionEngine] = None
        self.wallet_service: Optional[WalletService] = None
        self._owned_clients = []
        self.started = False

    def _build_provisioner(self) -> WalletProvisioner:
        if self.settings.WALLET_PROVISIONER == "hot_wallet":
            return HotWalletProvisioner(self.operator)
        return CustodyMintProvisioner(self.custody)

    def _build_scheduler(self):
        # Imported here so API-only processes never touch the queue at import time
        from emailpay.infrastructure.redis_client import get_queue_connection
        from emailpay.workers.scheduler import RQJobScheduler

        job_timeout = self.settings.TX_RECEIPT_TIMEOUT_SECONDS * 2 + 120
        return RQJobScheduler(get_queue_connection(), self.settings.JOB_QUEUE_NAME, job_timeout=job_timeout)

    def start(self) -> "ServiceContainer":
        """
        Build every service.

        Raises ConfigurationError if the operator key is missing or malformed.
        """
        if self.started:
            return self

        settings = self.settings
        if self.operator is None:
            self.operator = load_operator_account(settings)
        if self.chain is None:
            self.chain = ChainClient(settings)
        if self.custody is None:
            self.custody = CustodyClient(settings)
            self._owned_clients.append(self.custody)
        if self.gateway is None and settings.gmail_configured:
            self.gateway = GmailGateway(settings)
            self._owned_clients.append(self.gateway)
        if self.scheduler is None:
            self.scheduler = self._build_scheduler()

        self.notifier = TransactionNotifier(self.gateway, settings)
        self.signer_selector = SigningBackendSelector(
            operator=self.operator,
            chain=self.chain,
            settings=settings,
            custody=self.custody,
        )
        self.engine = TransactionEngine(
            scheduler=self.scheduler,
            signer_selector=self.signer_selector,
            chain=self.chain,
            notifier=self.notifier,
            settings=settings,
            clock=self.clock,
        )
        self.wallet_service = WalletService(
            provisioner=self._build_provisioner(),
            notifier=self.notifier,
            chain=self.chain,
            settings=settings,
            clock=self.clock,
        )

        self.started = True
        logger.info(
            "Services started",
            extra={
                "operator_address": self.operator.address,
                "chain_id": settings.CHAIN_ID,
                "gmail_configured": self.gateway is not None,
                "wallet_provisioner": settings.WALLET_PROVISIONER,
            },
        )
        return self

    def close(self) -> None:
        for client in self._owned_clients:
            client.close()
        self._owned_clients = []
        self.started = False
