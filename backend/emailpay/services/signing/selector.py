"""
Signing backend selection
"""

import logging
from typing import Optional

from emailpay.core.users.models import WalletUser, HOT_WALLET_SENTINEL
from emailpay.infrastructure.settings import Settings
from emailpay.services.chain import ChainClient
from emailpay.services.custody_client import CustodyClient
from emailpay.services.errors import ExecutionErrorKind
from emailpay.services.signing.backends import (
    CustodySessionBackend,
    HotWalletBackend,
    SigningBackend,
    SigningError,
)
from emailpay.services.signing.operator import OperatorAccount

logger = logging.getLogger(__name__)

# Real PKP token ids are 32-byte values; anything shorter is a fixture
MIN_CUSTODY_RESOURCE_ID_LENGTH = 64


class SigningBackendSelector:
    """Picks the signing backend for a sender from their recorded credential"""

    def __init__(
        self,
        *,
        operator: OperatorAccount,
        chain: ChainClient,
        settings: Settings,
        custody: Optional[CustodyClient] = None,
    ):
        self.operator = operator
        self.chain = chain
        self.settings = settings
        self.custody = custody

    def select(self, user: WalletUser) -> SigningBackend:
        """
        Return the backend that signs for this user.

        Raises SigningError before any chain or custody call when the
        recorded credential cannot be used.
        """
        backend_id = user.signing_backend_id or ""

        if backend_id == HOT_WALLET_SENTINEL:
            expected = user.wallet_address or ""
            actual = self.operator.address
            if expected.lower() != actual.lower():
                raise SigningError(
                    ExecutionErrorKind.ADDRESS_MISMATCH,
                    f"Hot wallet address mismatch: expected {expected}, got {actual}",
                )
            return HotWalletBackend(self.operator, self.chain)

        stripped = backend_id[2:] if backend_id.startswith("0x") else backend_id
        if len(stripped) < MIN_CUSTODY_RESOURCE_ID_LENGTH:
            raise SigningError(
                ExecutionErrorKind.TEST_ONLY_CREDENTIAL,
                f"cannot sign with a test-only credential ({backend_id!r}); "
                "provision a real custody wallet for this user",
            )

        if self.custody is None:
            raise SigningError(ExecutionErrorKind.CONFIGURATION, "Custody client is not configured")

        logger.debug("Selected custody signing backend", extra={"email": user.email})
        return CustodySessionBackend(
            operator=self.operator,
            custody=self.custody,
            chain=self.chain,
            settings=self.settings,
            resource_id=backend_id,
            public_key=user.wallet_public_key,
            address=user.wallet_address,
        )
